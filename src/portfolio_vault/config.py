# Configuration
#
# Settings are read from the environment (and an optional .env file).
# Cryptographic parameters and the price TTL are constants in their own
# modules and are intentionally not configurable here.

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

DEFAULT_COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
DEFAULT_YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}?interval=1d"

# Relay templates are tried in order; ``{url}`` is replaced by the
# URL-encoded target.
DEFAULT_RELAY_URLS = [
    "https://api.allorigins.win/raw?url={url}",
    "https://corsproxy.io/?{url}",
]


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings for the vault server and price providers."""

    data_file: Path = Path("data/portfolio.enc")
    host: str = "127.0.0.1"
    port: int = 3001
    audit_dir: Path = Path("audit_logs")
    coingecko_base_url: str = DEFAULT_COINGECKO_BASE_URL
    yahoo_chart_url: str = DEFAULT_YAHOO_CHART_URL
    relay_urls: List[str] = field(default_factory=lambda: list(DEFAULT_RELAY_URLS))
    request_timeout: float = 10.0

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "Settings":
        """Build settings from ``PORTFOLIO_VAULT_*`` and provider variables."""
        load_dotenv(env_file)

        relays = os.getenv("PRICE_RELAY_URLS")
        return cls(
            data_file=Path(os.getenv("PORTFOLIO_VAULT_DATA_FILE", "data/portfolio.enc")),
            host=os.getenv("PORTFOLIO_VAULT_HOST", "127.0.0.1"),
            port=int(os.getenv("PORTFOLIO_VAULT_PORT", "3001")),
            audit_dir=Path(os.getenv("PORTFOLIO_VAULT_AUDIT_DIR", "audit_logs")),
            coingecko_base_url=os.getenv("COINGECKO_BASE_URL", DEFAULT_COINGECKO_BASE_URL),
            yahoo_chart_url=os.getenv("YAHOO_CHART_URL", DEFAULT_YAHOO_CHART_URL),
            relay_urls=_split_list(relays) if relays is not None else list(DEFAULT_RELAY_URLS),
            request_timeout=float(os.getenv("PRICE_REQUEST_TIMEOUT", "10")),
        )

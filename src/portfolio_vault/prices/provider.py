# Prices - Abstract Quote Provider
#
# Defines the QuoteProvider base class that every external price source
# implements. Providers normalise raw quotes into USD unit prices; they do
# not know about the price cache or holdings.

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, Optional

import httpx

REQUEST_TIMEOUT_SEC = 10.0
USER_AGENT = "PortfolioVault/0.3"


class QuoteProvider(ABC):
    """Abstract base class for quote providers.

    Lifecycle:
        1. construct with an optional shared ``httpx.AsyncClient``
        2. ``await fetch_prices(identifiers)`` as often as needed
        3. ``await aclose()`` to release a client the provider created
    """

    def __init__(
        self,
        name: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = REQUEST_TIMEOUT_SEC,
    ):
        self.name = name
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        self._last_fetch: Optional[str] = None
        self._fetch_count: int = 0
        self._error_count: int = 0

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_prices(self, identifiers: Iterable[str]) -> Dict[str, float]:
        """Fetch USD unit prices.

        Returns:
            Partial map of identifier -> price. Identifiers the source does
            not know are simply absent.
        """

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def record_fetch(self, count: int) -> None:
        """Record a successful fetch for stats tracking."""
        self._last_fetch = datetime.utcnow().isoformat()
        self._fetch_count += count

    def record_error(self) -> None:
        """Record a fetch error for stats tracking."""
        self._error_count += 1

    def get_stats(self) -> Dict[str, object]:
        """Return provider statistics."""
        return {
            "name": self.name,
            "last_fetch": self._last_fetch,
            "total_fetched": self._fetch_count,
            "total_errors": self._error_count,
        }

# Prices - Reference Currency Conversion
#
# Looks up how many units of a currency one USD buys, so that quotes in
# other currencies can be stored in USD. Rates are cached per currency for
# FX_TTL. If the lookup fails a hardcoded fallback rate is used (and not
# cached, so the next call tries the network again).

import logging
import time
from typing import Callable, Dict, Optional, Tuple

import httpx

from ..config import DEFAULT_COINGECKO_BASE_URL
from ..exceptions import ProviderError

logger = logging.getLogger(__name__)

REFERENCE_CURRENCY = "USD"
FX_TTL_SEC = 15 * 60

# Units of currency per 1 USD
FALLBACK_RATES: Dict[str, float] = {
    "GBP": 0.79,
}


class FxRateService:
    """USD -> currency rates with a TTL cache and fallback values."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = DEFAULT_COINGECKO_BASE_URL,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self._cache: Dict[str, Tuple[float, float]] = {}  # currency -> (rate, fetched_at)

    async def get_rate(self, currency: str) -> float:
        """
        Return units of ``currency`` per one USD.

        Raises:
            FxRateError: lookup failed and no fallback rate exists
        """
        currency = currency.upper()
        if currency == REFERENCE_CURRENCY:
            return 1.0

        now = self._clock()
        cached = self._cache.get(currency)
        if cached and now - cached[1] < FX_TTL_SEC:
            return cached[0]

        rate = await self._fetch_rate(currency)
        if rate is not None:
            self._cache[currency] = (rate, now)
            return rate

        fallback = FALLBACK_RATES.get(currency)
        if fallback is None:
            raise FxRateError(f"No USD/{currency} rate available")

        logger.warning("Using fallback USD/%s rate %.4f", currency, fallback)
        return fallback

    async def to_usd(self, amount: float, currency: str) -> float:
        """Convert ``amount`` in ``currency`` to USD."""
        return amount / await self.get_rate(currency)

    async def _fetch_rate(self, currency: str) -> Optional[float]:
        url = f"{self._base_url}/simple/price"
        params = {"ids": "usd", "vs_currencies": currency.lower()}
        try:
            resp = await self._client.get(url, params=params)
            if not resp.is_success:
                logger.error("USD/%s rate lookup failed: HTTP %d", currency, resp.status_code)
                return None
            rate = resp.json().get("usd", {}).get(currency.lower())
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.error("Failed to fetch USD/%s rate: %s", currency, exc)
            return None

        if isinstance(rate, (int, float)) and not isinstance(rate, bool) and rate > 0:
            return float(rate)

        logger.error("USD/%s rate missing from response", currency)
        return None


class FxRateError(ProviderError):
    """Raised when no conversion rate is available for a currency."""

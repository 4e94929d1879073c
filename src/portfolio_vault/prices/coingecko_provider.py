# Prices - CoinGecko Batch Provider
#
# Index-style provider for crypto holdings. One request per refresh,
# regardless of how many coin ids are asked for:
#   GET {base}/simple/price?ids=bitcoin,ethereum&vs_currencies=usd
#
# Coins CoinGecko does not know are absent from the result. A failed
# request raises CoinGeckoFetchError; the price cache treats that as
# "no updates for this batch".

import logging
from typing import Dict, Iterable, List, Optional

import httpx

from ..config import DEFAULT_COINGECKO_BASE_URL
from ..exceptions import ProviderError
from .provider import REQUEST_TIMEOUT_SEC, QuoteProvider

logger = logging.getLogger(__name__)


class CoinGeckoProvider(QuoteProvider):
    """CoinGecko simple-price provider.

    Usage::

        provider = CoinGeckoProvider()
        prices = await provider.fetch_prices(["bitcoin", "ethereum"])
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = DEFAULT_COINGECKO_BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SEC,
    ):
        super().__init__("coingecko", client=client, timeout=timeout)
        self._base_url = base_url.rstrip("/")

    async def fetch_prices(self, identifiers: Iterable[str]) -> Dict[str, float]:
        """Fetch USD prices for all ``identifiers`` in a single request.

        Raises:
            CoinGeckoFetchError: network failure, non-2xx status, or a
                body that is not a JSON object
        """
        coin_ids: List[str] = list(dict.fromkeys(identifiers))
        if not coin_ids:
            return {}

        url = f"{self._base_url}/simple/price"
        params = {"ids": ",".join(coin_ids), "vs_currencies": "usd"}

        try:
            resp = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            self.record_error()
            raise CoinGeckoFetchError(f"CoinGecko request failed: {exc}") from exc

        if not resp.is_success:
            self.record_error()
            raise CoinGeckoFetchError(f"CoinGecko API error: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            self.record_error()
            raise CoinGeckoFetchError(f"CoinGecko returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            self.record_error()
            raise CoinGeckoFetchError("CoinGecko returned an unexpected payload")

        prices = self._parse_prices(data, coin_ids)
        self.record_fetch(len(prices))
        logger.debug("CoinGecko returned %d/%d prices", len(prices), len(coin_ids))
        return prices

    @staticmethod
    def _parse_prices(data: Dict[str, object], coin_ids: List[str]) -> Dict[str, float]:
        prices: Dict[str, float] = {}
        for coin_id in coin_ids:
            quote = data.get(coin_id)
            if not isinstance(quote, dict):
                continue
            usd = quote.get("usd")
            # Zero or missing prices mean "no quote", same as an unknown id
            if isinstance(usd, (int, float)) and not isinstance(usd, bool) and usd > 0:
                prices[coin_id] = float(usd)
        return prices


class CoinGeckoFetchError(ProviderError):
    """Raised when the CoinGecko batch request fails."""

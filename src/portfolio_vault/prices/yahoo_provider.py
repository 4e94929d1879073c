# Prices - Yahoo Finance Relay Provider
#
# Quote provider for stocks and metals ETCs. Yahoo's chart endpoint is not
# reachable from every network, so each lookup walks an ordered list of
# relay endpoints and finally tries a direct fetch. First success wins.
#
# Supports:
#   - One ticker per request, strictly sequential (rate-limit friendly)
#   - Minor-unit quotes (GBp pence etc.) divided by 100
#   - Non-USD quotes converted through FxRateService
#   - Market suffix for bare metals tickers (PHAU -> PHAU.L)

import logging
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

import httpx

from ..config import DEFAULT_COINGECKO_BASE_URL, DEFAULT_RELAY_URLS, DEFAULT_YAHOO_CHART_URL
from ..exceptions import ProviderError
from ..portfolio.models import AssetCategory
from .fx_rates import REFERENCE_CURRENCY, FxRateService
from .provider import REQUEST_TIMEOUT_SEC, QuoteProvider

logger = logging.getLogger(__name__)

# Minor-unit currency codes -> major currency (1 major = 100 minor)
MINOR_UNIT_CURRENCIES: Dict[str, str] = {
    "GBp": "GBP",
    "GBX": "GBP",
    "ZAc": "ZAR",
    "ILA": "ILS",
}


def normalize_ticker(identifier: str, category: AssetCategory) -> str:
    """
    Apply the category's market suffix to a bare identifier.

    Identifiers that already carry a suffix (``VWRL.L``, ``ASML.AS``) are
    returned unchanged. Stocks are left as-is; UK stocks need an explicit
    ``.L``.
    """
    if "." in identifier:
        return identifier

    suffix = AssetCategory(category).ticker_suffix
    if suffix:
        return f"{identifier}{suffix}"
    return identifier


class YahooRelayProvider(QuoteProvider):
    """Yahoo Finance chart quotes through a relay fallback chain.

    Usage::

        provider = YahooRelayProvider()
        price = await provider.fetch_price("VUSA.L")   # USD or None
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        chart_url: str = DEFAULT_YAHOO_CHART_URL,
        relay_urls: Optional[List[str]] = None,
        fx: Optional[FxRateService] = None,
        fx_base_url: str = DEFAULT_COINGECKO_BASE_URL,
        timeout: float = REQUEST_TIMEOUT_SEC,
    ):
        super().__init__("yahoo", client=client, timeout=timeout)
        self._chart_url = chart_url
        self._relay_urls = list(DEFAULT_RELAY_URLS if relay_urls is None else relay_urls)
        self._fx = fx or FxRateService(self._client, base_url=fx_base_url)

    @property
    def fx(self) -> FxRateService:
        return self._fx

    # ------------------------------------------------------------------
    # QuoteProvider interface
    # ------------------------------------------------------------------

    async def fetch_prices(self, identifiers: Iterable[str]) -> Dict[str, float]:
        """Fetch each ticker in turn. Failed tickers are absent."""
        prices: Dict[str, float] = {}
        for ticker in dict.fromkeys(identifiers):
            price = await self.fetch_price(ticker)
            if price is not None:
                prices[ticker] = price
        return prices

    async def fetch_price(self, ticker: str) -> Optional[float]:
        """
        Fetch one ticker's price in USD.

        Returns:
            The USD unit price, or None if every endpoint failed, the
            response held no price, or currency conversion failed.
        """
        url = self._chart_url.format(ticker=ticker)
        resp = await self._fetch_with_relays(url)
        if resp is None:
            logger.error("All fetches failed for %s", ticker)
            self.record_error()
            return None

        try:
            data = resp.json()
        except ValueError:
            logger.error("Invalid JSON for %s: %s", ticker, resp.text[:200])
            self.record_error()
            return None

        meta = self._extract_meta(data)
        price = meta.get("regularMarketPrice") if meta else None
        if not isinstance(price, (int, float)) or isinstance(price, bool) or not price:
            logger.error("No price data for %s: %s", ticker, str(data)[:200])
            self.record_error()
            return None

        currency = meta.get("currency") or REFERENCE_CURRENCY
        logger.info("%s: %s %s", ticker, price, currency)

        try:
            usd_price = await self._to_usd(float(price), currency)
        except ProviderError as exc:
            logger.error("Cannot convert %s price for %s: %s", currency, ticker, exc)
            self.record_error()
            return None

        self.record_fetch(1)
        return usd_price

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _fetch_with_relays(self, url: str) -> Optional[httpx.Response]:
        """Try each relay in order, then the target directly.

        Network errors and non-2xx responses move on to the next endpoint.
        """
        encoded = quote(url, safe="")
        for template in self._relay_urls:
            relay_url = template.format(url=encoded)
            try:
                resp = await self._client.get(relay_url)
                if resp.is_success:
                    return resp
                logger.warning("Relay returned %d for %s", resp.status_code, url)
            except httpx.HTTPError as exc:
                logger.warning("Relay failed for %s: %s", url, exc)

        try:
            resp = await self._client.get(url)
            if resp.is_success:
                return resp
            logger.warning("Direct fetch returned %d for %s", resp.status_code, url)
        except httpx.HTTPError as exc:
            logger.warning("Direct fetch failed for %s: %s", url, exc)

        return None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_meta(data: object) -> Optional[Dict[str, object]]:
        """Return ``chart.result[0].meta`` or None."""
        if not isinstance(data, dict):
            return None
        chart = data.get("chart")
        results = chart.get("result") if isinstance(chart, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None
        meta = results[0].get("meta")
        return meta if isinstance(meta, dict) else None

    async def _to_usd(self, price: float, currency: str) -> float:
        major = MINOR_UNIT_CURRENCIES.get(currency)
        if major:
            price = price / 100
            currency = major

        if currency.upper() == REFERENCE_CURRENCY:
            return price
        return await self._fx.to_usd(price, currency)

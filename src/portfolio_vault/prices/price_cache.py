# Prices - Price Cache
#
# Maps an asset identifier to its last-known USD price, capture time and
# source. Decides which identifiers need refreshing, routes them to the
# right provider, and merges results without ever dropping a previous
# entry because a refresh failed.
#
# The cache never schedules itself; callers refresh on demand.

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from ..config import Settings
from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import ProviderError
from ..portfolio.models import (
    Holding,
    PriceCache,
    PriceCacheEntry,
    PriceFreshness,
    QuoteSource,
    now_ms,
)
from .coingecko_provider import CoinGeckoProvider
from .fx_rates import FxRateService
from .provider import QuoteProvider
from .yahoo_provider import YahooRelayProvider, normalize_ticker

logger = logging.getLogger(__name__)

PRICE_TTL_MS = 15 * 60 * 1000  # 15 minutes


def needs_refresh(entry: Optional[PriceCacheEntry], now: int) -> bool:
    """True if ``entry`` is missing or older than the TTL at ``now`` (epoch ms)."""
    if entry is None:
        return True
    return now - entry.timestamp > PRICE_TTL_MS


def is_stale(entry: Optional[PriceCacheEntry], now: Optional[int] = None) -> bool:
    return needs_refresh(entry, now_ms() if now is None else now)


def classify(entry: Optional[PriceCacheEntry], now: Optional[int] = None) -> PriceFreshness:
    """Fresh, stale (present but expired) or absent."""
    if entry is None:
        return PriceFreshness.ABSENT
    if is_stale(entry, now):
        return PriceFreshness.STALE
    return PriceFreshness.FRESH


def merge_price_cache(current: PriceCache, incoming: PriceCache) -> PriceCache:
    """
    Merge ``incoming`` into a copy of ``current``.

    Last writer wins per identifier: an incoming entry replaces the
    current one only if it is at least as recent, so the result of an
    abandoned older refresh cannot overwrite a newer price.
    """
    merged = dict(current)
    for identifier, entry in incoming.items():
        existing = merged.get(identifier)
        if existing is None or entry.timestamp >= existing.timestamp:
            merged[identifier] = entry
    return merged


class PriceAggregator:
    """
    Refreshes a price cache from the crypto batch provider and the
    stock/metals relay provider.

    Usage::

        aggregator = PriceAggregator.from_settings(settings)
        cache = await aggregator.refresh(document.holdings, document.price_cache)
    """

    def __init__(
        self,
        crypto_provider: QuoteProvider,
        relay_provider: YahooRelayProvider,
        fx: Optional[FxRateService] = None,
    ):
        self.crypto_provider = crypto_provider
        self.relay_provider = relay_provider
        self.fx = fx or relay_provider.fx

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "PriceAggregator":
        """Build both providers, sharing one HTTP client when given."""
        crypto = CoinGeckoProvider(
            client=client,
            base_url=settings.coingecko_base_url,
            timeout=settings.request_timeout,
        )
        relay = YahooRelayProvider(
            client=client,
            chart_url=settings.yahoo_chart_url,
            relay_urls=settings.relay_urls,
            fx_base_url=settings.coingecko_base_url,
            timeout=settings.request_timeout,
        )
        return cls(crypto, relay)

    async def aclose(self) -> None:
        await self.crypto_provider.aclose()
        await self.relay_provider.aclose()

    def get_stats(self) -> List[Dict[str, object]]:
        return [self.crypto_provider.get_stats(), self.relay_provider.get_stats()]

    async def get_rate(self, currency: str) -> float:
        """Units of ``currency`` per USD, used to display valuations."""
        return await self.fx.get_rate(currency)

    def plan(
        self, holdings: Iterable[Holding], cache: PriceCache, now: int
    ) -> Tuple[List[str], List[Tuple[str, str]]]:
        """
        Work out which identifiers to fetch.

        Returns:
            (crypto ids for one batch request,
             [(normalised ticker, original identifier), ...] for the relay)
        """
        crypto_ids: List[str] = []
        relay_tickers: List[Tuple[str, str]] = []
        seen = set()

        for holding in holdings:
            identifier = holding.identifier
            if not identifier or identifier in seen:
                continue
            if not needs_refresh(cache.get(identifier), now):
                continue

            source = holding.category.quote_source
            if source is QuoteSource.COINGECKO:
                crypto_ids.append(identifier)
            elif source is QuoteSource.YAHOO:
                relay_tickers.append((normalize_ticker(identifier, holding.category), identifier))
            elif source is QuoteSource.MANUAL:
                continue
            else:
                raise ValueError(f"Unrouted quote source: {source}")
            seen.add(identifier)

        return crypto_ids, relay_tickers

    async def refresh(
        self,
        holdings: Iterable[Holding],
        cache: PriceCache,
        now: Optional[int] = None,
    ) -> PriceCache:
        """
        Return a new cache with refreshed prices for stale holdings.

        Fresh entries are skipped. Identifiers that could not be resolved
        keep whatever entry they had before. ``cache`` is not modified.
        """
        now = now_ms() if now is None else now
        new_cache: PriceCache = dict(cache)
        crypto_ids, relay_tickers = self.plan(holdings, cache, now)

        updated = 0
        if crypto_ids:
            try:
                prices = await self.crypto_provider.fetch_prices(crypto_ids)
            except ProviderError as exc:
                logger.error("CoinGecko batch fetch failed: %s", exc)
                get_audit_logger().log_event(
                    EventType.PROVIDER_FAILED,
                    EventSeverity.WARNING,
                    f"Batch quote request failed: {exc}",
                    details={"provider": self.crypto_provider.name, "count": len(crypto_ids)},
                )
                prices = {}
            for identifier, price in prices.items():
                new_cache[identifier] = PriceCacheEntry(price, now, QuoteSource.COINGECKO)
                updated += 1

        # Sequential on purpose: the relay target rate-limits concurrent callers
        for ticker, original_id in relay_tickers:
            price = await self.relay_provider.fetch_price(ticker)
            if price is not None:
                # Stored under the original identifier so holdings still resolve
                new_cache[original_id] = PriceCacheEntry(price, now, QuoteSource.YAHOO)
                updated += 1

        requested = len(crypto_ids) + len(relay_tickers)
        if requested:
            get_audit_logger().log_event(
                EventType.PRICES_REFRESHED,
                EventSeverity.INFO,
                f"Refreshed {updated}/{requested} prices",
                details={"requested": requested, "updated": updated},
            )
        return new_cache

# Prices Module - Quote Providers, Price Cache, Valuation
#
# Crypto prices come from a batched CoinGecko request; stocks and metals
# come one ticker at a time from Yahoo through a relay chain. All prices
# are cached in USD with a 15 minute TTL.

from .coingecko_provider import CoinGeckoFetchError, CoinGeckoProvider
from .fx_rates import FxRateError, FxRateService
from .price_cache import (
    PRICE_TTL_MS,
    PriceAggregator,
    classify,
    is_stale,
    merge_price_cache,
    needs_refresh,
)
from .provider import QuoteProvider
from .valuation import (
    category_totals,
    convert_valuation,
    create_history_snapshot,
    portfolio_total,
    valuate,
)
from .yahoo_provider import YahooRelayProvider, normalize_ticker

__all__ = [
    "PRICE_TTL_MS",
    "CoinGeckoFetchError",
    "CoinGeckoProvider",
    "FxRateError",
    "FxRateService",
    "PriceAggregator",
    "QuoteProvider",
    "YahooRelayProvider",
    "category_totals",
    "classify",
    "convert_valuation",
    "create_history_snapshot",
    "is_stale",
    "merge_price_cache",
    "needs_refresh",
    "normalize_ticker",
    "portfolio_total",
    "valuate",
]

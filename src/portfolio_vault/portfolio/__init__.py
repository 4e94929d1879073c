# Portfolio Module - Document Model
#
# Holdings, price cache entries and history snapshots that make up the
# single encrypted portfolio document.

from .models import (
    AssetCategory,
    Holding,
    HoldingWithValue,
    HistorySnapshot,
    PortfolioDocument,
    PriceCache,
    PriceCacheEntry,
    PriceFreshness,
    PriceSource,
    QuoteSource,
)

__all__ = [
    "AssetCategory",
    "Holding",
    "HoldingWithValue",
    "HistorySnapshot",
    "PortfolioDocument",
    "PriceCache",
    "PriceCacheEntry",
    "PriceFreshness",
    "PriceSource",
    "QuoteSource",
]

# Prices - Valuation Engine
#
# Combines holdings, the price cache and manual overrides into valued
# holdings and portfolio aggregates.
#
# Price resolution order (per holding):
#   1. positive manual price           -> source "manual"
#   2. identifier present in the cache -> source "api" (fresh) / "cached" (stale)
#   3. otherwise price 0               -> source "manual", contributes nothing
#
# Stale prices are still used for valuation; they are only flagged.
# Valuations are computed in USD and may be scaled to a display currency.

import dataclasses
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from ..portfolio.models import (
    AssetCategory,
    HistorySnapshot,
    Holding,
    HoldingWithValue,
    PriceCache,
    PriceFreshness,
    PriceSource,
    now_ms,
)
from .price_cache import classify


def value_holding(holding: Holding, cache: PriceCache, now: int) -> HoldingWithValue:
    current_price = 0.0
    price_source = PriceSource.MANUAL
    freshness = PriceFreshness.ABSENT
    last_updated: Optional[str] = None

    if holding.has_manual_price:
        current_price = holding.manual_price
    elif holding.identifier:
        entry = cache.get(holding.identifier)
        if entry is not None:
            current_price = entry.price
            freshness = classify(entry, now)
            price_source = PriceSource.API if freshness is PriceFreshness.FRESH else PriceSource.CACHED
            last_updated = entry.captured_at.isoformat()

    return HoldingWithValue(
        holding=holding,
        current_price=current_price,
        total_value=holding.quantity * current_price,
        price_source=price_source,
        freshness=freshness,
        last_updated=last_updated,
    )


def valuate(
    holdings: Iterable[Holding], cache: PriceCache, now: Optional[int] = None
) -> List[HoldingWithValue]:
    """Value every holding against ``cache`` at ``now`` (epoch ms)."""
    now = now_ms() if now is None else now
    return [value_holding(holding, cache, now) for holding in holdings]


def category_totals(valued: Iterable[HoldingWithValue]) -> Dict[AssetCategory, float]:
    """Sum of total values per category. All five categories are present."""
    totals: Dict[AssetCategory, float] = {category: 0.0 for category in AssetCategory}
    for item in valued:
        totals[item.category] += item.total_value
    return totals


def portfolio_total(valued: Iterable[HoldingWithValue]) -> float:
    return sum(item.total_value for item in valued)


def create_history_snapshot(
    valued: Iterable[HoldingWithValue], now: Optional[datetime] = None
) -> HistorySnapshot:
    """Snapshot the current portfolio value, per category and overall."""
    valued = list(valued)
    when = now or datetime.now(timezone.utc)
    return HistorySnapshot(
        date=when.isoformat(),
        total_value=portfolio_total(valued),
        category_values=category_totals(valued),
    )


def convert_valuation(valued: Iterable[HoldingWithValue], rate: float) -> List[HoldingWithValue]:
    """
    Scale prices and totals from USD by ``rate`` (units per USD).

    Display only; converted values are never written back to the cache.
    """
    return [
        dataclasses.replace(
            item,
            current_price=item.current_price * rate,
            total_value=item.total_value * rate,
        )
        for item in valued
    ]

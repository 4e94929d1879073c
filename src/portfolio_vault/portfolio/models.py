# Portfolio - Data Models
#
# Defines the plaintext portfolio document that the vault encrypts:
#   Holding          - one position (crypto, metals, stock, cash, seed)
#   PriceCacheEntry  - last-known USD unit price for an identifier
#   HistorySnapshot  - immutable record of portfolio value at a point in time
#   PortfolioDocument - holdings + price cache + history (unit of encryption)
#
# Documents are serialised with camelCase keys so files written by earlier
# versions of the tracker remain readable.

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..exceptions import SchemaError


class QuoteSource(str, Enum):
    """Where a holding's price comes from."""

    COINGECKO = "coingecko"
    YAHOO = "yahoo"
    MANUAL = "manual"


class AssetCategory(str, Enum):
    """Closed set of asset categories.

    Each category carries its provider-routing rule; see ``quote_source``.
    """

    CRYPTO = "crypto"
    METALS = "metals"
    STOCK = "stock"
    CASH = "cash"
    SEED = "seed"

    @property
    def quote_source(self) -> QuoteSource:
        return _CATEGORY_ROUTING[self]

    @property
    def ticker_suffix(self) -> Optional[str]:
        """Market suffix appended to bare identifiers before a relay lookup."""
        return _CATEGORY_SUFFIX.get(self)


_CATEGORY_ROUTING: Dict[AssetCategory, QuoteSource] = {
    AssetCategory.CRYPTO: QuoteSource.COINGECKO,
    AssetCategory.METALS: QuoteSource.YAHOO,   # UK-listed ETCs
    AssetCategory.STOCK: QuoteSource.YAHOO,
    AssetCategory.CASH: QuoteSource.MANUAL,
    AssetCategory.SEED: QuoteSource.MANUAL,
}

_CATEGORY_SUFFIX: Dict[AssetCategory, str] = {
    AssetCategory.METALS: ".L",
}

_missing = set(AssetCategory) - set(_CATEGORY_ROUTING)
if _missing:
    raise RuntimeError(f"No quote routing for categories: {sorted(c.value for c in _missing)}")


class PriceSource(str, Enum):
    """How a valued holding got its current price."""

    API = "api"
    MANUAL = "manual"
    CACHED = "cached"


class PriceFreshness(str, Enum):
    """Staleness classification of a cached price."""

    FRESH = "fresh"
    STALE = "stale"
    ABSENT = "absent"


def now_ms() -> int:
    """Current time as epoch milliseconds (the document's timestamp unit)."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def _require_mapping(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise SchemaError(f"{what} must be an object")
    return data


def _parse_category(value: Any) -> AssetCategory:
    try:
        return AssetCategory(value)
    except ValueError:
        raise SchemaError(f"Unknown asset category: {value!r}") from None


# ---------------------------------------------------------------------------
# Data Models
# ---------------------------------------------------------------------------


@dataclass
class Holding:
    """A single position.

    ``id`` is generated once by ``Holding.create`` and never reused.
    ``quantity`` is signed; negative quantities model shorts or liabilities.
    """

    id: str
    name: str
    category: AssetCategory
    quantity: float
    identifier: Optional[str] = None  # ticker (TSLA), VWRL.L, or CoinGecko id (bitcoin)
    manual_price: Optional[float] = None  # overrides fetched prices when positive

    @classmethod
    def create(
        cls,
        name: str,
        category: AssetCategory,
        quantity: float,
        identifier: Optional[str] = None,
        manual_price: Optional[float] = None,
    ) -> "Holding":
        return cls(
            id=uuid4().hex,
            name=name,
            category=AssetCategory(category),
            quantity=float(quantity),
            identifier=identifier or None,
            manual_price=manual_price,
        )

    @property
    def has_manual_price(self) -> bool:
        return self.manual_price is not None and self.manual_price > 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "quantity": self.quantity,
        }
        if self.identifier is not None:
            data["identifier"] = self.identifier
        if self.manual_price is not None:
            data["manualPrice"] = self.manual_price
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Holding":
        data = _require_mapping(data, "holding")
        name = data.get("name", "")
        identifier = data.get("identifier")
        if not isinstance(name, str):
            raise SchemaError(f"Invalid holding: name must be a string, got {type(name).__name__}")
        if identifier is not None and not isinstance(identifier, str):
            raise SchemaError(
                f"Invalid holding: identifier must be a string, got {type(identifier).__name__}"
            )
        try:
            manual = data.get("manualPrice")
            return cls(
                id=str(data["id"]),
                name=name,
                category=_parse_category(data["category"]),
                quantity=float(data.get("quantity", 0)),
                identifier=identifier or None,
                manual_price=float(manual) if manual is not None else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SchemaError(f"Invalid holding: {exc}") from None


@dataclass
class PriceCacheEntry:
    """Last-known unit price in USD for one identifier."""

    price: float
    timestamp: int  # epoch milliseconds
    source: QuoteSource

    @property
    def captured_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "timestamp": self.timestamp,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PriceCacheEntry":
        data = _require_mapping(data, "price cache entry")
        try:
            return cls(
                price=float(data["price"]),
                timestamp=int(data["timestamp"]),
                source=QuoteSource(data["source"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SchemaError(f"Invalid price cache entry: {exc}") from None


PriceCache = Dict[str, PriceCacheEntry]


@dataclass(frozen=True)
class HistorySnapshot:
    """Portfolio value at a point in time. Immutable once created."""

    date: str  # ISO 8601
    total_value: float
    category_values: Dict[AssetCategory, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "totalValue": self.total_value,
            "categoryValues": {
                category.value: self.category_values.get(category, 0.0)
                for category in AssetCategory
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "HistorySnapshot":
        data = _require_mapping(data, "history snapshot")
        raw_values = data.get("categoryValues") or {}
        try:
            values = {
                category: float(raw_values.get(category.value, 0))
                for category in AssetCategory
            }
            return cls(
                date=str(data["date"]),
                total_value=float(data["totalValue"]),
                category_values=values,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SchemaError(f"Invalid history snapshot: {exc}") from None


@dataclass
class HoldingWithValue:
    """A holding with its resolved price. Derived, never persisted."""

    holding: Holding
    current_price: float
    total_value: float
    price_source: PriceSource
    freshness: PriceFreshness
    last_updated: Optional[str] = None  # ISO 8601

    @property
    def category(self) -> AssetCategory:
        return self.holding.category

    def to_dict(self) -> Dict[str, Any]:
        data = self.holding.to_dict()
        data.update({
            "currentPrice": self.current_price,
            "totalValue": self.total_value,
            "priceSource": self.price_source.value,
            "freshness": self.freshness.value,
        })
        if self.last_updated is not None:
            data["lastUpdated"] = self.last_updated
        return data


@dataclass
class PortfolioDocument:
    """The plaintext payload of the vault.

    The whole document is re-encrypted on every write.
    """

    holdings: List[Holding] = field(default_factory=list)
    price_cache: PriceCache = field(default_factory=dict)
    history: List[HistorySnapshot] = field(default_factory=list)
    exported_at: Optional[str] = None

    @classmethod
    def empty(cls) -> "PortfolioDocument":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "holdings": [h.to_dict() for h in self.holdings],
            "priceCache": {k: v.to_dict() for k, v in self.price_cache.items()},
            "history": [s.to_dict() for s in self.history],
        }
        if self.exported_at is not None:
            data["exportedAt"] = self.exported_at
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "PortfolioDocument":
        """Parse a decrypted payload.

        Raises:
            SchemaError: payload is not an object, ``holdings`` is not a list,
                or any nested record is malformed.
        """
        data = _require_mapping(data, "portfolio document")
        holdings = data.get("holdings")
        if not isinstance(holdings, list):
            raise SchemaError("Invalid database file format: holdings must be a list")

        cache = _require_mapping(data.get("priceCache") or {}, "priceCache")
        history = data.get("history") or []
        if not isinstance(history, list):
            raise SchemaError("history must be a list")

        return cls(
            holdings=[Holding.from_dict(h) for h in holdings],
            price_cache={str(k): PriceCacheEntry.from_dict(v) for k, v in cache.items()},
            history=[HistorySnapshot.from_dict(s) for s in history],
            exported_at=data.get("exportedAt"),
        )

    # ------------------------------------------------------------------
    # Holding maintenance
    # ------------------------------------------------------------------

    def get_holding(self, holding_id: str) -> Holding:
        for holding in self.holdings:
            if holding.id == holding_id:
                return holding
        raise KeyError(holding_id)

    def add_holding(self, holding: Holding) -> Holding:
        if any(h.id == holding.id for h in self.holdings):
            raise ValueError(f"Duplicate holding id: {holding.id}")
        self.holdings.append(holding)
        return holding

    def update_holding(self, holding_id: str, **changes: Any) -> Holding:
        """Apply field changes to a holding. The id is never changed."""
        holding = self.get_holding(holding_id)
        for name, value in changes.items():
            if name == "id" or not hasattr(holding, name):
                raise ValueError(f"Cannot update holding field: {name}")
            if name == "category":
                value = AssetCategory(value)
            setattr(holding, name, value)
        return holding

    def delete_holding(self, holding_id: str) -> bool:
        before = len(self.holdings)
        self.holdings = [h for h in self.holdings if h.id != holding_id]
        return len(self.holdings) != before

    def append_snapshot(self, snapshot: HistorySnapshot) -> None:
        self.history.append(snapshot)

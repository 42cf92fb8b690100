"""Ingestion data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

CENT = Decimal("0.01")


class PriceSource(str, Enum):
    """Which pipeline stage observed a price."""

    INGESTION = "ingestion"
    REFRESH = "refresh"
    MANUAL = "manual"


def to_money(value: Any) -> Decimal:
    """Coerce a stored or computed price to a two-place Decimal; unusable values become 0."""
    if value is None or value == "":
        return Decimal("0.00")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0.00")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_discount_percent(current_price: Any, list_price: Any) -> int:
    current = to_money(current_price)
    reference = to_money(list_price)
    if reference <= 0:
        return 0
    percent = ((reference - current) / reference * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(percent)))


@dataclass(slots=True)
class Product:
    external_id: str
    store: str
    title: str
    current_price: Decimal
    list_price: Decimal
    discount_percent: int
    product_url: str
    category: str
    image_url: str | None = None
    is_active: bool = True
    id: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        return cls(
            id=row["id"],
            external_id=row["external_id"],
            store=row["store"],
            title=row["title"],
            current_price=to_money(row["current_price"]),
            list_price=to_money(row["list_price"]),
            discount_percent=int(row["discount_percent"] or 0),
            product_url=row["product_url"],
            category=row["category"],
            image_url=row.get("image_url"),
            is_active=bool(row.get("is_active", True)),
        )

    def price_differs(self, other_price: Any) -> bool:
        return to_money(self.current_price) != to_money(other_price)


@dataclass(slots=True)
class PriceHistoryEntry:
    product_id: int
    price: Decimal
    list_price: Decimal
    discount_percent: int
    source: PriceSource

    @classmethod
    def observe(cls, product_id: int, product: Product, source: PriceSource) -> "PriceHistoryEntry":
        return cls(
            product_id=product_id,
            price=to_money(product.current_price),
            list_price=to_money(product.list_price),
            discount_percent=product.discount_percent,
            source=source,
        )


@dataclass(slots=True)
class Deal:
    product_id: int
    title: str
    description: str
    original_price: Decimal
    discounted_price: Decimal
    discount_percentage: int
    deal_url: str
    store: str
    category: str
    image_url: str | None = None
    is_active: bool = True

    @classmethod
    def from_product(cls, product_id: int, product: Product) -> "Deal":
        return cls(
            product_id=product_id,
            title=product.title,
            description=f"Great deal on {product.title}",
            original_price=to_money(product.list_price),
            discounted_price=to_money(product.current_price),
            discount_percentage=product.discount_percent,
            deal_url=product.product_url,
            store=product.store,
            category=product.category,
            image_url=product.image_url,
        )


@dataclass(slots=True)
class RefreshOutcome:
    price_changed: bool = False
    new_deal: bool = False
    skipped: bool = False


@dataclass(slots=True)
class RefreshSummary:
    processed: int = 0
    price_changes: int = 0
    new_deals: int = 0
    errors: int = 0
    skipped: int = 0
    failed_product_ids: list[int] = field(default_factory=list)

    def record(self, outcome: RefreshOutcome) -> None:
        self.processed += 1
        self.price_changes += int(outcome.price_changed)
        self.new_deals += int(outcome.new_deal)
        self.skipped += int(outcome.skipped)

    def record_error(self, product_id: int | None) -> None:
        self.errors += 1
        if product_id is not None:
            self.failed_product_ids.append(product_id)

    def merge(self, other: "RefreshSummary") -> None:
        self.processed += other.processed
        self.price_changes += other.price_changes
        self.new_deals += other.new_deals
        self.errors += other.errors
        self.skipped += other.skipped
        self.failed_product_ids.extend(other.failed_product_ids)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

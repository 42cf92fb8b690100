"""Map PA-API item payloads onto the internal Product shape.

Upstream items are loosely structured nested JSON. Every field is read through
:func:`lookup`, which returns ``None`` when any step of the path is absent, and
each extractor documents its fallback:

* title: ``ItemInfo.Title.DisplayValue``, else ``"Unknown Product"``
* price: first ``Offers.Listings[]`` entry, ``Price.Amount`` in minor units, else 0
* list price: ``SavingBasis``, then ``Mrp``, then the price itself, else 0
* image: ``Images.Primary`` Large, then Medium, then Small, else ``None``
* category: ``Classifications.Binding``/``ProductGroup`` via ``CATEGORY_MAP``,
  else the raw upstream value, else ``"General"``

A container of the wrong type (e.g. ``Offers`` being a string) or a missing ASIN
makes the item malformed; such items are logged and dropped.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

from dealfeed.errors import NormalizationError
from dealfeed.ingest.models import Product, compute_discount_percent, to_money

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Product"
DEFAULT_CATEGORY = "General"

CATEGORY_MAP = {
    "Electronics": "Electronics",
    "Computers": "Electronics",
    "Mobile Phones": "Electronics",
    "Wireless": "Electronics",
    "Fashion": "Fashion",
    "Clothing": "Fashion",
    "Apparel": "Fashion",
    "Shoes": "Fashion",
    "Home & Kitchen": "Home",
    "Kitchen": "Home",
    "Furniture": "Home",
    "Decor": "Home",
    "Books": "Books",
    "Book": "Books",
    "Paperback": "Books",
    "Hardcover": "Books",
    "Kindle": "Books",
    "Sports & Outdoors": "Sports",
    "Sports": "Sports",
    "Beauty & Personal Care": "Beauty",
    "Beauty": "Beauty",
    "Health & Household": "Health",
    "Toys & Games": "Toys",
    "Toy": "Toys",
    "Baby Products": "Baby",
    "Automotive": "Automotive",
    "Industrial & Scientific": "Industrial",
    "Tools & Home Improvement": "Home Improvement",
}

_MISSING = object()


def lookup(data: Any, *path: str | int) -> Any:
    """Follow ``path`` through nested mappings/lists, ``None`` if any step is absent."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key, _MISSING)
            if current is _MISSING:
                return None
    return current


def _require_mapping(item: Mapping[str, Any], key: str) -> None:
    value = item.get(key)
    if value is not None and not isinstance(value, Mapping):
        raise NormalizationError(f"{key} is {type(value).__name__}, expected an object")


def minor_units_to_money(amount: Any) -> Decimal:
    """Amounts arrive in minor currency units; anything non-numeric counts as 0."""
    if isinstance(amount, Mapping):
        amount = amount.get("Amount")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return Decimal("0.00")
    return to_money(Decimal(str(amount)) / 100)


class ProductNormalizer:
    def __init__(self, *, store: str = "amazon", product_url_base: str = "https://amazon.in/dp/") -> None:
        self.store = store
        self.product_url_base = product_url_base

    def normalize_item(self, item: Any) -> Product | None:
        try:
            return self._normalize(item)
        except NormalizationError as exc:
            logger.warning("Dropping malformed upstream item: %s", exc)
            return None

    def _normalize(self, item: Any) -> Product:
        if not isinstance(item, Mapping):
            raise NormalizationError(f"item is {type(item).__name__}, expected an object")
        asin = item.get("ASIN")
        if not isinstance(asin, str) or not asin.strip():
            raise NormalizationError("item has no ASIN")
        for key in ("ItemInfo", "Offers", "Images"):
            _require_mapping(item, key)
        listings = lookup(item, "Offers", "Listings")
        if listings is not None and not isinstance(listings, list):
            raise NormalizationError("Offers.Listings is not a list")

        asin = asin.strip()
        price, list_price = self.extract_pricing(item)
        return Product(
            external_id=asin,
            store=self.store,
            title=self.extract_title(item),
            current_price=price,
            list_price=list_price,
            discount_percent=compute_discount_percent(price, list_price),
            product_url=f"{self.product_url_base}{asin}",
            category=self.extract_category(item),
            image_url=self.extract_image(item),
        )

    def extract_title(self, item: Mapping[str, Any]) -> str:
        title = lookup(item, "ItemInfo", "Title", "DisplayValue")
        if isinstance(title, str) and title.strip():
            return title.strip()
        return UNKNOWN_TITLE

    def extract_pricing(self, item: Mapping[str, Any]) -> tuple[Decimal, Decimal]:
        listing = lookup(item, "Offers", "Listings", 0)
        if not isinstance(listing, Mapping):
            return Decimal("0.00"), Decimal("0.00")
        price = minor_units_to_money(lookup(listing, "Price", "Amount"))
        for basis in ("SavingBasis", "Mrp"):
            list_price = minor_units_to_money(lookup(listing, basis, "Amount"))
            if list_price > 0:
                return price, list_price
        return price, price

    def extract_image(self, item: Mapping[str, Any]) -> str | None:
        for size in ("Large", "Medium", "Small"):
            url = lookup(item, "Images", "Primary", size, "URL")
            if isinstance(url, str) and url:
                return url
        return None

    def extract_category(self, item: Mapping[str, Any]) -> str:
        raw = lookup(item, "ItemInfo", "Classifications", "Binding", "DisplayValue") or lookup(
            item, "ItemInfo", "Classifications", "ProductGroup", "DisplayValue"
        )
        if not isinstance(raw, str) or not raw.strip():
            return DEFAULT_CATEGORY
        return CATEGORY_MAP.get(raw.strip(), raw.strip())

    def validate(self, product: Product) -> bool:
        for field_name in ("external_id", "store", "title"):
            if not getattr(product, field_name):
                logger.warning("Product missing required field %s: %s", field_name, product.external_id)
                return False
        if product.current_price < 0 or product.list_price < 0:
            logger.warning("Product %s has negative pricing", product.external_id)
            return False
        return True

    def normalize_response(self, response: Mapping[str, Any] | None) -> list[Product]:
        items = lookup(response, "SearchResult", "Items") or lookup(response, "ItemsResult", "Items") or []
        if not isinstance(items, list):
            logger.warning("Unexpected Items container: %s", type(items).__name__)
            return []
        normalized: list[Product] = []
        for item in items:
            product = self.normalize_item(item)
            if product is not None and self.validate(product):
                normalized.append(product)
        return normalized

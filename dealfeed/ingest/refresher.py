"""Price refresh and deal lifecycle for already-known products."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx
from sqlalchemy import case, distinct, func, insert, select, update

from dealfeed.config import PipelineSettings
from dealfeed.db.store import Store, run_blocking
from dealfeed.db.tables import deals, price_history, products
from dealfeed.errors import NormalizationError, PipelineError, StorageError
from dealfeed.ingest.ingestor import record_price_history
from dealfeed.ingest.models import Deal, PriceHistoryEntry, PriceSource, Product, RefreshOutcome, RefreshSummary
from dealfeed.ingest.normalizer import ProductNormalizer, lookup
from dealfeed.ingest.paapi import ProductApiClient
from dealfeed.utils.dates import start_of_day_utc
from dealfeed.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

ACTIVE_PRODUCTS_SQL = """
    SELECT id, external_id, store, title, current_price, list_price, discount_percent,
           image_url, product_url, category, is_active
    FROM products
    WHERE is_active = :active
    ORDER BY updated_at ASC, id ASC
"""

ACTIVE_PRODUCTS_BY_CATEGORY_SQL = """
    SELECT id, external_id, store, title, current_price, list_price, discount_percent,
           image_url, product_url, category, is_active
    FROM products
    WHERE is_active = :active AND category = :category
    ORDER BY updated_at ASC, id ASC
"""


class PriceRefresher:
    def __init__(
        self,
        store: Store,
        client: ProductApiClient,
        *,
        settings: PipelineSettings | None = None,
        normalizer: ProductNormalizer | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.settings = settings or client.settings
        self.normalizer = normalizer or ProductNormalizer(
            store=self.settings.store, product_url_base=self.settings.product_url_base
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.deal_threshold = self.settings.deal_threshold

    def is_deal(self, discount_percent: int) -> bool:
        return discount_percent >= self.deal_threshold

    async def refresh_all_prices(self) -> RefreshSummary:
        return await self._refresh_active(None)

    async def refresh_category(self, category: str) -> RefreshSummary:
        return await self._refresh_active(category)

    async def _refresh_active(self, category: str | None) -> RefreshSummary:
        scope = category or "all categories"
        try:
            products_to_refresh = await run_blocking(self.get_active_products, category)
        except StorageError as exc:
            logger.error("Loading active products for %s failed: %s", scope, exc)
            summary = RefreshSummary()
            summary.record_error(None)
            return summary
        logger.info("Refreshing %s active products in %s", len(products_to_refresh), scope)
        summary = await self._refresh_in_batches(products_to_refresh)
        logger.info("Price refresh for %s completed: %s", scope, summary.as_dict())
        return summary

    async def _refresh_in_batches(self, items: Sequence[Product]) -> RefreshSummary:
        summary = RefreshSummary()
        size = self.settings.refresh_batch_size
        for start in range(0, len(items), size):
            summary.merge(await self.refresh_batch(items[start : start + size]))
            if start + size < len(items) and self.settings.refresh_batch_delay > 0:
                await asyncio.sleep(self.settings.refresh_batch_delay)
        return summary

    async def refresh_batch(self, batch: Sequence[Product]) -> RefreshSummary:
        summary = RefreshSummary()
        semaphore = asyncio.Semaphore(max(self.settings.refresh_concurrency, 1))

        async def _refresh(product: Product) -> None:
            async with semaphore:
                try:
                    outcome = await self.retry_policy.call(self.refresh_single_product, product)
                except (PipelineError, httpx.HTTPError) as exc:
                    logger.error("Refreshing product %s (%s) failed: %s", product.id, product.external_id, exc)
                    summary.record_error(product.id)
                    return
                summary.record(outcome)

        await asyncio.gather(*(_refresh(product) for product in batch))
        return summary

    async def refresh_single_product(self, product: Product) -> RefreshOutcome:
        response = await self.client.get_items([product.external_id])
        items = lookup(response, "ItemsResult", "Items")
        if not isinstance(items, list) or not items:
            logger.warning("No upstream data for product %s (%s)", product.id, product.external_id)
            return RefreshOutcome(skipped=True)

        current = self.normalizer.normalize_item(items[0])
        if current is None:
            raise NormalizationError(f"Malformed upstream item for {product.external_id}")
        if not product.price_differs(current.current_price):
            return RefreshOutcome()

        await run_blocking(self._apply_price_change, product.id, current)
        new_deal = False
        if self.is_deal(current.discount_percent):
            new_deal = await run_blocking(self.create_or_update_deal, product.id, current)
        return RefreshOutcome(price_changed=True, new_deal=new_deal)

    def _apply_price_change(self, product_id: int, current: Product) -> None:
        self.store.execute(
            update(products)
            .where(products.c.id == product_id)
            .values(
                current_price=current.current_price,
                list_price=current.list_price,
                discount_percent=current.discount_percent,
                image_url=current.image_url,
                product_url=current.product_url,
            )
        )
        record_price_history(self.store, PriceHistoryEntry.observe(product_id, current, PriceSource.REFRESH))

    def create_or_update_deal(self, product_id: int, current: Product) -> bool:
        """Insert a deal, or update the product's existing one in place.

        Returns True when the deal becomes newly visible: a fresh insert, or a
        previously deactivated deal switched back on.
        """
        deal = Deal.from_product(product_id, current)
        values = {
            "title": deal.title,
            "description": deal.description,
            "original_price": deal.original_price,
            "discounted_price": deal.discounted_price,
            "discount_percentage": deal.discount_percentage,
            "image_url": deal.image_url,
            "deal_url": deal.deal_url,
            "store": deal.store,
            "category": deal.category,
            "is_active": True,
        }
        existing = self.store.query(
            "SELECT id, is_active FROM deals WHERE product_id = :product_id",
            {"product_id": product_id},
        )
        if existing:
            self.store.execute(update(deals).where(deals.c.id == existing[0]["id"]).values(**values))
            reactivated = not existing[0]["is_active"]
            if reactivated:
                logger.info("Reactivated deal %s for product %s", existing[0]["id"], product_id)
            return reactivated
        result = self.store.execute(insert(deals).values(product_id=product_id, **values))
        logger.info("Created deal %s for product %s at %s%% off", result.insert_id, product_id, deal.discount_percentage)
        return True

    def get_active_products(self, category: str | None = None) -> list[Product]:
        if category is None:
            rows = self.store.query(ACTIVE_PRODUCTS_SQL, {"active": True})
        else:
            rows = self.store.query(ACTIVE_PRODUCTS_BY_CATEGORY_SQL, {"active": True, "category": category})
        return [Product.from_row(row) for row in rows]

    def cleanup_expired_deals(self) -> int:
        expired = self.store.query(
            """
            SELECT d.id
            FROM deals d
            JOIN products p ON d.product_id = p.id
            WHERE d.is_active = :active AND p.discount_percent < :threshold
            """,
            {"active": True, "threshold": self.deal_threshold},
        )
        if not expired:
            logger.info("No expired deals to clean up")
            return 0
        deal_ids = [row["id"] for row in expired]
        self.store.execute(update(deals).where(deals.c.id.in_(deal_ids)).values(is_active=False))
        logger.info("Deactivated %s expired deals", len(deal_ids))
        return len(deal_ids)

    def get_stats(self) -> dict[str, dict[str, Any]]:
        product_row = self.store.query(
            select(
                func.count().label("total_products"),
                func.sum(case((products.c.is_active.is_(True), 1), else_=0)).label("active_products"),
                func.avg(products.c.current_price).label("avg_price"),
                func.max(products.c.discount_percent).label("max_discount"),
            )
        )[0]
        deal_row = self.store.query(
            select(
                func.count().label("total_deals"),
                func.sum(case((deals.c.is_active.is_(True), 1), else_=0)).label("active_deals"),
                func.avg(deals.c.discount_percentage).label("avg_deal_discount"),
            )
        )[0]
        history_row = self.store.query(
            select(
                func.count().label("total_records"),
                func.count(distinct(price_history.c.product_id)).label("products_with_history"),
            ).where(price_history.c.observed_at >= start_of_day_utc())
        )[0]
        return {
            "products": {
                "total_products": int(product_row["total_products"] or 0),
                "active_products": int(product_row["active_products"] or 0),
                "avg_price": _as_float(product_row["avg_price"]),
                "max_discount": product_row["max_discount"],
            },
            "deals": {
                "total_deals": int(deal_row["total_deals"] or 0),
                "active_deals": int(deal_row["active_deals"] or 0),
                "avg_deal_discount": _as_float(deal_row["avg_deal_discount"]),
            },
            "price_history": {
                "records_today": int(history_row["total_records"] or 0),
                "products_with_history_today": int(history_row["products_with_history"] or 0),
            },
        }


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    return round(float(value), 2)

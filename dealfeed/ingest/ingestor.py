"""Category-driven bulk product ingestion."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx
from sqlalchemy import insert, update

from dealfeed.config import PipelineSettings
from dealfeed.db.store import Store, run_blocking
from dealfeed.db.tables import price_history, products
from dealfeed.errors import PipelineError, StorageError
from dealfeed.ingest import CategoryKeywords, load_categories
from dealfeed.ingest.models import PriceHistoryEntry, PriceSource, Product
from dealfeed.ingest.normalizer import ProductNormalizer
from dealfeed.ingest.paapi import ProductApiClient
from dealfeed.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_KEYWORD_QUERIES = 10


def record_price_history(store: Store, entry: PriceHistoryEntry) -> None:
    store.execute(
        insert(price_history).values(
            product_id=entry.product_id,
            price=entry.price,
            list_price=entry.list_price,
            discount_percent=entry.discount_percent,
            source=entry.source.value,
        )
    )


class ProductIngestor:
    def __init__(
        self,
        store: Store,
        client: ProductApiClient,
        *,
        settings: PipelineSettings | None = None,
        normalizer: ProductNormalizer | None = None,
        retry_policy: RetryPolicy | None = None,
        categories: dict[str, CategoryKeywords] | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.settings = settings or client.settings
        self.normalizer = normalizer or ProductNormalizer(
            store=self.settings.store, product_url_base=self.settings.product_url_base
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.categories = categories if categories is not None else load_categories()

    async def ingest_category(
        self,
        category: str,
        extra_keywords: Iterable[str] = (),
        max_items: int = 100,
    ) -> list[Product]:
        logger.info("Starting ingestion for category %s (max %s items)", category, max_items)
        stored: list[Product] = []
        queries = self.generate_search_queries(category, extra_keywords)
        for index, query in enumerate(queries):
            remaining = max_items - len(stored)
            if remaining <= 0:
                break
            try:
                batch = await self.retry_policy.call(
                    self.search_and_ingest_batch, query, min(self.settings.ingest_batch_size, remaining)
                )
            except (PipelineError, httpx.HTTPError) as exc:
                logger.warning("Query %r for %s failed: %s", query, category, exc)
                continue
            stored.extend(batch)
            more_queries = index < len(queries) - 1
            if more_queries and len(stored) < max_items and self.settings.ingest_batch_delay > 0:
                await asyncio.sleep(self.settings.ingest_batch_delay)
        logger.info("Completed ingestion for %s: %s products", category, len(stored))
        return stored

    def generate_search_queries(self, category: str, extra_keywords: Iterable[str] = ()) -> list[str]:
        entry = self.categories.get(category)
        base = list(entry.keywords) if entry else [category.lower()]
        popular = list(entry.popular) if entry else []
        keywords = [kw.strip() for kw in [*base, *extra_keywords] if kw and kw.strip()]
        queries = keywords[:MAX_KEYWORD_QUERIES] + popular
        return list(dict.fromkeys(queries))

    async def search_and_ingest_batch(self, query: str, item_count: int = 10) -> list[Product]:
        response = await self.client.search_items(
            {"Keywords": query, "ItemCount": item_count, "SearchIndex": "All"}
        )
        normalized = self.normalizer.normalize_response(response)
        stored: list[Product] = []
        for product in normalized:
            try:
                stored.append(await run_blocking(self.store_single_product, product))
            except StorageError as exc:
                logger.error("Storing product %s failed: %s", product.external_id, exc)
        logger.info("Query %r: %s/%s products stored", query, len(stored), len(normalized))
        return stored

    def store_single_product(self, product: Product) -> Product:
        rows = self.store.query(
            "SELECT id, current_price FROM products WHERE external_id = :external_id AND store = :store",
            {"external_id": product.external_id, "store": product.store},
        )
        values = {
            "title": product.title,
            "current_price": product.current_price,
            "list_price": product.list_price,
            "discount_percent": product.discount_percent,
            "image_url": product.image_url,
            "product_url": product.product_url,
            "category": product.category,
        }
        if rows:
            product_id = rows[0]["id"]
            self.store.execute(update(products).where(products.c.id == product_id).values(**values))
            if product.price_differs(rows[0]["current_price"]):
                record_price_history(self.store, PriceHistoryEntry.observe(product_id, product, PriceSource.INGESTION))
        else:
            result = self.store.execute(
                insert(products).values(
                    external_id=product.external_id, store=product.store, is_active=True, **values
                )
            )
            product_id = result.insert_id
            record_price_history(self.store, PriceHistoryEntry.observe(product_id, product, PriceSource.INGESTION))
        product.id = product_id
        return product

    def get_stats(self) -> dict[str, dict[str, Any]]:
        product_row = self.store.query(
            """
            SELECT COUNT(*) AS total_products,
                   SUM(CASE WHEN is_active = :active THEN 1 ELSE 0 END) AS active_products,
                   COUNT(DISTINCT category) AS categories,
                   AVG(discount_percent) AS avg_discount
            FROM products
            """,
            {"active": True},
        )[0]
        history_total = self.store.scalar("SELECT COUNT(*) AS total_price_records FROM price_history")
        avg_discount = product_row["avg_discount"]
        return {
            "products": {
                "total_products": int(product_row["total_products"] or 0),
                "active_products": int(product_row["active_products"] or 0),
                "categories": int(product_row["categories"] or 0),
                "avg_discount": round(float(avg_discount), 2) if avg_discount is not None else None,
            },
            "price_history": {"total_price_records": int(history_total or 0)},
        }

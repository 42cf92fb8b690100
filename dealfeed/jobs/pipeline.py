"""Scheduled pipeline runs: daily ingestion, hourly refresh, weekly maintenance."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from typing import Any, Sequence

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from dealfeed.config import PipelineSettings
from dealfeed.db.session import create_engine_from_env
from dealfeed.db.store import Store, run_blocking
from dealfeed.errors import PipelineError, StorageError
from dealfeed.ingest import daily_categories
from dealfeed.ingest.ingestor import ProductIngestor
from dealfeed.ingest.paapi import ProductApiClient
from dealfeed.ingest.refresher import PriceRefresher
from dealfeed.utils.dates import utc_now
from dealfeed.utils.log import configure_logging

logger = logging.getLogger(__name__)

DAILY_MAX_ITEMS = 150
CATEGORY_PAUSE_SECONDS = 5.0


@dataclass(slots=True)
class CategoryResult:
    success: bool
    products: int = 0
    error: str | None = None


@dataclass
class Pipeline:
    settings: PipelineSettings
    store: Store
    client: ProductApiClient
    ingestor: ProductIngestor
    refresher: PriceRefresher
    last_run: dict[str, datetime] = field(default_factory=dict)

    async def close(self) -> None:
        await self.client.close()


def build_pipeline(settings: PipelineSettings | None = None, engine: Engine | None = None) -> Pipeline:
    """Wire one client (and so one rate limiter) into both ingestor and refresher."""
    settings = settings or PipelineSettings.from_env()
    store = Store(engine or create_engine_from_env())
    client = ProductApiClient(settings)
    return Pipeline(
        settings=settings,
        store=store,
        client=client,
        ingestor=ProductIngestor(store, client, settings=settings),
        refresher=PriceRefresher(store, client, settings=settings),
    )


async def ingest_categories(
    pipeline: Pipeline,
    categories: Sequence[str],
    keywords: Sequence[str] = (),
    max_items: int = 100,
    pause: float = 0.0,
) -> dict[str, CategoryResult]:
    results: dict[str, CategoryResult] = {}
    for index, category in enumerate(categories):
        try:
            stored = await pipeline.ingestor.ingest_category(category, keywords, max_items)
        except PipelineError as exc:
            logger.error("Ingestion of %s failed: %s", category, exc)
            results[category] = CategoryResult(success=False, error=str(exc))
        else:
            results[category] = CategoryResult(success=True, products=len(stored))
        if pause > 0 and index < len(categories) - 1:
            await asyncio.sleep(pause)
    return results


async def run_daily_ingestion(pipeline: Pipeline, categories: Sequence[str] | None = None) -> dict[str, CategoryResult]:
    targets = list(categories) if categories else daily_categories()
    logger.info("Daily ingestion for %s", ", ".join(targets))
    results = await ingest_categories(pipeline, targets, max_items=DAILY_MAX_ITEMS, pause=CATEGORY_PAUSE_SECONDS)
    pipeline.last_run["ingestion"] = utc_now()
    logger.info("Daily ingestion completed: %s", {name: r.products for name, r in results.items()})
    return results


async def run_hourly_refresh(pipeline: Pipeline) -> dict[str, Any]:
    summary = await pipeline.refresher.refresh_all_prices()
    pipeline.last_run["refresh"] = utc_now()
    if summary.new_deals:
        logger.info("Hourly refresh surfaced %s new deals", summary.new_deals)
    return summary.as_dict()


async def run_weekly_maintenance(pipeline: Pipeline) -> dict[str, Any]:
    cleaned = await run_blocking(pipeline.refresher.cleanup_expired_deals)
    stats = await run_blocking(pipeline.refresher.get_stats)
    pipeline.last_run["cleanup"] = utc_now()
    logger.info("Weekly maintenance: %s deals deactivated", cleaned)
    return {"cleaned_deals": cleaned, "current_stats": stats}


async def run_health_check(pipeline: Pipeline) -> dict[str, Any]:
    try:
        ingestor_stats = await run_blocking(pipeline.ingestor.get_stats)
        refresher_stats = await run_blocking(pipeline.refresher.get_stats)
    except StorageError as exc:
        logger.error("Health check failed: %s", exc)
        return {"timestamp": utc_now().isoformat(), "healthy": False, "error": str(exc)}
    return {
        "timestamp": utc_now().isoformat(),
        "healthy": True,
        "stats": {
            "products": ingestor_stats["products"],
            "deals": refresher_stats["deals"],
            "price_history": refresher_stats["price_history"],
        },
    }


COMMANDS = {
    "daily": run_daily_ingestion,
    "hourly": run_hourly_refresh,
    "weekly": run_weekly_maintenance,
    "health": run_health_check,
}


async def run_command(command: str) -> Any:
    load_dotenv()
    pipeline = build_pipeline()
    try:
        return await COMMANDS[command](pipeline)
    finally:
        await pipeline.close()


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Product ingestion and price-refresh runs")
    parser.add_argument("command", choices=sorted(COMMANDS))
    args = parser.parse_args(argv)
    configure_logging()
    result = asyncio.run(run_command(args.command))
    print(json.dumps(result, indent=2, default=_json_default))


def _json_default(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    return str(value)


if __name__ == "__main__":
    main()

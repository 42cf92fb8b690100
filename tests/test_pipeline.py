import json

import pytest

from conftest import FakeApiClient, load_fixture, paapi_item
from dealfeed.errors import ConfigurationError, StorageError
from dealfeed.ingest import daily_categories, load_categories
from dealfeed.ingest.ingestor import ProductIngestor
from dealfeed.ingest.refresher import PriceRefresher
from dealfeed.jobs import pipeline as jobs
from dealfeed.utils.retry import RetryPolicy


@pytest.fixture()
def fake_pipeline(store, settings, categories):
    client = FakeApiClient(settings, search={"*": load_fixture("paapi/search_electronics.json")})
    retry = RetryPolicy(initial_delay=0, jitter=0)
    return jobs.Pipeline(
        settings=settings,
        store=store,
        client=client,
        ingestor=ProductIngestor(store, client, settings=settings, retry_policy=retry, categories=categories),
        refresher=PriceRefresher(store, client, settings=settings, retry_policy=retry),
    )


def test_bundled_categories():
    categories = load_categories()
    assert "Electronics" in categories
    assert categories["Electronics"].popular
    assert daily_categories() == ["Electronics", "Fashion", "Home", "Books", "Sports", "Beauty"]


def test_build_pipeline_shares_one_client(engine, settings):
    built = jobs.build_pipeline(settings, engine=engine)
    assert built.ingestor.client is built.client
    assert built.refresher.client is built.client


def test_build_pipeline_requires_credentials(engine, monkeypatch):
    for name in ("AMAZON_ACCESS_KEY", "AMAZON_SECRET_KEY", "AMAZON_ASSOCIATE_TAG"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ConfigurationError):
        jobs.build_pipeline(engine=engine)


@pytest.mark.asyncio
async def test_daily_ingestion(fake_pipeline, monkeypatch):
    monkeypatch.setattr(jobs, "CATEGORY_PAUSE_SECONDS", 0)
    monkeypatch.setattr(jobs, "DAILY_MAX_ITEMS", 3)

    results = await jobs.run_daily_ingestion(fake_pipeline, ["Electronics", "Gadgets"])

    assert results["Electronics"].success
    assert results["Electronics"].products == 3
    assert results["Gadgets"].products == 3
    assert fake_pipeline.store.scalar("SELECT COUNT(*) FROM products") == 3
    assert "ingestion" in fake_pipeline.last_run


@pytest.mark.asyncio
async def test_ingest_categories_reports_failures(fake_pipeline, monkeypatch):
    async def broken(category, keywords=(), max_items=100):
        raise StorageError("database unavailable")

    monkeypatch.setattr(fake_pipeline.ingestor, "ingest_category", broken)

    results = await jobs.ingest_categories(fake_pipeline, ["Electronics"])

    assert results["Electronics"].success is False
    assert "database unavailable" in results["Electronics"].error


@pytest.mark.asyncio
async def test_hourly_refresh_and_weekly_maintenance(fake_pipeline, make_product, make_deal):
    product_id = make_product("B0HOUR", price=100, list_price=100)
    stale_id = make_product("B0STALE", price=99, list_price=100)
    make_deal(stale_id)
    fake_pipeline.client.item_responses["B0HOUR"] = {
        "ItemsResult": {"Items": [paapi_item("B0HOUR", price=5000, list_price=10000)]}
    }

    summary = await jobs.run_hourly_refresh(fake_pipeline)
    assert summary["price_changes"] == 1
    assert summary["new_deals"] == 1
    assert summary["skipped"] == 1

    maintenance = await jobs.run_weekly_maintenance(fake_pipeline)
    assert maintenance["cleaned_deals"] == 1
    assert maintenance["current_stats"]["deals"]["active_deals"] == 1
    assert fake_pipeline.store.scalar(
        "SELECT is_active FROM deals WHERE product_id = :id", {"id": product_id}
    )


@pytest.mark.asyncio
async def test_health_check(fake_pipeline, make_product):
    make_product("B0HEALTH", price=80, list_price=100)

    report = await jobs.run_health_check(fake_pipeline)

    assert report["healthy"] is True
    assert report["stats"]["products"]["total_products"] == 1
    assert set(report["stats"]) == {"products", "deals", "price_history"}


@pytest.mark.asyncio
async def test_health_check_reports_storage_failure(fake_pipeline, monkeypatch):
    def failing_stats():
        raise StorageError("connection refused")

    monkeypatch.setattr(fake_pipeline.ingestor, "get_stats", failing_stats)

    report = await jobs.run_health_check(fake_pipeline)

    assert report["healthy"] is False
    assert "connection refused" in report["error"]


def test_cli_prints_json(monkeypatch, capsys):
    async def fake_run_command(command):
        return {"command": command, "result": jobs.CategoryResult(success=True, products=2)}

    monkeypatch.setattr(jobs, "run_command", fake_run_command)

    jobs.main(["health"])

    output = json.loads(capsys.readouterr().out)
    assert output == {"command": "health", "result": {"success": True, "products": 2, "error": None}}

import asyncio
import json
from decimal import Decimal

import httpx
import pytest
import respx

from conftest import FakeApiClient, load_fixture, paapi_item
from dealfeed.errors import UpstreamApiError
from dealfeed.ingest.ingestor import ProductIngestor
from dealfeed.ingest.normalizer import ProductNormalizer
from dealfeed.ingest.paapi import ProductApiClient
from dealfeed.utils.retry import RetryPolicy

NO_WAIT = RetryPolicy(initial_delay=0, jitter=0)


def build_ingestor(store, settings, categories, **responses):
    client = FakeApiClient(settings, **responses)
    return ProductIngestor(store, client, settings=settings, retry_policy=NO_WAIT, categories=categories), client


def history_rows(store, external_id):
    return store.query(
        """
        SELECT h.price, h.source FROM price_history h
        JOIN products p ON p.id = h.product_id
        WHERE p.external_id = :external_id
        ORDER BY h.id
        """,
        {"external_id": external_id},
    )


@pytest.mark.asyncio
async def test_ingest_category_stores_all_items(store, settings, categories):
    ingestor, client = build_ingestor(
        store, settings, categories, search={"*": load_fixture("paapi/search_electronics.json")}
    )
    stored = await ingestor.ingest_category("Electronics", max_items=3)

    assert [p.external_id for p in stored] == ["B0ELEC0001", "B0ELEC0002", "B0ELEC0003"]
    assert all(p.id for p in stored)
    assert len(client.search_calls) == 1
    assert client.search_calls[0]["Keywords"] == "phone"
    assert client.search_calls[0]["ItemCount"] == 3

    rows = store.query("SELECT external_id, current_price, discount_percent, is_active FROM products ORDER BY external_id")
    assert len(rows) == 3
    unpriced = rows[1]
    assert unpriced["external_id"] == "B0ELEC0002"
    assert Decimal(str(unpriced["current_price"])) == Decimal("0.00")
    assert unpriced["discount_percent"] == 0
    assert all(row["is_active"] for row in rows)
    assert store.scalar("SELECT COUNT(*) FROM price_history") == 3


@pytest.mark.asyncio
async def test_failed_query_does_not_abort_category(store, settings, categories):
    ingestor, client = build_ingestor(
        store,
        settings,
        categories,
        search={
            "phone": UpstreamApiError(500, "internal failure", operation="SearchItems"),
            "*": load_fixture("paapi/search_electronics.json"),
        },
    )
    stored = await ingestor.ingest_category("Electronics", max_items=3)

    assert len(stored) == 3
    assert [call["Keywords"] for call in client.search_calls] == ["phone", "laptop"]


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_skipped(store, settings, categories):
    ingestor, client = build_ingestor(
        store, settings, categories, search={"phone": httpx.ConnectError("refused"), "*": {}}
    )
    stored = await ingestor.ingest_category("Electronics", max_items=5)

    assert stored == []
    keywords = [call["Keywords"] for call in client.search_calls]
    assert keywords.count("phone") == 3
    assert keywords[3:] == ["laptop", "earbuds", "smartphone"]


def test_search_queries_include_popular_terms_without_duplicates(store, settings, categories):
    ingestor, _ = build_ingestor(store, settings, categories)
    queries = ingestor.generate_search_queries("Electronics", ["tablet", " ", "phone"])
    assert queries == ["phone", "laptop", "earbuds", "tablet", "smartphone"]
    assert ingestor.generate_search_queries("Garden") == ["garden"]


def test_store_single_product_is_idempotent(store, settings, categories):
    ingestor, _ = build_ingestor(store, settings, categories)
    normalizer = ProductNormalizer()
    product = normalizer.normalize_item(paapi_item("B0IDEM", title="Kettle", price=129900, list_price=199900))

    first = ingestor.store_single_product(product)
    again = normalizer.normalize_item(paapi_item("B0IDEM", title="Kettle", price=129900, list_price=199900))
    second = ingestor.store_single_product(again)

    assert first.id == second.id
    assert store.scalar("SELECT COUNT(*) FROM products") == 1
    assert len(history_rows(store, "B0IDEM")) == 1


def test_store_single_product_records_price_change(store, settings, categories):
    ingestor, _ = build_ingestor(store, settings, categories)
    normalizer = ProductNormalizer()
    ingestor.store_single_product(normalizer.normalize_item(paapi_item("B0MOVE", price=100000, list_price=150000)))
    ingestor.store_single_product(
        normalizer.normalize_item(paapi_item("B0MOVE", title="Renamed", price=90000, list_price=150000))
    )

    history = history_rows(store, "B0MOVE")
    assert [Decimal(str(row["price"])) for row in history] == [Decimal("1000.00"), Decimal("900.00")]
    assert {row["source"] for row in history} == {"ingestion"}
    row = store.query("SELECT title, discount_percent FROM products WHERE external_id = 'B0MOVE'")[0]
    assert row["title"] == "Renamed"
    assert row["discount_percent"] == 40


def test_update_keeps_deactivated_products_inactive(store, settings, categories, make_product):
    make_product("B0GONE", price=100, list_price=100, is_active=False)
    ingestor, _ = build_ingestor(store, settings, categories)
    ingestor.store_single_product(ProductNormalizer().normalize_item(paapi_item("B0GONE", price=8000, list_price=10000)))

    assert store.scalar("SELECT is_active FROM products WHERE external_id = 'B0GONE'") in (0, False)


def test_get_stats(store, settings, categories, make_product):
    make_product("B0S1", price=70, list_price=100)
    make_product("B0S2", price=90, list_price=100, category="Home", is_active=False)
    ingestor, _ = build_ingestor(store, settings, categories)

    stats = ingestor.get_stats()
    assert stats["products"] == {
        "total_products": 2,
        "active_products": 1,
        "categories": 2,
        "avg_discount": 20.0,
    }
    assert stats["price_history"] == {"total_price_records": 0}


@pytest.mark.asyncio
async def test_non_json_search_response_only_skips_that_query(store, settings, categories):
    def respond(request):
        if json.loads(request.content)["Keywords"] == "phone":
            return httpx.Response(200, text="<html>gateway</html>")
        return httpx.Response(200, json=load_fixture("paapi/search_electronics.json"))

    async with respx.mock() as router:
        route = router.post("https://webservices.amazon.in/paapi5/searchitems").mock(side_effect=respond)
        async with httpx.AsyncClient() as session:
            client = ProductApiClient(settings, session=session)
            ingestor = ProductIngestor(store, client, retry_policy=NO_WAIT, categories=categories)
            stored = await ingestor.ingest_category("Electronics", max_items=3)

    assert len(stored) == 3
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_batch_delay_only_between_queries(store, settings, categories, monkeypatch):
    settings.ingest_batch_delay = 0.25
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", record_sleep)
    ingestor, client = build_ingestor(store, settings, categories, search={"*": {}})

    await ingestor.ingest_category("Electronics", max_items=5)

    assert len(client.search_calls) == 4
    assert delays.count(0.25) == 3

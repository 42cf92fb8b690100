import json
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from dealfeed.config import PipelineSettings
from dealfeed.db.store import Store
from dealfeed.db.tables import deals, metadata, products
from dealfeed.ingest import CategoryKeywords
from dealfeed.ingest.models import compute_discount_percent

FIXTURES = Path(__file__).parent / "fixtures" / "http"


def load_fixture(path: str) -> dict:
    return json.loads((FIXTURES / path).read_text())


def paapi_item(asin, *, title="Test Product", price=None, list_price=None, binding="Electronics"):
    """Build a PA-API item; prices are in minor units."""
    item = {
        "ASIN": asin,
        "ItemInfo": {
            "Title": {"DisplayValue": title},
            "Classifications": {"Binding": {"DisplayValue": binding}},
        },
    }
    if price is not None:
        listing = {"Price": {"Amount": price, "Currency": "INR"}}
        if list_price is not None:
            listing["SavingBasis"] = {"Amount": list_price, "Currency": "INR"}
        item["Offers"] = {"Listings": [listing]}
    return item


class FakeApiClient:
    """Stands in for ProductApiClient; responses are queued per operation."""

    def __init__(self, settings, *, search=None, items=None):
        self.settings = settings
        self.search_responses = search or {}
        self.item_responses = items or {}
        self.search_calls = []
        self.get_items_calls = []

    async def search_items(self, params=None):
        self.search_calls.append(dict(params or {}))
        response = self.search_responses.get(params["Keywords"], self.search_responses.get("*"))
        if isinstance(response, Exception):
            raise response
        return response or {}

    async def get_items(self, item_ids, resources=None):
        ids = list(item_ids)
        self.get_items_calls.append(ids)
        response = self.item_responses.get(ids[0])
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response or {}

    async def close(self):
        return None


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    return Store(engine)


@pytest.fixture()
def settings():
    return PipelineSettings(
        access_key="AKIDEXAMPLE",
        secret_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        partner_tag="deals-21",
        ingest_batch_delay=0,
        refresh_batch_delay=0,
        retry_initial_delay=0,
        requests_per_second=1000,
    )


@pytest.fixture()
def categories():
    return {
        "Electronics": CategoryKeywords(
            name="Electronics",
            keywords=["phone", "laptop", "earbuds"],
            popular=["smartphone", "laptop"],
        ),
    }


@pytest.fixture()
def make_product(store):
    def _make(external_id, *, price, list_price, category="Electronics", title=None, is_active=True):
        result = store.execute(
            insert(products).values(
                external_id=external_id,
                store="amazon",
                title=title or f"Product {external_id}",
                current_price=Decimal(str(price)),
                list_price=Decimal(str(list_price)),
                discount_percent=compute_discount_percent(price, list_price),
                product_url=f"https://amazon.in/dp/{external_id}",
                category=category,
                is_active=is_active,
            )
        )
        return result.insert_id

    return _make


@pytest.fixture()
def make_deal(store):
    def _make(product_id, *, is_active=True, discount=30):
        result = store.execute(
            insert(deals).values(
                product_id=product_id,
                title="Seeded deal",
                description="Great deal on Seeded deal",
                original_price=Decimal("100.00"),
                discounted_price=Decimal("70.00"),
                discount_percentage=discount,
                deal_url="https://amazon.in/dp/seeded",
                store="amazon",
                category="Electronics",
                is_active=is_active,
            )
        )
        return result.insert_id

    return _make

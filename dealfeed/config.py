"""Environment-sourced pipeline settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from dealfeed.errors import ConfigurationError

DEFAULT_RESOURCES = (
    "ItemInfo.Title",
    "ItemInfo.ByLineInfo",
    "ItemInfo.Classifications",
    "ItemInfo.ProductInfo",
    "Offers.Listings.Price",
    "Offers.Listings.SavingBasis",
    "Offers.Listings.MerchantInfo",
    "Images.Primary.Small",
    "Images.Primary.Medium",
    "Images.Primary.Large",
)

REQUIRED_ENV = {
    "access_key": "AMAZON_ACCESS_KEY",
    "secret_key": "AMAZON_SECRET_KEY",
    "partner_tag": "AMAZON_ASSOCIATE_TAG",
}


def _number(env: Mapping[str, str], name: str, default: int | float, kind: type) -> int | float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be {'an integer' if kind is int else 'a number'}, got {raw!r}") from exc


@dataclass(slots=True)
class PipelineSettings:
    access_key: str | None = None
    secret_key: str | None = None
    partner_tag: str | None = None
    partner_type: str = "Associates"
    host: str = "webservices.amazon.in"
    region: str = "eu-west-1"
    service: str = "ProductAdvertisingAPI"
    marketplace: str = "www.amazon.in"
    store: str = "amazon"
    product_url_base: str = "https://amazon.in/dp/"
    requests_per_second: float = 1.0
    timeout: float = 30.0
    default_item_count: int = 10
    resources: tuple[str, ...] = field(default=DEFAULT_RESOURCES)
    deal_threshold: int = 15
    ingest_batch_size: int = 10
    ingest_batch_delay: float = 2.0
    refresh_batch_size: int = 20
    refresh_batch_delay: float = 1.0
    refresh_concurrency: int = 1
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_backoff: float = 2.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineSettings":
        env = os.environ if environ is None else environ
        return cls(
            access_key=env.get("AMAZON_ACCESS_KEY"),
            secret_key=env.get("AMAZON_SECRET_KEY"),
            partner_tag=env.get("AMAZON_ASSOCIATE_TAG"),
            host=env.get("AMAZON_HOST", "webservices.amazon.in"),
            region=env.get("AMAZON_REGION", "eu-west-1"),
            service=env.get("AMAZON_SERVICE", "ProductAdvertisingAPI"),
            marketplace=env.get("AMAZON_MARKETPLACE", "www.amazon.in"),
            product_url_base=env.get("AMAZON_PRODUCT_URL_BASE", "https://amazon.in/dp/"),
            requests_per_second=_number(env, "AMAZON_REQUESTS_PER_SECOND", 1, float),
            timeout=_number(env, "AMAZON_TIMEOUT_SECONDS", 30, float),
            deal_threshold=_number(env, "DEAL_THRESHOLD", 15, int),
            ingest_batch_size=_number(env, "INGEST_BATCH_SIZE", 10, int),
            ingest_batch_delay=_number(env, "INGEST_BATCH_DELAY", 2.0, float),
            refresh_batch_size=_number(env, "REFRESH_BATCH_SIZE", 20, int),
            refresh_batch_delay=_number(env, "REFRESH_BATCH_DELAY", 1.0, float),
            refresh_concurrency=_number(env, "REFRESH_CONCURRENCY", 1, int),
            retry_max_attempts=_number(env, "RETRY_MAX_ATTEMPTS", 3, int),
            retry_initial_delay=_number(env, "RETRY_INITIAL_DELAY", 1.0, float),
            retry_backoff=_number(env, "RETRY_BACKOFF", 2.0, float),
        )

    def missing_credentials(self) -> list[str]:
        return [env_name for attr, env_name in REQUIRED_ENV.items() if not getattr(self, attr)]

    def validate(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing required environment variable(s): {', '.join(missing)}")
        if self.requests_per_second <= 0:
            raise ConfigurationError("AMAZON_REQUESTS_PER_SECOND must be positive")
        if not 0 <= self.deal_threshold <= 100:
            raise ConfigurationError("DEAL_THRESHOLD must be an integer percentage between 0 and 100")
        if self.ingest_batch_size < 1 or self.refresh_batch_size < 1:
            raise ConfigurationError("Batch sizes must be at least 1")

"""FastAPI endpoints that trigger pipeline runs on demand."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from itsdangerous import BadSignature
from pydantic import BaseModel, Field

from dealfeed.db.store import run_blocking
from dealfeed.errors import PipelineError, StorageError
from dealfeed.ingest.normalizer import lookup
from dealfeed.jobs.pipeline import Pipeline, build_pipeline, ingest_categories
from dealfeed.utils.tokens import load_admin_token

logger = logging.getLogger(__name__)

PREFIX = "/internal/amazon"

app = FastAPI(title="Deal Feed Pipeline API")


class IngestRequest(BaseModel):
    categories: list[str] = Field(..., min_length=1)
    keywords: list[str] = Field(default_factory=list)
    max_items: int = Field(100, ge=1, le=500)


class RefreshRequest(BaseModel):
    category: str | None = None


@lru_cache(maxsize=1)
def get_pipeline() -> Pipeline:
    return build_pipeline()


def require_admin(authorization: str | None = Header(None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        data = load_admin_token(token.strip())
    except (BadSignature, TypeError) as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    return str(data["sub"])


@app.get(f"{PREFIX}/stats")
async def stats(admin: str = Depends(require_admin), pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    try:
        ingestor_stats = await run_blocking(pipeline.ingestor.get_stats)
        refresher_stats = await run_blocking(pipeline.refresher.get_stats)
    except StorageError as exc:
        logger.error("Stats query failed: %s", exc)
        raise HTTPException(status_code=503, detail="Statistics unavailable") from exc
    return {"success": True, "data": {"ingestor": ingestor_stats, "refresher": refresher_stats}}


@app.post(f"{PREFIX}/ingest")
async def ingest(
    payload: IngestRequest,
    admin: str = Depends(require_admin),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    logger.info("Ingestion of %s requested by %s", payload.categories, admin)
    results = await ingest_categories(pipeline, payload.categories, payload.keywords, payload.max_items)
    return {
        "success": True,
        "data": {
            name: {"success": result.success, "products": result.products, "error": result.error}
            for name, result in results.items()
        },
    }


@app.post(f"{PREFIX}/refresh")
async def refresh(
    payload: RefreshRequest | None = None,
    admin: str = Depends(require_admin),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    category = payload.category if payload else None
    if category:
        summary = await pipeline.refresher.refresh_category(category)
    else:
        summary = await pipeline.refresher.refresh_all_prices()
    return {"success": True, "data": summary.as_dict()}


@app.post(f"{PREFIX}/cleanup")
async def cleanup(admin: str = Depends(require_admin), pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    try:
        cleaned = await run_blocking(pipeline.refresher.cleanup_expired_deals)
    except StorageError as exc:
        logger.error("Deal cleanup failed: %s", exc)
        return {"success": False, "error": str(exc)}
    return {"success": True, "data": {"cleaned_deals": cleaned}}


@app.get(f"{PREFIX}/price-history/{{product_id}}")
async def product_price_history(
    product_id: int,
    limit: int = Query(100, ge=1, le=1000),
    admin: str = Depends(require_admin),
    pipeline: Pipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    rows = await run_blocking(
        pipeline.store.query,
        """
        SELECT id, product_id, price, list_price, discount_percent, source, observed_at
        FROM price_history
        WHERE product_id = :product_id
        ORDER BY observed_at DESC, id DESC
        LIMIT :limit
        """,
        {"product_id": product_id, "limit": limit},
    )
    return {"success": True, "data": rows}


@app.post(f"{PREFIX}/test-connection")
async def connection_check(admin: str = Depends(require_admin), pipeline: Pipeline = Depends(get_pipeline)) -> dict[str, Any]:
    try:
        response = await pipeline.client.search_items({"Keywords": "test", "ItemCount": 1, "SearchIndex": "All"})
    except (PipelineError, httpx.HTTPError) as exc:
        logger.warning("Connection test failed: %s", exc)
        return {"success": False, "error": "Connection test failed", "details": str(exc)}
    items = lookup(response, "SearchResult", "Items") or []
    return {"success": True, "data": {"connection": "successful", "response_items": len(items)}}

"""Signed client for the Product Advertising API (PA-API 5.0)."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping
from urllib.parse import quote

import httpx

from dealfeed.config import PipelineSettings
from dealfeed.errors import ConfigurationError, UpstreamApiError, UpstreamTimeoutError
from dealfeed.utils.dates import amz_date, utc_now
from dealfeed.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
SIGNED_HEADERS = "host;x-amz-date"
TARGET_PREFIX = "com.amazon.paapi5.v1.ProductAdvertisingAPIv1"

OPERATION_PATHS = {
    "SearchItems": "/paapi5/searchitems",
    "GetItems": "/paapi5/getitems",
    "GetBrowseNodes": "/paapi5/getbrowsenodes",
}


@dataclass(slots=True)
class SignatureMaterial:
    signature: str
    amz_date: str
    credential_scope: str
    signed_headers: str
    algorithm: str = ALGORITHM

    def authorization(self, access_key: str) -> str:
        return (
            f"{self.algorithm} Credential={access_key}/{self.credential_scope}, "
            f"SignedHeaders={self.signed_headers}, Signature={self.signature}"
        )


def _sha256_hex(payload: str | bytes) -> str:
    data = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hashlib.sha256(data).hexdigest()


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def canonical_query_string(params: Mapping[str, Any] | None) -> str:
    if not params:
        return ""
    return "&".join(
        f"{quote(str(key), safe='-_.~')}={quote(str(params[key]), safe='-_.~')}"
        for key in sorted(params)
    )


def derive_signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    k_date = _hmac(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, "aws4_request")


class ProductApiClient:
    def __init__(
        self,
        settings: PipelineSettings,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        settings.validate()
        self.settings = settings
        self._session = session or httpx.AsyncClient(timeout=settings.timeout)
        self._rate_limiter = rate_limiter or RateLimiter(rate=settings.requests_per_second)

    async def close(self) -> None:
        await self._session.aclose()

    @property
    def base_url(self) -> str:
        return f"https://{self.settings.host}"

    def sign(
        self,
        method: str,
        path: str,
        query_params: Mapping[str, Any] | None,
        body: str | bytes,
        *,
        timestamp: datetime | None = None,
    ) -> SignatureMaterial:
        if not self.settings.access_key or not self.settings.secret_key:
            raise ConfigurationError("Cannot sign request without AMAZON_ACCESS_KEY and AMAZON_SECRET_KEY")
        request_date = amz_date(timestamp or utc_now())
        date_stamp = request_date[:8]
        canonical_request = "\n".join(
            [
                method.upper(),
                path,
                canonical_query_string(query_params),
                f"host:{self.settings.host}\nx-amz-date:{request_date}\n",
                SIGNED_HEADERS,
                _sha256_hex(body),
            ]
        )
        credential_scope = f"{date_stamp}/{self.settings.region}/{self.settings.service}/aws4_request"
        string_to_sign = "\n".join([ALGORITHM, request_date, credential_scope, _sha256_hex(canonical_request)])
        signing_key = derive_signing_key(self.settings.secret_key, date_stamp, self.settings.region, self.settings.service)
        signature = hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
        return SignatureMaterial(
            signature=signature,
            amz_date=request_date,
            credential_scope=credential_scope,
            signed_headers=SIGNED_HEADERS,
        )

    async def enforce_rate_limit(self) -> None:
        await self._rate_limiter.wait()

    async def search_items(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        payload = {
            "SearchIndex": "All",
            "ItemCount": self.settings.default_item_count,
            "Resources": list(self.settings.resources),
            **(params or {}),
        }
        return await self._request("SearchItems", payload)

    async def get_items(self, item_ids: Iterable[str], resources: Iterable[str] | None = None) -> dict[str, Any]:
        payload = {
            "ItemIds": list(item_ids),
            "ItemIdType": "ASIN",
            "Resources": list(resources) if resources else list(self.settings.resources),
        }
        return await self._request("GetItems", payload)

    async def get_browse_nodes(self, browse_node_ids: Iterable[str]) -> dict[str, Any]:
        payload = {
            "BrowseNodeIds": list(browse_node_ids),
            "Resources": ["BrowseNodes.Ancestor", "BrowseNodes.Children"],
        }
        return await self._request("GetBrowseNodes", payload)

    async def _request(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
        path = OPERATION_PATHS[operation]
        body = json.dumps(
            {
                **params,
                "PartnerTag": self.settings.partner_tag,
                "PartnerType": self.settings.partner_type,
                "Marketplace": self.settings.marketplace,
            }
        )
        await self.enforce_rate_limit()
        material = self.sign("POST", path, {}, body)
        headers = {
            "host": self.settings.host,
            "x-amz-date": material.amz_date,
            "authorization": material.authorization(self.settings.access_key),
            "content-type": "application/json; charset=utf-8",
            "content-encoding": "amz-1.0",
            "x-amz-target": f"{TARGET_PREFIX}.{operation}",
        }
        logger.debug("PA-API %s %s", operation, path)
        try:
            response = await self._session.post(
                f"{self.base_url}{path}",
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self.settings.timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("PA-API %s timed out after %ss", operation, self.settings.timeout)
            raise UpstreamTimeoutError(operation, self.settings.timeout) from exc
        if not response.is_success:
            logger.warning("PA-API %s failed with %s", operation, response.status_code)
            raise UpstreamApiError(response.status_code, response.text, operation=operation)
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("PA-API %s returned a non-JSON body", operation)
            raise UpstreamApiError(response.status_code, response.text, operation=operation) from exc

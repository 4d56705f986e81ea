"""Shopify Admin REST API client.

Acts as both the order store and the product metadata store for the booking
pipeline.

Required env vars:
  SHOPIFY_STORE_URL: e.g. my-shop.myshopify.com
  SHOPIFY_ACCESS_TOKEN: Admin API access token

Optional:
  SHOPIFY_API_VERSION: defaults to 2023-10
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from booking.models import Metafield, RawOrder
from booking.query import DEFAULT_ORDER_LIMIT, clamp_limit
from config import DEFAULT_SHOPIFY_API_VERSION, Settings
from exceptions import ConfigurationError, ResourceNotFoundError, ShopifyError
from observability.metrics import upstream_errors_total, upstream_request_duration_seconds

logger = logging.getLogger(__name__)

ORDER_FIELDS = (
    "id,order_number,name,email,customer,line_items,created_at,"
    "financial_status,fulfillment_status,note_attributes"
)
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ShopifyClient:
    def __init__(
        self,
        store_url: Optional[str],
        access_token: Optional[str],
        api_version: str = DEFAULT_SHOPIFY_API_VERSION,
        timeout: float = 10.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_url = store_url
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._transport = transport

        if not self.configured:
            logger.warning("[SHOPIFY] SHOPIFY_STORE_URL or SHOPIFY_ACCESS_TOKEN not set")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShopifyClient":
        return cls(
            settings.shopify_store_url,
            settings.shopify_access_token,
            api_version=settings.shopify_api_version,
            timeout=settings.http_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.store_url and self.access_token)

    @property
    def base_url(self) -> str:
        return f"https://{self.store_url}/admin/api/{self.api_version}"

    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token or "",
            "Content-Type": "application/json",
        }

    async def _get(self, path: str, operation: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON resource. 404 -> ResourceNotFoundError, anything else failing -> ShopifyError."""
        if not self.configured:
            raise ConfigurationError("Shopify store is not configured")

        start = time.time()
        try:
            for attempt in range(self.max_retries):
                try:
                    async with httpx.AsyncClient(
                        base_url=self.base_url,
                        headers=self._headers(),
                        timeout=self.timeout,
                        transport=self._transport,
                    ) as client:
                        response = await client.get(path, params=params)
                except httpx.RequestError as e:
                    if attempt + 1 < self.max_retries:
                        wait_time = 2 ** attempt
                        logger.warning(f"[SHOPIFY] Network error on {operation}: {e}. Retrying in {wait_time}s")
                        await asyncio.sleep(wait_time)
                        continue
                    upstream_errors_total.labels(service="shopify", operation=operation, error_type="network").inc()
                    raise ShopifyError(f"Shopify unreachable: {type(e).__name__}") from e

                if response.status_code == 404:
                    raise ResourceNotFoundError(
                        f"Shopify resource not found: {path}",
                        detail={"path": path},
                    )

                if response.status_code in RETRYABLE_STATUS and attempt + 1 < self.max_retries:
                    retry_after = _retry_after(response, default=2 ** attempt)
                    logger.warning(
                        f"[SHOPIFY] {operation} failed with {response.status_code}. "
                        f"Retrying in {retry_after}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(retry_after)
                    continue

                if response.status_code >= 400:
                    upstream_errors_total.labels(
                        service="shopify", operation=operation, error_type=str(response.status_code)
                    ).inc()
                    raise ShopifyError(
                        f"Shopify {operation} failed with status {response.status_code}",
                        detail={"status_code": response.status_code, "errors": _errors_of(response)},
                    )

                try:
                    data = response.json()
                except ValueError as e:
                    upstream_errors_total.labels(service="shopify", operation=operation, error_type="decode").inc()
                    raise ShopifyError(f"Shopify {operation} returned invalid JSON") from e
                if not isinstance(data, dict):
                    upstream_errors_total.labels(service="shopify", operation=operation, error_type="decode").inc()
                    raise ShopifyError(
                        f"Shopify {operation} returned a non-object body",
                        detail={"body_type": type(data).__name__},
                    )
                return data

            raise ShopifyError(f"Shopify {operation} failed after {self.max_retries} attempts")
        finally:
            upstream_request_duration_seconds.labels(service="shopify", operation=operation).observe(
                time.time() - start
            )

    async def fetch_orders(
        self,
        *,
        email: Optional[str] = None,
        status: str = "any",
        limit: int = DEFAULT_ORDER_LIMIT,
    ) -> List[RawOrder]:
        params: Dict[str, Any] = {
            "status": status or "any",
            "limit": clamp_limit(limit),
            "fields": ORDER_FIELDS,
        }
        if email:
            params["email"] = email

        data = await self._get("/orders.json", "fetch_orders", params=params)
        return [_parse_order(raw) for raw in data.get("orders") or []]

    async def fetch_order(self, order_id: Union[int, str]) -> RawOrder:
        try:
            data = await self._get(f"/orders/{order_id}.json", "fetch_order")
        except ResourceNotFoundError:
            raise ResourceNotFoundError(f"Order {order_id} not found", detail={"order_id": str(order_id)})

        raw = data.get("order")
        if not raw:
            raise ResourceNotFoundError(f"Order {order_id} not found", detail={"order_id": str(order_id)})
        return _parse_order(raw)

    async def fetch_product_metafields(self, product_id: Union[int, str]) -> List[Metafield]:
        data = await self._get(f"/products/{product_id}/metafields.json", "fetch_product_metafields")
        try:
            return [Metafield.model_validate(raw) for raw in data.get("metafields") or [] if isinstance(raw, dict)]
        except PydanticValidationError as e:
            raise ShopifyError(
                "Shopify returned malformed metafields",
                detail={"product_id": str(product_id)},
            ) from e

    async def fetch_product_tags(self, product_id: Union[int, str]) -> List[str]:
        data = await self._get(f"/products/{product_id}.json", "fetch_product_tags", params={"fields": "id,tags"})
        product = data.get("product")
        tags = (product.get("tags") if isinstance(product, dict) else None) or ""
        if isinstance(tags, list):
            return [str(tag).strip() for tag in tags if str(tag).strip()]
        return [tag.strip() for tag in str(tags).split(",") if tag.strip()]


def _parse_order(raw: Dict[str, Any]) -> RawOrder:
    try:
        return RawOrder.model_validate(raw)
    except PydanticValidationError as e:
        raise ShopifyError(
            "Shopify returned a malformed order",
            detail={"order_id": str(raw.get("id")) if isinstance(raw, dict) else None, "errors": e.error_count()},
        ) from e


def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except (TypeError, ValueError):
        return default


def _errors_of(response: httpx.Response) -> Any:
    try:
        return response.json().get("errors")
    except (ValueError, AttributeError):
        return response.text[:200]

"""Builders for raw Shopify payloads and in-memory upstream fakes."""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from booking.models import Metafield, RawOrder
from exceptions import ResourceNotFoundError, ShopifyError
from services.bookingkit import TokenBundle

GLOBAL_KEY = "global-test-key"
LLAMAS_KEY = "llamas-test-key"
WEBHOOK_SECRET = "whsec-test"

ROME_SCHEDULE = "30 nov 2025, 17:00 - 18:30 (Europe/Rome)"


def make_order(
    order_id: Union[int, str] = 1001,
    *,
    schedule: Optional[str] = ROME_SCHEDULE,
    internal_id: Optional[str] = "cow-1001",
    integrity: Optional[str] = "integrity-1001",
    name: str = "Llama Trek",
    vendor: Optional[str] = "Llama Farm",
    product_id: Optional[int] = 501,
    price: str = "45.00",
    financial_status: str = "paid",
    email: str = "anna@example.com",
    note_attributes: Optional[List[Dict[str, Any]]] = None,
    extra_line_items: Iterable[Dict[str, Any]] = (),
) -> Dict[str, Any]:
    """A Shopify order dict; Cowlendar data lives in the first line item's properties."""
    properties = []
    if internal_id is not None:
        properties.append({"name": "__cow_internal_id", "value": internal_id})
    if integrity is not None:
        properties.append({"name": "__cow_integrity", "value": integrity})
    if schedule is not None:
        properties.append({"name": "Date", "value": schedule})

    return {
        "id": order_id,
        "order_number": order_id,
        "name": f"#{order_id}",
        "email": email,
        "customer": {
            "first_name": "Anna",
            "last_name": "Rossi",
            "email": email,
            "phone": "+39 055 000000",
        },
        "line_items": [
            {
                "name": name,
                "quantity": 1,
                "price": price,
                "vendor": vendor,
                "product_id": product_id,
                "properties": properties,
            },
            *extra_line_items,
        ],
        "note_attributes": note_attributes or [],
        "created_at": "2025-11-01T10:00:00+01:00",
        "financial_status": financial_status,
        "fulfillment_status": None,
    }


def make_plain_order(order_id: Union[int, str] = 2001, **kwargs: Any) -> Dict[str, Any]:
    """An ordinary order without any Cowlendar keys."""
    return make_order(order_id, schedule=None, internal_id=None, integrity=None, **kwargs)


class FakeShopify:
    """In-memory order store + product metadata store."""

    configured = True

    def __init__(self, orders: Iterable[Dict[str, Any]] = ()):
        self.orders: List[RawOrder] = [RawOrder.model_validate(o) for o in orders]
        self.metafields: Dict[str, List[Dict[str, Any]]] = {}
        self.tags: Dict[str, List[str]] = {}
        self.failing_products: set = set()
        self.missing_products: set = set()
        self.fail_orders = False
        self.metafield_calls: List[Union[int, str]] = []
        self.order_fetches: List[Dict[str, Any]] = []

    def add(self, *orders: Dict[str, Any]) -> None:
        self.orders.extend(RawOrder.model_validate(o) for o in orders)

    def set_host(self, product_id: Union[int, str], host: str) -> None:
        self.metafields[str(product_id)] = [{"namespace": "custom", "key": "host", "value": host}]

    async def fetch_orders(self, *, email: Optional[str] = None, status: str = "any", limit: int = 50) -> List[RawOrder]:
        self.order_fetches.append({"email": email, "status": status, "limit": limit})
        if self.fail_orders:
            raise ShopifyError("Shopify fetch_orders failed with status 503")
        orders = [o for o in self.orders if email is None or o.email == email]
        return orders[:limit]

    async def fetch_order(self, order_id: Union[int, str]) -> RawOrder:
        for order in self.orders:
            if str(order.id) == str(order_id):
                return order
        raise ResourceNotFoundError(f"Order {order_id} not found")

    async def fetch_product_metafields(self, product_id: Union[int, str]) -> List[Metafield]:
        self.metafield_calls.append(product_id)
        key = str(product_id)
        if key in self.failing_products:
            raise ShopifyError("Shopify fetch_product_metafields failed with status 500")
        if key in self.missing_products:
            raise ResourceNotFoundError(f"Shopify resource not found: /products/{key}/metafields.json")
        return [Metafield.model_validate(m) for m in self.metafields.get(key, [])]

    async def fetch_product_tags(self, product_id: Union[int, str]) -> List[str]:
        return list(self.tags.get(str(product_id), []))


Handler = Callable[[httpx.Request], httpx.Response]


class FakePartner:
    """httpx MockTransport handler standing in for the BookingKit API."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Handler] = {}

    def respond(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        self.routes[(method, path)] = lambda request: httpx.Response(status, json=json)

    def on(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


def token_bundle(expires_in: float = 3600, refresh_token: Optional[str] = "refresh-1", access_token: str = "access-1") -> TokenBundle:
    return TokenBundle(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )

"""Provider (host / vendor) resolution.

The host of an event lives on the product: a `host` metafield, or failing
that a `host:<name>` tag. The vendor is the first line item's vendor field.
Host wins over vendor. Host lookups are best-effort: any store failure is
logged and treated as "host unknown".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Union

from booking.models import CanonicalBooking, Metafield, ProviderResolution, RawOrder
from observability.metrics import host_lookups_total

logger = logging.getLogger(__name__)

HOST_KEY = "host"
HOST_TAG_PREFIX = "host:"
DEFAULT_LOOKUP_CONCURRENCY = 8


class ProductMetadataStore(Protocol):
    async def fetch_product_metafields(self, product_id: Union[int, str]) -> List[Metafield]:
        ...

    async def fetch_product_tags(self, product_id: Union[int, str]) -> List[str]:
        ...


@dataclass(frozen=True)
class Resolved:
    value: Optional[str]


class _Unresolved:
    _instance: Optional["_Unresolved"] = None

    def __new__(cls) -> "_Unresolved":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = _Unresolved()
LookupResult = Union[Resolved, _Unresolved]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def host_from_metafields(metafields: Iterable[Metafield]) -> Optional[str]:
    """First metafield keyed `host` in any case or namespace (e.g. custom.host)."""
    for field in metafields:
        if field.key and field.key.lower() == HOST_KEY:
            return _clean(field.value)
    return None


def host_from_tags(tags: Iterable[str]) -> Optional[str]:
    for tag in tags:
        candidate = tag.strip()
        if candidate.lower().startswith(HOST_TAG_PREFIX):
            return _clean(candidate.split(":", 1)[1])
    return None


def vendor_of(order: RawOrder) -> Optional[str]:
    item = order.first_line_item
    if item is None:
        return None
    return item.vendor or None


def host_product_id(order: RawOrder) -> Optional[Union[int, str]]:
    item = order.first_line_item
    if item is None or item.product_id in (None, ""):
        return None
    return item.product_id


def host_matches(booking: CanonicalBooking, name: str) -> bool:
    """Case-insensitive match against the canonical (host-or-vendor) provider."""
    return bool(booking.provider) and booking.provider.lower() == name.lower()


def vendor_matches(booking: CanonicalBooking, name: str) -> bool:
    """Case-insensitive match against any line item's vendor."""
    wanted = name.lower()
    return any(item.vendor and item.vendor.lower() == wanted for item in booking.line_items)


def serves_provider(booking: CanonicalBooking, name: str) -> bool:
    """Provider filter used by booking apps: host match OR any vendor match."""
    return host_matches(booking, name) or vendor_matches(booking, name)


class ProviderResolver:
    """Resolves host/vendor for orders against a product metadata store."""

    def __init__(self, store: ProductMetadataStore, concurrency: int = DEFAULT_LOOKUP_CONCURRENCY):
        self.store = store
        self.concurrency = max(1, concurrency)

    async def lookup_host(self, product_id: Union[int, str]) -> LookupResult:
        try:
            metafields = await self.store.fetch_product_metafields(product_id)
            host = host_from_metafields(metafields)
            if host is None:
                host = host_from_tags(await self.store.fetch_product_tags(product_id))
        except Exception as e:
            # Any store failure leaves the host unknown; the batch carries on
            logger.warning(
                "Host lookup failed for product %s: %s", product_id, getattr(e, "message", str(e)),
                extra={"product_id": str(product_id), "error_type": type(e).__name__},
            )
            host_lookups_total.labels(outcome="unresolved").inc()
            return UNRESOLVED

        host_lookups_total.labels(outcome="found" if host else "absent").inc()
        return Resolved(host)

    @staticmethod
    def _host_value(result: LookupResult) -> Optional[str]:
        if isinstance(result, Resolved):
            return result.value
        return None

    async def resolve(self, order: RawOrder) -> ProviderResolution:
        product_id = host_product_id(order)
        host = None
        if product_id is not None:
            host = self._host_value(await self.lookup_host(product_id))
        return ProviderResolution(host=host, vendor=vendor_of(order))

    async def resolve_many(self, orders: Sequence[RawOrder]) -> List[ProviderResolution]:
        """Resolve a batch concurrently; each distinct product is looked up once."""
        semaphore = asyncio.Semaphore(self.concurrency)
        lookups: Dict[str, "asyncio.Task[LookupResult]"] = {}

        async def bounded_lookup(product_id: Union[int, str]) -> LookupResult:
            async with semaphore:
                return await self.lookup_host(product_id)

        for order in orders:
            product_id = host_product_id(order)
            if product_id is not None and str(product_id) not in lookups:
                lookups[str(product_id)] = asyncio.ensure_future(bounded_lookup(product_id))

        if lookups:
            await asyncio.gather(*lookups.values())

        resolutions = []
        for order in orders:
            product_id = host_product_id(order)
            host = None
            if product_id is not None:
                host = self._host_value(lookups[str(product_id)].result())
            resolutions.append(ProviderResolution(host=host, vendor=vendor_of(order)))
        return resolutions

# Services package
from .shopify import ShopifyClient
from .bookingkit import (
    BookingKitClient,
    OAuthStateStore,
    TokenBundle,
    TokenCache,
    to_partner_payload,
)

__all__ = [
    "ShopifyClient",
    "BookingKitClient",
    "OAuthStateStore",
    "TokenBundle",
    "TokenCache",
    "to_partner_payload",
]

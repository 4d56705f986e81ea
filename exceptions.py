"""
Custom exception hierarchy for the Cowlendar booking bridge.

All application errors inherit from BookingBridgeError so route handlers
and the global exception handler can render them uniformly.

Exception Hierarchy:
    BookingBridgeError (base)
    ├── ValidationError
    ├── AuthenticationError
    │   └── SignatureError
    ├── AuthorizationError
    ├── ResourceNotFoundError
    ├── RateLimitError
    ├── ConfigurationError
    └── ExternalServiceError
        ├── ShopifyError
        └── BookingKitError

Schedule parsing and host resolution never raise: malformed schedule text
collapses to an empty ParsedSchedule and failed product lookups resolve to
"host unknown". Only store-level failures reach the caller.

Usage:
    from exceptions import ResourceNotFoundError, AuthorizationError

    raise ResourceNotFoundError("Order not found", detail={"order_id": 42})
"""

from typing import Any, Dict, Optional


class BookingBridgeError(Exception):
    """
    Base exception for all booking bridge errors.

    Subclasses set `status_code`; the global handler in main.py renders
    `to_dict()` with that status.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.detail = dict(detail) if detail else None
        if status_code is not None:
            self.status_code = status_code

    def _add_detail(self, key: str, value: Any) -> None:
        self.detail = {**(self.detail or {}), key: value}

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class ValidationError(BookingBridgeError):
    """Bad request input, e.g. ValidationError("Missing authorization code")."""

    status_code = 400


class AuthenticationError(BookingBridgeError):
    """No usable credentials: missing API key."""

    status_code = 401


class SignatureError(AuthenticationError):
    """Inbound webhook signature does not match its payload."""


class AuthorizationError(BookingBridgeError):
    """
    Authenticated caller asked for data outside its scope, or the key is unknown.

    The message never reveals whether matching data exists.
    """

    status_code = 403


class ResourceNotFoundError(BookingBridgeError):
    status_code = 404


class RateLimitError(BookingBridgeError):
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, detail=detail)
        self.retry_after = retry_after
        if retry_after:
            self._add_detail("retry_after", retry_after)


class ConfigurationError(BookingBridgeError):
    """Server-side setup is incomplete (API keys, Shopify or BookingKit credentials)."""

    status_code = 500


class ExternalServiceError(BookingBridgeError):
    """An upstream service was unreachable or answered with an error."""

    status_code = 502
    service_name: Optional[str] = None

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail)
        if self.service_name:
            self._add_detail("service", self.service_name)


class ShopifyError(ExternalServiceError):
    """Shopify Admin API failure that survived the client's retries."""

    service_name = "shopify"


class BookingKitError(ExternalServiceError):
    service_name = "bookingkit"

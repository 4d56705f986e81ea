"""
Dependency health checks.

Each check returns a HealthCheckResult with status "ok", "degraded" or
"error" and never raises:
- Shopify connectivity
- Cowlendar event orders (recent orders normalize)
- BookingKit integration (credentials, token, API reachability)
- System resources (memory, disk)
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import psutil

from exceptions import BookingBridgeError
from .logging import get_logger

if TYPE_CHECKING:
    from booking.service import BookingService
    from services.bookingkit import BookingKitClient
    from services.shopify import ShopifyClient

logger = get_logger(__name__)

# (degraded above, error above) percentages
MEMORY_THRESHOLDS: Tuple[float, float] = (90.0, 95.0)
DISK_THRESHOLDS: Tuple[float, float] = (85.0, 95.0)

_SEVERITY = {"ok": 0, "degraded": 1, "error": 2}


@dataclass
class HealthCheckResult:
    name: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"status": self.status, "details": self.details}
        if self.error:
            result["error"] = self.error
        return result

    @property
    def is_healthy(self) -> bool:
        return self.status == "ok"


def _error_message(e: Exception) -> str:
    if isinstance(e, BookingBridgeError):
        return e.message
    return str(e)[:200]


async def check_shopify(shopify: "ShopifyClient") -> HealthCheckResult:
    """Fetch a single order to prove the store is reachable and the token works."""
    if not shopify.configured:
        return HealthCheckResult(
            name="shopify",
            status="error",
            error="Shopify not configured (SHOPIFY_STORE_URL / SHOPIFY_ACCESS_TOKEN not set)",
        )

    start_time = time.time()
    try:
        orders = await shopify.fetch_orders(limit=1)
    except Exception as e:
        logger.warning("Shopify health check failed", extra={"error": _error_message(e)})
        return HealthCheckResult(name="shopify", status="error", error=_error_message(e))

    return HealthCheckResult(
        name="shopify",
        status="ok",
        details={
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "sample_orders_count": len(orders),
        },
    )


async def check_event_orders(service: "BookingService", limit: int = 5) -> HealthCheckResult:
    """Normalize a handful of recent orders; zero event orders is fine, failures are not."""
    try:
        bookings = await service.event_bookings(limit=limit)
    except Exception as e:
        logger.warning("Event order health check failed", extra={"error": _error_message(e)})
        return HealthCheckResult(name="cowlendar", status="error", error=_error_message(e))

    return HealthCheckResult(
        name="cowlendar",
        status="ok",
        details={"event_orders_found": len(bookings)},
    )


async def check_bookingkit(client: "BookingKitClient", probe: bool = True) -> HealthCheckResult:
    """
    Report BookingKit credentials and token state.

    With `probe`, a valid token is exercised against /profile. A missing
    integration is "degraded" rather than "error": orders still flow without it.
    """
    details: Dict[str, Any] = {
        "credentials_configured": client.configured,
        "base_url": client.base_url,
        **client.token_status(),
    }

    if not client.configured:
        return HealthCheckResult(name="bookingkit", status="degraded", details=details)

    if probe and details.get("token_status") == "valid":
        try:
            await client.get_profile()
            details["api_connectivity"] = "ok"
        except Exception as e:
            details["api_connectivity"] = "failed"
            return HealthCheckResult(name="bookingkit", status="degraded", details=details, error=_error_message(e))

    status = "ok" if details.get("token_status") == "valid" else "degraded"
    return HealthCheckResult(name="bookingkit", status=status, details=details)


def _usage_status(label: str, percent: float, thresholds: Tuple[float, float]) -> Tuple[str, Optional[str]]:
    degraded_above, error_above = thresholds
    if percent > error_above:
        return "error", f"Critical {label} usage: {percent}%"
    if percent > degraded_above:
        return "degraded", f"High {label} usage: {percent}%"
    return "ok", None


async def check_system_resources() -> HealthCheckResult:
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
    except Exception as e:
        logger.error("System resource check failed", exc_info=True)
        return HealthCheckResult(name="system_resources", status="error", error=str(e)[:200])

    readings = [
        _usage_status("memory", memory.percent, MEMORY_THRESHOLDS),
        _usage_status("disk", disk.percent, DISK_THRESHOLDS),
    ]
    status = max((s for s, _ in readings), key=_SEVERITY.__getitem__)
    warnings = [w for _, w in readings if w]

    return HealthCheckResult(
        name="system_resources",
        status=status,
        details={
            "memory_percent": round(memory.percent, 1),
            "memory_available_mb": round(memory.available / (1024 * 1024), 1),
            "disk_percent": round(disk.percent, 1),
            "disk_free_gb": round(disk.free / (1024 ** 3), 1),
            "warnings": warnings or None,
        },
    )


def overall_status(checks: Dict[str, HealthCheckResult]) -> str:
    statuses = [check.status for check in checks.values()]
    if any(status == "error" for status in statuses):
        return "unhealthy"
    if any(status == "degraded" for status in statuses):
        return "degraded"
    return "healthy"


async def run_health_checks(
    shopify: "ShopifyClient",
    service: "BookingService",
    bookingkit: Optional["BookingKitClient"] = None,
) -> Dict[str, Any]:
    """
    Run all health checks and return aggregated results.

    Returns:
        Dictionary with overall status, timestamp and per-check results
    """
    checks = {
        "shopify": await check_shopify(shopify),
        "system_resources": await check_system_resources(),
    }
    if checks["shopify"].is_healthy:
        checks["cowlendar"] = await check_event_orders(service)
    if bookingkit is not None:
        checks["bookingkit"] = await check_bookingkit(bookingkit)

    return {
        "status": overall_status(checks),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {name: check.to_dict() for name, check in checks.items()},
    }

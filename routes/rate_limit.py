"""Rate limiting utilities."""
import math
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

# Simple in-memory sliding window (per process)
rate_limit_store: Dict[str, List[datetime]] = defaultdict(list)
RATE_LIMIT_WINDOW = 15 * 60  # seconds
RATE_LIMIT_MAX = 100


def check_rate_limit(
    key: str,
    max_requests: int = RATE_LIMIT_MAX,
    window_seconds: int = RATE_LIMIT_WINDOW,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Record a hit for `key`. Returns None if allowed, else seconds until a slot frees up."""
    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(seconds=window_seconds)

    # Clean old entries
    hits = [t for t in rate_limit_store[key] if t > window_start]
    rate_limit_store[key] = hits

    if len(hits) >= max_requests:
        oldest = hits[0]
        retry_after = (oldest + timedelta(seconds=window_seconds) - now).total_seconds()
        return max(1, math.ceil(retry_after))

    hits.append(now)
    return None


def reset_rate_limits() -> None:
    rate_limit_store.clear()

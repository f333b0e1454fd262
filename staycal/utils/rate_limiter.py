"""
Rate Limiter Configuration

In-memory storage by default; set RATE_LIMIT_STORAGE_URI (e.g. redis://...)
when running more than one instance.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind a reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # first hop is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=settings.rate_limit_storage_uri,
        default_limits=["100/minute"],
        enabled=settings.rate_limit_enabled,
    )


limiter = create_limiter()


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    # Feed fetches hit third-party servers
    "feed_import": "10/minute",
    "feed_sync": "10/minute",

    # Calendar writes
    "block_write": "60/minute",
    "rate_write": "30/minute",
    "booking_update": "30/minute",

    # Reads
    "timeline": "120/minute",
    "availability": "120/minute",
    "quote": "60/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")

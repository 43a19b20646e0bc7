"""
Rate limiting for the sync entry points (slowapi).

The whole sync call is limited, not each account inside it.
"""

from fastapi import FastAPI, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import structlog

from spendsync.core.config import get_settings

logger = structlog.get_logger()

_limiter = None


def user_or_address_key(request: Request) -> str:
    """Identify the caller by the gateway-supplied user id, else by remote IP."""
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


def get_limiter() -> Limiter:
    """Lazy initialization of the Limiter instance."""
    global _limiter
    if _limiter is None:
        settings = get_settings()
        _limiter = Limiter(
            key_func=user_or_address_key,
            storage_uri=settings.REDIS_URL or "memory://",
            strategy="fixed-window",
            enabled=settings.RATELIMIT_ENABLED,
        )
    return _limiter


def setup_rate_limiting(app: FastAPI) -> None:
    app.state.limiter = get_limiter()
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info("rate_limiting_configured")


def rate_limit(limit: str):
    """Decorator to apply rate limiting to an endpoint."""
    return get_limiter().limit(limit)

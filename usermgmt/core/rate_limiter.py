"""Request rate limiting (slowapi), keyed by client address."""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from usermgmt.core.config import settings
from usermgmt.core.exceptions import RateLimitError

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    error = RateLimitError()
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message, "limit": str(exc.detail)},
    )

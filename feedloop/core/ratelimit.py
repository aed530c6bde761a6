from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse

from feedloop.core import config

# all limits are per client IP
limiter = Limiter(key_func=get_remote_address)

AUTH_LIMIT = "10/minute"
UPLOAD_LIMIT = "60/minute"
WIDGET_LIMIT = config.WIDGET_RATE_LIMIT


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"error": "Too many requests", "details": [{"field": "", "message": f"Limit {exc.detail}"}]},
        headers={"Retry-After": "60"},
    )

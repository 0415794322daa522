# dongnegage/core/rate_limit/rate_limit.py

"""
Rate Limiting
=============
Fixed-window counters kept in Redis (or memory when REDIS_URL is unset),
so every worker process shares the same buckets.
"""

import logging

import redis
from fastapi import HTTPException
from limits import parse
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from dongnegage.core.config import config

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS_MESSAGE = "요청이 너무 많습니다. 잠시 후 다시 시도해주세요."


# ═══════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════

def get_storage_uri() -> str:
    """Storage URI shared by slowapi and the dependency below"""
    if config.REDIS_URL:
        logger.info("✅ Rate limiting backed by Redis")
        return config.REDIS_URL

    logger.warning("⚠️ Rate limiting backed by process memory")
    return "memory://"


def get_identifier(request: Request) -> str:
    """Client IP, honouring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"

    return f"ip:{ip}"


STORAGE_URI = get_storage_uri()

# ═══════════════════════════════════════════════════════════
# LIMITER
# ═══════════════════════════════════════════════════════════

limiter = Limiter(
    key_func=get_identifier,
    storage_uri=STORAGE_URI,
    default_limits=["1000/hour"],
    headers_enabled=False,
    swallow_errors=True,
    enabled=config.RATE_LIMIT_ENABLED,
)

rate_limit_storage = storage_from_string(STORAGE_URI)
fixed_window = FixedWindowRateLimiter(rate_limit_storage)

# ═══════════════════════════════════════════════════════════
# RATE LIMITS
# ═══════════════════════════════════════════════════════════

RATE_LIMITS = {
    "reservation": "10/minute",
    "push_subscribe": "10/minute",
    "login": "5/minute",
    "signup": "3/minute",
    "usage_event": "120/minute",
    "health": "100/minute",
}


# ═══════════════════════════════════════════════════════════
# DEPENDENCY
# ═══════════════════════════════════════════════════════════

class RateLimitDependency:
    """
    ✅ Rate limiting as a FastAPI dependency

    Usage:
    ```python
    @router.post("/reservations")
    async def create(
        request: Request,
        _rate_limit: None = Depends(RateLimitDependency("reservation")),
    ):
        ...
    ```
    """

    def __init__(self, scope: str, limit: str | None = None):
        self.scope = scope
        self.limit = parse(limit or RATE_LIMITS[scope])

    async def __call__(self, request: Request) -> None:
        if not config.RATE_LIMIT_ENABLED:
            return

        identifier = get_identifier(request)

        try:
            allowed = fixed_window.hit(self.limit, self.scope, identifier)
        except (redis.RedisError, ConnectionError) as e:
            # Storage down: let the request through
            logger.error(f"❌ Rate limit storage error: {e}")
            return

        if not allowed:
            logger.warning(f"🚨 Rate limit exceeded: {identifier} on {self.scope}")
            raise HTTPException(status_code=429, detail=TOO_MANY_REQUESTS_MESSAGE)


# ═══════════════════════════════════════════════════════════
# EXCEPTION HANDLER
# ═══════════════════════════════════════════════════════════

async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """slowapi decorator limits end up here"""
    logger.warning(
        f"🚨 RATE LIMIT EXCEEDED\n"
        f"   ├─ Path: {request.method} {request.url.path}\n"
        f"   └─ Identifier: {get_identifier(request)}"
    )

    return JSONResponse(
        status_code=429,
        content={"detail": TOO_MANY_REQUESTS_MESSAGE},
        headers={"Retry-After": "60"},
    )


def check_redis_connection() -> bool:
    """Pings Redis when configured"""
    if not config.REDIS_URL:
        return False

    try:
        r = redis.from_url(config.REDIS_URL, socket_connect_timeout=2)
        r.ping()
        logger.info("✅ Redis connection OK")
        return True
    except redis.RedisError as e:
        logger.error(f"❌ Could not reach Redis: {e}")
        return False

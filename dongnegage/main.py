"""
Main application - 동네 가게
============================
Reservation storefronts and owner console for neighbourhood shops
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
import uvicorn

from dongnegage.core.config import config

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

from dongnegage.api.admin import router as admin_router
from dongnegage.api.admin.webhooks.toss_webhook import router as toss_webhook_router
from dongnegage.api.app import router as app_router
from dongnegage.api.scheduler import start_scheduler, stop_scheduler
from dongnegage.core import models
from dongnegage.core.database import check_database_health, engine
from dongnegage.core.middleware.correlation import CorrelationIdMiddleware
from dongnegage.core.rate_limit.rate_limit import (
    check_redis_connection,
    limiter,
    rate_limit_exceeded_handler,
)

SERVER_ERROR_MESSAGE = "서버 오류가 발생했습니다. 잠시 후 다시 시도해주세요."
NOT_FOUND_MESSAGE = "요청한 페이지를 찾을 수 없습니다"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""

    # STARTUP
    logger.info("=" * 60)
    logger.info("🚀 STARTING 동네 가게 API")
    logger.info("=" * 60)

    logger.info("📊 Creating database tables...")
    models.Base.metadata.create_all(bind=engine)

    if config.REDIS_URL:
        check_redis_connection()

    if not config.is_test:
        start_scheduler()

    logger.info(f"🌍 Environment: {config.ENVIRONMENT}")
    logger.info(f"🔐 Debug mode: {config.DEBUG}")
    logger.info(f"💳 Toss Payments: {'configured' if config.TOSS_SECRET_KEY else 'not configured'}")
    logger.info(f"🔔 Web push: {'enabled' if config.push_enabled else 'disabled'}")

    logger.info("=" * 60)
    logger.info("✅ APPLICATION READY")
    logger.info("=" * 60)

    yield

    # SHUTDOWN
    if not config.is_test:
        stop_scheduler()

    logger.info("=" * 60)
    logger.info("👋 SHUTTING DOWN")
    logger.info("=" * 60)


app = FastAPI(
    title="동네 가게 API",
    description="Pre-order reservations, inventory and billing for neighbourhood shops",
    version="1.0.0",
    docs_url="/docs" if config.DEBUG else None,
    redoc_url="/redoc" if config.DEBUG else None,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-correlation-id"],
)

# ═══════════════════════════════════════════════════════════
# API ROUTES
# ═══════════════════════════════════════════════════════════

app.include_router(admin_router)
app.include_router(app_router)
app.include_router(toss_webhook_router)

# ═══════════════════════════════════════════════════════════
# BASIC ROUTES
# ═══════════════════════════════════════════════════════════

@app.get("/")
async def root():
    return {
        "name": "동네 가게 API",
        "version": "1.0.0",
        "status": "operational",
        "environment": config.ENVIRONMENT
    }


@app.get("/health")
def health_check():
    """Health check for monitoring"""
    database = check_database_health()

    return {
        "status": "healthy" if database["healthy"] else "degraded",
        "services": {
            "database": database["checks"].get("connection", {}).get("status", "unknown"),
            "redis": "configured" if config.REDIS_URL else "not_configured",
            "toss": "configured" if config.TOSS_SECRET_KEY else "not_configured",
            "push": "enabled" if config.push_enabled else "disabled",
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# ═══════════════════════════════════════════════════════════
# GLOBAL ERROR HANDLING
# ═══════════════════════════════════════════════════════════

@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    detail = getattr(exc, "detail", None)
    if not detail or detail == "Not Found":
        detail = NOT_FOUND_MESSAGE

    return JSONResponse(status_code=404, content={"detail": detail})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc)}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": SERVER_ERROR_MESSAGE,
            "correlation_id": getattr(request.state, "correlation_id", "unknown")
        }
    )


if __name__ == "__main__":
    uvicorn.run(
        "dongnegage.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.is_development,
        log_level=config.LOG_LEVEL.lower()
    )

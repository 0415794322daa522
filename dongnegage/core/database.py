"""
Database Layer
==============

- ✅ Connection pooling per environment
- ✅ Connection retry with backoff
- ✅ Rollback on error
- ✅ Health check
"""

import logging
import time
from contextlib import contextmanager
from typing import Annotated
from functools import wraps

from fastapi import Depends
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, NullPool
from sqlalchemy.exc import DBAPIError, OperationalError, DisconnectionError

from dongnegage.core.config import config

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════

class DatabaseConfig:
    """Database tuning knobs"""

    PRODUCTION_POOL_SIZE = 20
    PRODUCTION_MAX_OVERFLOW = 20
    PRODUCTION_POOL_TIMEOUT = 10
    PRODUCTION_POOL_RECYCLE = 1800  # 30min

    DEV_POOL_SIZE = 5
    DEV_MAX_OVERFLOW = 10
    DEV_POOL_TIMEOUT = 30
    DEV_POOL_RECYCLE = 3600

    MAX_RETRIES = 3
    RETRY_DELAY = 0.5  # seconds


# ═══════════════════════════════════════════════════════════
# ENGINE CONFIGURATION
# ═══════════════════════════════════════════════════════════

def get_engine_config() -> dict:
    """
    Engine options for the current environment

    Returns:
        dict: keyword arguments for create_engine
    """

    if config.is_test or config.DATABASE_URL.startswith("sqlite"):
        return {
            "poolclass": NullPool,
            "echo": False,
        }

    if config.is_production:
        return {
            "poolclass": QueuePool,
            "pool_size": DatabaseConfig.PRODUCTION_POOL_SIZE,
            "max_overflow": DatabaseConfig.PRODUCTION_MAX_OVERFLOW,
            "pool_timeout": DatabaseConfig.PRODUCTION_POOL_TIMEOUT,
            "pool_recycle": DatabaseConfig.PRODUCTION_POOL_RECYCLE,
            "pool_pre_ping": True,
            "echo": False,
            "connect_args": {
                "connect_timeout": 10,
                "options": "-c statement_timeout=30000",
                "application_name": "dongnegage_api",
            },
        }

    return {
        "poolclass": QueuePool,
        "pool_size": DatabaseConfig.DEV_POOL_SIZE,
        "max_overflow": DatabaseConfig.DEV_MAX_OVERFLOW,
        "pool_timeout": DatabaseConfig.DEV_POOL_TIMEOUT,
        "pool_recycle": DatabaseConfig.DEV_POOL_RECYCLE,
        "pool_pre_ping": True,
        "echo": config.DEBUG,
    }


engine_config = get_engine_config()
engine = create_engine(config.DATABASE_URL, **engine_config)


# ═══════════════════════════════════════════════════════════
# SESSION MAKER
# ═══════════════════════════════════════════════════════════

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)


# ═══════════════════════════════════════════════════════════
# RETRY LOGIC
# ═══════════════════════════════════════════════════════════

def retry_on_db_error(max_retries: int = DatabaseConfig.MAX_RETRIES):
    """
    Retries opening a session on connection errors.

    Works with FastAPI generator dependencies: only the part up to the
    first ``yield`` is retried, errors raised by the route are thrown back
    into the original generator so its rollback/close logic still runs.
    """

    def decorator(func_gen):
        @wraps(func_gen)
        def wrapper(*args, **kwargs):
            last_exception = None
            gen = None
            resource = None

            for attempt in range(max_retries):
                try:
                    gen = func_gen(*args, **kwargs)
                    resource = next(gen)
                    last_exception = None
                    break

                except (OperationalError, DisconnectionError, DBAPIError) as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = DatabaseConfig.RETRY_DELAY * (2 ** attempt)
                        logger.warning(
                            f"⚠️ Database error (attempt {attempt + 1}/{max_retries}). "
                            f"Retrying in {delay}s... Error: {str(e)}"
                        )
                        time.sleep(delay)
                    else:
                        logger.error(f"❌ Could not open a session after {max_retries} attempts: {str(e)}")

                except StopIteration:
                    last_exception = RuntimeError(f"Dependency generator {func_gen.__name__} did not yield a value.")
                    break

            if last_exception:
                raise last_exception

            try:
                yield resource
            except Exception as e:
                try:
                    gen.throw(e)
                except StopIteration:
                    pass
                except Exception as gen_e:
                    if gen_e is not e:
                        logger.error(f"❌ Error while closing session generator: {gen_e}", exc_info=True)
                raise
            else:
                try:
                    next(gen)
                except StopIteration:
                    pass

        return wrapper

    return decorator


# ═══════════════════════════════════════════════════════════
# DATABASE DEPENDENCIES
# ═══════════════════════════════════════════════════════════

@retry_on_db_error()
def get_db():
    """
    Request-scoped session

    - ✅ Retry on connection errors
    - ✅ Rollback on error
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"❌ Session error: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


get_db_manager = contextmanager(get_db)

GetDBDep = Annotated[Session, Depends(get_db)]


# ═══════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════

def check_database_health() -> dict:
    """
    Runs a trivial query against the database

    Returns:
        dict: health status with latency
    """
    health_status = {
        "healthy": True,
        "timestamp": time.time(),
        "checks": {}
    }

    started = time.perf_counter()
    try:
        with get_db_manager() as db:
            db.execute(text("SELECT 1")).scalar()
        health_status["checks"]["connection"] = {
            "status": "healthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2)
        }
    except (OperationalError, DisconnectionError, DBAPIError) as e:
        health_status["healthy"] = False
        health_status["checks"]["connection"] = {
            "status": "unhealthy",
            "error": str(e)
        }

    return health_status

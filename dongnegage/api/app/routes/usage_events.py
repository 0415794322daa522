import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from dongnegage.api.schemas.usage_event import UsageEventIn
from dongnegage.api.services.usage_event_service import UsageEventInputError, record_usage_event
from dongnegage.core.database import GetDBDep
from dongnegage.core.rate_limit.rate_limit import RateLimitDependency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage-events", tags=["Usage Events"])


@router.post("")
async def track_usage_event(
        request: Request,
        db: GetDBDep,
        _rate_limit: None = Depends(RateLimitDependency("usage_event")),
):
    try:
        payload = UsageEventIn.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="invalid body")

    try:
        record_usage_event(db, payload)
    except UsageEventInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Usage event logging failed: {e}")
        return JSONResponse(status_code=500, content={"ok": False})

    return {"ok": True}

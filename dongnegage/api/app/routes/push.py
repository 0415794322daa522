import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from dongnegage.api.schemas.push import PushSubscribeIn
from dongnegage.api.services.push_service import upsert_subscription
from dongnegage.core import models
from dongnegage.core.database import GetDBDep
from dongnegage.core.rate_limit.rate_limit import RateLimitDependency
from dongnegage.core.utils.validators import normalize_phone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push", tags=["Push"])


@router.post("/subscribe", status_code=201)
async def subscribe(
        request: Request,
        db: GetDBDep,
        _rate_limit: None = Depends(RateLimitDependency("push_subscribe")),
):
    try:
        payload = PushSubscribeIn.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="잘못된 요청입니다")

    keys = payload.keys
    if not payload.endpoint or not keys or not keys.p256dh or not keys.auth or not payload.shopId:
        raise HTTPException(status_code=400, detail="필수 정보가 누락되었습니다")

    if not db.get(models.Shop, payload.shopId):
        raise HTTPException(status_code=404, detail="가게를 찾을 수 없습니다")

    try:
        upsert_subscription(
            db,
            shop_id=payload.shopId,
            endpoint=payload.endpoint,
            p256dh=keys.p256dh,
            auth=keys.auth,
            customer_phone=normalize_phone(payload.customerPhone) or None,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Push subscription failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="구독에 실패했습니다. 잠시 후 다시 시도해주세요.")

    return {"success": True}

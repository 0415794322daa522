from fastapi import APIRouter, HTTPException

from dongnegage.api.schemas.push import PushSendIn, PushSendResult
from dongnegage.api.services.push_service import send_push_to_shop
from dongnegage.core.database import GetDBDep
from dongnegage.core.dependencies import FORBIDDEN_MESSAGE, GetShopDep

router = APIRouter(prefix="/push", tags=["Push"])


@router.post("/send", response_model=PushSendResult)
def broadcast(payload: PushSendIn, db: GetDBDep, shop: GetShopDep):
    """Owner broadcast to every subscriber of the shop."""
    if payload.shopId is not None and payload.shopId != shop.id:
        raise HTTPException(status_code=403, detail=FORBIDDEN_MESSAGE)

    result = send_push_to_shop(db, shop.id, {
        "title": payload.title,
        "body": payload.body,
        "url": payload.url or f"/{shop.slug}",
    })
    return PushSendResult(**result)

from typing import Optional

from dongnegage.api.schemas.shared.base import AppBaseModel


class PushKeys(AppBaseModel):
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class PushSubscribeIn(AppBaseModel):
    """Browser PushSubscription JSON plus the shop it belongs to"""
    endpoint: Optional[str] = None
    keys: Optional[PushKeys] = None
    shopId: Optional[int] = None
    customerPhone: Optional[str] = None


class PushSendIn(AppBaseModel):
    shopId: Optional[int] = None
    title: str
    body: str
    url: Optional[str] = None


class PushSendResult(AppBaseModel):
    sent: int
    failed: int
    removed: int

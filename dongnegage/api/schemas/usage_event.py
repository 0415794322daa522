from typing import Optional

from dongnegage.api.schemas.shared.base import AppBaseModel


class UsageEventIn(AppBaseModel):
    eventType: Optional[str] = None
    path: Optional[str] = None
    shopSlug: Optional[str] = None
    visitorId: Optional[str] = None
    metadata: Optional[dict] = None

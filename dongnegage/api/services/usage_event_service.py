import logging
from typing import Optional

from sqlalchemy.orm import Session

from dongnegage.api.schemas.usage_event import UsageEventIn
from dongnegage.core import models

logger = logging.getLogger(__name__)

RESERVED_PATH_SEGMENTS = {"admin", "api", "signup", "my-orders"}


class UsageEventInputError(ValueError):
    pass


def resolve_slug_from_path(path: Optional[str]) -> Optional[str]:
    """
    First path segment as a shop slug.

    Examples:
        >>> resolve_slug_from_path('/gunggu/reserve/3?ref=kakao')
        'gunggu'
        >>> resolve_slug_from_path('/admin/products') is None
        True
    """
    sanitized = (path or "").split("?")[0].strip()
    if not sanitized.startswith("/"):
        return None
    first = sanitized[1:].split("/")[0]
    if not first or first in RESERVED_PATH_SEGMENTS:
        return None
    return first


def record_usage_event(db: Session, payload: UsageEventIn) -> models.UsageEvent:
    event_type = (payload.eventType or "").strip()
    if not event_type:
        raise UsageEventInputError("eventType is required")

    path = (payload.path or "").strip() or None
    visitor_id = (payload.visitorId or "").strip() or None
    slug = (payload.shopSlug or "").strip() or resolve_slug_from_path(path)

    shop_id = None
    if slug:
        shop = db.query(models.Shop).filter(models.Shop.slug == slug).first()
        shop_id = shop.id if shop else None

    event = models.UsageEvent(
        shop_id=shop_id,
        event_type=event_type,
        path=path,
        visitor_id=visitor_id,
        extra_data=payload.metadata or {},
    )
    db.add(event)
    db.commit()
    return event

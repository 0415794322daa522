"""
Web Push Service
================
Sends VAPID-signed notifications and evicts subscriptions the push service
reports as gone (404/410).
"""

import json
import logging

from pywebpush import webpush, WebPushException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dongnegage.core import models
from dongnegage.core.config import config

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = {404, 410}


def _subscription_info(subscription: models.PushSubscription) -> dict:
    return {
        "endpoint": subscription.endpoint,
        "keys": {
            "p256dh": subscription.p256dh,
            "auth": subscription.auth,
        },
    }


def _status_code(error: WebPushException):
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def send_notification(subscription: models.PushSubscription, payload: dict):
    """Raises WebPushException when the push service rejects the message."""
    webpush(
        subscription_info=_subscription_info(subscription),
        data=json.dumps(payload, ensure_ascii=False),
        vapid_private_key=config.VAPID_PRIVATE_KEY,
        vapid_claims={"sub": config.VAPID_SUBJECT},
    )


def deliver(db: Session, subscription: models.PushSubscription, payload: dict) -> str:
    """
    Delivers to one subscription.

    Returns:
        "sent", "removed" (subscription evicted) or "failed"
    """
    try:
        send_notification(subscription, payload)
        return "sent"
    except WebPushException as e:
        status_code = _status_code(e)
        if status_code in GONE_STATUS_CODES:
            return _evict(db, subscription, status_code)
        logger.warning(f"⚠️ Push delivery failed for subscription {subscription.id}: {e}")
        return "failed"
    except Exception as e:
        # Network and key errors come out of pywebpush unwrapped
        logger.warning(f"⚠️ Push delivery error for subscription {subscription.id}: {e}")
        return "failed"


def _evict(db: Session, subscription: models.PushSubscription, status_code) -> str:
    logger.info(f"🧹 Removing expired push subscription {subscription.id} ({status_code})")
    try:
        db.delete(subscription)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Could not remove push subscription {subscription.id}: {e}")
        return "failed"
    return "removed"


def send_push_to_shop(db: Session, shop_id: int, payload: dict) -> dict:
    """Fans out to every subscription of a shop; one failure never stops the rest."""
    result = {"sent": 0, "failed": 0, "removed": 0}

    if not config.push_enabled:
        logger.warning("⚠️ VAPID keys missing, push skipped")
        return result

    subscriptions = db.query(models.PushSubscription).filter(
        models.PushSubscription.shop_id == shop_id
    ).all()

    for subscription in subscriptions:
        outcome = deliver(db, subscription, payload)
        result[outcome] += 1

    logger.info(
        f"🔔 Push fan-out for shop {shop_id}: "
        f"{result['sent']} sent, {result['failed']} failed, {result['removed']} removed"
    )
    return result


def notify_customer(db: Session, shop_id: int, customer_phone: str, payload: dict) -> dict:
    """Pushes to the subscriptions a customer registered with their phone number."""
    result = {"sent": 0, "failed": 0, "removed": 0}

    if not config.push_enabled:
        return result

    subscriptions = db.query(models.PushSubscription).filter(
        models.PushSubscription.shop_id == shop_id,
        models.PushSubscription.customer_phone == customer_phone,
    ).all()

    for subscription in subscriptions:
        result[deliver(db, subscription, payload)] += 1
    return result


def upsert_subscription(
        db: Session,
        shop_id: int,
        endpoint: str,
        p256dh: str,
        auth: str,
        customer_phone: str | None = None,
) -> models.PushSubscription:
    """Same endpoint for the same shop refreshes keys instead of duplicating the row."""
    subscription = db.query(models.PushSubscription).filter(
        models.PushSubscription.shop_id == shop_id,
        models.PushSubscription.endpoint == endpoint,
    ).first()

    if subscription:
        subscription.p256dh = p256dh
        subscription.auth = auth
        if customer_phone:
            subscription.customer_phone = customer_phone
    else:
        subscription = models.PushSubscription(
            shop_id=shop_id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            customer_phone=customer_phone,
        )
        db.add(subscription)

    db.commit()
    db.refresh(subscription)
    return subscription

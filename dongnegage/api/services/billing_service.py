# dongnegage/api/services/billing_service.py
"""
Billing Service
===============

Free-trial / subscription state of a shop.

The stored ``billing_status`` and ``read_only_mode`` on ``shops`` are a
cache: every read recomputes them from the trial window and the
subscription period and writes back whatever drifted.
"""

import logging
import math
import time
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from dongnegage.api.schemas.billing import BillingSnapshot, CheckoutResponse, PaymentParams
from dongnegage.api.services.toss_payments_service import TossPaymentsError, TossPaymentsService
from dongnegage.core import models
from dongnegage.core.config import config
from dongnegage.core.utils.enums import BillingEventStatus, BillingStatus, SubscriptionStatus
from dongnegage.core.utils.kst import as_utc, utcnow

logger = logging.getLogger(__name__)

BILLING_REMINDER_DAYS = (30, 20, 1)
READ_ONLY_MESSAGE = "무료체험이 종료되어 결제가 필요합니다."
DEFAULT_PLAN_CODE = "starter_monthly"
PROVIDER = "toss"

SUCCESS_PAYMENT_STATUSES = {"DONE", "SUCCESS", "PAID"}
FAILED_PAYMENT_STATUSES = {"FAILED", "CANCELED", "ABORTED", "EXPIRED"}


class ShopReadOnlyError(Exception):
    def __init__(self, message: str = READ_ONLY_MESSAGE):
        super().__init__(message)
        self.message = message


class BillingConfigurationError(Exception):
    pass


# ═══════════════════════════════════════════════════════════
# SNAPSHOT
# ═══════════════════════════════════════════════════════════

def days_until(now: datetime, end: Optional[datetime]) -> int:
    """Whole days left, rounded up; a missing trial end counts as already over."""
    if end is None:
        return -1
    return math.ceil((as_utc(end) - now).total_seconds() / 86400)


def trial_is_open(now: datetime, end: Optional[datetime]) -> bool:
    return end is not None and now <= as_utc(end)


def has_valid_subscription(subscription: Optional[models.ShopSubscription], now: datetime) -> bool:
    if not subscription or subscription.status != SubscriptionStatus.ACTIVE:
        return False
    start = as_utc(subscription.current_period_start)
    end = as_utc(subscription.current_period_end)
    return bool((end and end >= now) or (start and start > now))


def compute_billing_snapshot(
        shop: models.Shop,
        subscription: Optional[models.ShopSubscription],
        now: datetime,
) -> BillingSnapshot:
    """Pure computation, no database writes"""
    days = days_until(now, shop.trial_ends_at)
    trial_open = trial_is_open(now, shop.trial_ends_at)
    is_system_owner = bool(shop.is_system_owner)
    valid_subscription = has_valid_subscription(subscription, now)
    period_start = as_utc(subscription.current_period_start) if subscription else None

    paid_scheduled_after_trial = (
        not is_system_owner
        and trial_open
        and valid_subscription
        and period_start is not None
        and period_start > now
    )

    if is_system_owner:
        status, read_only = BillingStatus.ACTIVE, False
    elif trial_open:
        # Trial time is free no matter what the payment history says
        status, read_only = BillingStatus.TRIALING, False
    elif valid_subscription:
        status, read_only = BillingStatus.ACTIVE, False
    else:
        status, read_only = BillingStatus.PAST_DUE, True

    reminder_day = days if days in BILLING_REMINDER_DAYS else None

    return BillingSnapshot(
        shop_id=shop.id,
        is_system_owner=is_system_owner,
        trial_started_at=shop.trial_started_at,
        trial_ends_at=shop.trial_ends_at,
        billing_status=status,
        read_only_mode=read_only,
        plan_code=shop.plan_code or DEFAULT_PLAN_CODE,
        next_billing_at=shop.next_billing_at,
        days_until_trial_end=days,
        should_show_reminder=not is_system_owner and trial_open and reminder_day is not None,
        reminder_day=None if is_system_owner else reminder_day,
        paid_scheduled_after_trial=paid_scheduled_after_trial,
    )


def get_subscription(db: Session, shop_id: int) -> Optional[models.ShopSubscription]:
    return db.query(models.ShopSubscription).filter(
        models.ShopSubscription.shop_id == shop_id
    ).first()


def get_shop_billing_snapshot(db: Session, shop: models.Shop, now: Optional[datetime] = None) -> BillingSnapshot:
    """
    Recomputes the billing state and writes back drifted values.

    A system owner's stored billing_status is left untouched; only its
    read-only flag is corrected.
    """
    now = now or utcnow()
    snapshot = compute_billing_snapshot(shop, get_subscription(db, shop.id), now)

    read_only_drifted = snapshot.read_only_mode != bool(shop.read_only_mode)
    status_drifted = not snapshot.is_system_owner and snapshot.billing_status != shop.billing_status

    if read_only_drifted or status_drifted:
        shop.read_only_mode = snapshot.read_only_mode
        if not snapshot.is_system_owner:
            shop.billing_status = snapshot.billing_status
        shop.billing_updated_at = now
        db.commit()
        logger.info(
            f"💳 Shop {shop.id} billing state refreshed: "
            f"{snapshot.billing_status.value}, read_only={snapshot.read_only_mode}"
        )

    return snapshot


def assert_shop_writable(db: Session, shop: models.Shop, now: Optional[datetime] = None) -> BillingSnapshot:
    """Raises ShopReadOnlyError when the shop may not modify its data"""
    snapshot = get_shop_billing_snapshot(db, shop, now)

    if not snapshot.is_system_owner and snapshot.read_only_mode:
        raise ShopReadOnlyError()

    return snapshot


def start_trial(shop: models.Shop, now: Optional[datetime] = None):
    now = now or utcnow()
    shop.trial_started_at = now
    shop.trial_ends_at = now + timedelta(days=config.TRIAL_DAYS)
    shop.billing_status = BillingStatus.TRIALING
    shop.read_only_mode = False
    shop.plan_code = config.BILLING_PLAN_CODE
    shop.billing_updated_at = now


# ═══════════════════════════════════════════════════════════
# EVENTS
# ═══════════════════════════════════════════════════════════

def record_billing_event(
        db: Session,
        *,
        event_type: str,
        event_status: Optional[str],
        shop_id: Optional[int] = None,
        order_id: Optional[str] = None,
        payment_key: Optional[str] = None,
        amount: Optional[int] = None,
        raw_payload: Optional[dict] = None,
        commit: bool = True,
) -> models.ShopBillingEvent:
    event = models.ShopBillingEvent(
        shop_id=shop_id,
        provider=PROVIDER,
        event_type=event_type,
        event_status=event_status,
        order_id=order_id or None,
        payment_key=payment_key or None,
        amount=amount,
        currency="KRW",
        raw_payload=raw_payload or {},
    )
    db.add(event)
    if commit:
        db.commit()
    return event


def find_order_event(db: Session, order_id: Optional[str],
                     event_type: Optional[str] = None) -> Optional[models.ShopBillingEvent]:
    """Most recent event for an order id"""
    if not order_id:
        return None
    query = db.query(models.ShopBillingEvent).filter(models.ShopBillingEvent.order_id == order_id)
    if event_type:
        query = query.filter(models.ShopBillingEvent.event_type == event_type)
    return query.order_by(models.ShopBillingEvent.created_at.desc(), models.ShopBillingEvent.id.desc()).first()


def list_billing_events(db: Session, shop_id: int, limit: int = 20) -> list[models.ShopBillingEvent]:
    return db.query(models.ShopBillingEvent).filter(
        models.ShopBillingEvent.shop_id == shop_id
    ).order_by(models.ShopBillingEvent.created_at.desc(), models.ShopBillingEvent.id.desc()).limit(limit).all()


# ═══════════════════════════════════════════════════════════
# CHECKOUT / ACTIVATION
# ═══════════════════════════════════════════════════════════

def generate_order_id(shop: models.Shop) -> str:
    return f"ORDER-{shop.id}-{int(time.time() * 1000)}"


def prepare_checkout(db: Session, shop: models.Shop) -> CheckoutResponse:
    """Creates the order id and logs a pending checkout event"""
    if not config.TOSS_CLIENT_KEY:
        raise BillingConfigurationError("TOSS_CLIENT_KEY is not configured")

    amount = config.BILLING_MONTHLY_AMOUNT
    order_id = generate_order_id(shop)

    record_billing_event(
        db,
        shop_id=shop.id,
        event_type="checkout_ready",
        event_status=BillingEventStatus.PENDING.value,
        order_id=order_id,
        amount=amount,
        raw_payload={"source": "checkout"},
    )
    logger.info(f"🧾 Checkout prepared for shop {shop.id}: {order_id} ({amount} KRW)")

    return CheckoutResponse(
        clientKey=config.TOSS_CLIENT_KEY,
        method="카드",
        paymentParams=PaymentParams(
            amount=amount,
            orderId=order_id,
            orderName=f"{shop.name} 월 구독 결제",
            customerName=shop.name,
            successUrl=f"{config.PUBLIC_API_URL.rstrip('/')}/webhook/toss/success",
            failUrl=f"{config.PUBLIC_API_URL.rstrip('/')}/webhook/toss/fail",
        ),
    )


def next_period_start(shop: models.Shop, subscription: Optional[models.ShopSubscription], now: datetime) -> datetime:
    """
    A paid month starts after whatever the shop already has: the open trial
    or a still-running paid period.
    """
    start = now
    trial_end = as_utc(shop.trial_ends_at)
    if trial_end and now <= trial_end:
        start = max(start, trial_end)

    if subscription and subscription.status == SubscriptionStatus.ACTIVE:
        period_end = as_utc(subscription.current_period_end)
        if period_end and period_end > start:
            start = period_end
    return start


def activate_subscription(
        db: Session,
        shop: models.Shop,
        *,
        payment_key: Optional[str],
        customer_key: Optional[str] = None,
        payload: Optional[dict] = None,
        now: Optional[datetime] = None,
        commit: bool = True,
) -> models.ShopSubscription:
    """Upserts the shop subscription for one more paid month and unlocks the shop"""
    now = now or utcnow()
    subscription = get_subscription(db, shop.id)

    period_start = next_period_start(shop, subscription, now)
    period_end = period_start + relativedelta(months=1)

    if not subscription:
        subscription = models.ShopSubscription(shop_id=shop.id, provider=PROVIDER)
        db.add(subscription)

    subscription.plan_code = config.BILLING_PLAN_CODE
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.billing_key = payment_key or None
    if customer_key:
        subscription.customer_key = customer_key
    subscription.current_period_start = period_start
    subscription.current_period_end = period_end
    subscription.last_payment_at = now
    subscription.next_billing_at = period_end
    subscription.extra_data = payload or {}

    trial_open = trial_is_open(now, shop.trial_ends_at)

    shop.billing_status = BillingStatus.TRIALING if trial_open and not shop.is_system_owner else BillingStatus.ACTIVE
    shop.read_only_mode = False
    shop.plan_code = config.BILLING_PLAN_CODE
    shop.next_billing_at = period_end
    shop.billing_updated_at = now

    if commit:
        db.commit()

    logger.info(
        f"✅ Shop {shop.id} subscription active "
        f"{period_start.isoformat()} → {period_end.isoformat()}"
    )
    return subscription


def mark_past_due(db: Session, shop: models.Shop, now: Optional[datetime] = None, commit: bool = True):
    now = now or utcnow()
    shop.billing_status = BillingStatus.PAST_DUE
    shop.read_only_mode = True
    shop.billing_updated_at = now

    if commit:
        db.commit()
    logger.warning(f"⚠️ Shop {shop.id} marked past_due")


# ═══════════════════════════════════════════════════════════
# RECONCILIATION
# ═══════════════════════════════════════════════════════════

def reconcile_billing_states(db: Session, now: Optional[datetime] = None) -> int:
    """Refreshes every shop's cached billing state; returns how many changed"""
    now = now or utcnow()
    changed = 0
    for shop in db.query(models.Shop).all():
        before = (shop.billing_status, bool(shop.read_only_mode))
        get_shop_billing_snapshot(db, shop, now)
        if (shop.billing_status, bool(shop.read_only_mode)) != before:
            changed += 1
    return changed


# ═══════════════════════════════════════════════════════════
# WEBHOOK
# ═══════════════════════════════════════════════════════════

def parse_amount(value) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_webhook_payload(payload: dict) -> dict:
    """Flattens a Toss webhook body; payment fields may sit under ``data``."""
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    return {
        "event_type": str(payload.get("eventType") or payload.get("type") or "unknown"),
        "order_id": str(data.get("orderId") or ""),
        "payment_key": str(data.get("paymentKey") or ""),
        "customer_key": str(data.get("customerKey") or "") or None,
        "amount": parse_amount(data.get("totalAmount", data.get("amount"))),
        "status": str(data.get("status") or payload.get("status") or ""),
    }


def apply_webhook_event(db: Session, payload: dict,
                        now: Optional[datetime] = None) -> Optional[models.ShopBillingEvent]:
    """
    Applies a verified webhook and appends a ``webhook:{eventType}`` event.

    Returns:
        The recorded event, or None for a repeated delivery (same event type,
        order id and status), which is acknowledged without reapplying.
    """
    now = now or utcnow()
    fields = parse_webhook_payload(payload)
    event_type = f"webhook:{fields['event_type']}"
    status = fields["status"]

    if fields["order_id"]:
        duplicate = db.query(models.ShopBillingEvent).filter(
            models.ShopBillingEvent.order_id == fields["order_id"],
            models.ShopBillingEvent.event_type == event_type,
            models.ShopBillingEvent.event_status == (status or None),
        ).first()
        if duplicate:
            logger.info("toss_webhook_duplicate", extra={"order_id": fields["order_id"], "status": status})
            return None

    last_event = find_order_event(db, fields["order_id"])
    shop = db.get(models.Shop, last_event.shop_id) if last_event and last_event.shop_id else None

    if shop:
        if status.upper() in SUCCESS_PAYMENT_STATUSES:
            activate_subscription(
                db,
                shop,
                payment_key=fields["payment_key"],
                customer_key=fields["customer_key"],
                payload=payload,
                now=now,
                commit=False,
            )
        elif status.upper() in FAILED_PAYMENT_STATUSES:
            mark_past_due(db, shop, now, commit=False)

    event = record_billing_event(
        db,
        event_type=event_type,
        event_status=status or None,
        shop_id=shop.id if shop else None,
        order_id=fields["order_id"],
        payment_key=fields["payment_key"],
        amount=fields["amount"],
        raw_payload=payload,
        commit=False,
    )
    db.commit()

    logger.info(
        "toss_webhook_applied",
        extra={"order_id": fields["order_id"], "status": status, "shop_id": shop.id if shop else None},
    )
    return event


# ═══════════════════════════════════════════════════════════
# REDIRECT CALLBACKS
# ═══════════════════════════════════════════════════════════

def confirm_checkout(
        db: Session,
        toss_service: TossPaymentsService,
        payment_key: str,
        order_id: str,
        amount: int,
        now: Optional[datetime] = None,
) -> bool:
    """
    Confirms a payment the customer just approved and activates the shop.

    The amount must match what checkout asked for; a mismatch is never sent
    to Toss. Returns False when the payment could not be confirmed.
    """
    now = now or utcnow()
    checkout = find_order_event(db, order_id, event_type="checkout_ready")
    shop_id = checkout.shop_id if checkout else None

    if checkout and checkout.amount is not None and checkout.amount != amount:
        logger.warning(f"⚠️ Amount mismatch for {order_id}: expected {checkout.amount}, got {amount}")
        record_billing_event(
            db,
            event_type="payment_confirm_failed",
            event_status=BillingEventStatus.FAILED.value,
            shop_id=shop_id,
            order_id=order_id,
            payment_key=payment_key,
            amount=amount,
            raw_payload={"reason": "amount_mismatch", "expected": checkout.amount},
        )
        return False

    try:
        confirmation = toss_service.confirm_payment(payment_key, order_id, amount)
    except TossPaymentsError as e:
        record_billing_event(
            db,
            event_type="payment_confirm_failed",
            event_status=BillingEventStatus.FAILED.value,
            shop_id=shop_id,
            order_id=order_id,
            payment_key=payment_key,
            amount=amount,
            raw_payload=e.payload or {"message": e.message},
        )
        return False

    shop = db.get(models.Shop, shop_id) if shop_id else None
    if shop:
        activate_subscription(
            db,
            shop,
            payment_key=payment_key,
            customer_key=confirmation.get("customerKey"),
            payload=confirmation,
            now=now,
            commit=False,
        )
        record_billing_event(
            db,
            event_type="payment_confirmed",
            event_status=BillingEventStatus.SUCCESS.value,
            shop_id=shop.id,
            order_id=order_id,
            payment_key=payment_key,
            amount=amount,
            raw_payload=confirmation,
            commit=False,
        )
        db.commit()
    return True


def record_checkout_failure(db: Session, order_id: Optional[str], code: Optional[str], message: Optional[str]):
    last_event = find_order_event(db, order_id)
    record_billing_event(
        db,
        event_type="payment_failed",
        event_status=BillingEventStatus.FAILED.value,
        shop_id=last_event.shop_id if last_event else None,
        order_id=order_id,
        raw_payload={"code": code, "message": message},
    )

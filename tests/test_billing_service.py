"""
Billing tests
=============
Trial / subscription snapshot, activation, Toss webhooks and redirects.
"""

from datetime import timedelta
from unittest.mock import MagicMock, Mock

import pytest
from dateutil.relativedelta import relativedelta

from dongnegage.api.services import billing_service
from dongnegage.api.services.billing_service import (
    ShopReadOnlyError,
    activate_subscription,
    apply_webhook_event,
    assert_shop_writable,
    compute_billing_snapshot,
    confirm_checkout,
    get_shop_billing_snapshot,
    reconcile_billing_states,
    record_billing_event,
)
from dongnegage.api.services.toss_payments_service import TossPaymentsError, TossPaymentsService
from dongnegage.core import models
from dongnegage.core.utils.enums import BillingStatus, SubscriptionStatus
from dongnegage.core.utils.kst import as_utc

ORDER_ID = "ORDER-1-1700000000000"


def expire_trial(db, shop, now, days_ago=1):
    shop.trial_ends_at = now - timedelta(days=days_ago)
    db.commit()


def add_subscription(db, shop, start, end, status=SubscriptionStatus.ACTIVE):
    subscription = models.ShopSubscription(
        shop_id=shop.id,
        status=status,
        current_period_start=start,
        current_period_end=end,
    )
    db.add(subscription)
    db.commit()
    return subscription


def webhook_payload(status="DONE", order_id=ORDER_ID):
    return {
        "eventType": "PAYMENT_STATUS_CHANGED",
        "data": {
            "orderId": order_id,
            "paymentKey": "pay_123",
            "status": status,
            "totalAmount": 9900,
        },
    }


# ═══════════════════════════════════════════════════════════
# SNAPSHOT
# ═══════════════════════════════════════════════════════════

class TestSnapshot:

    def test_trial_time_wins_over_payment_history(self, db, shop, now):
        shop.trial_ends_at = now + timedelta(days=10)
        shop.billing_status = BillingStatus.PAST_DUE
        shop.read_only_mode = True
        db.commit()
        record_billing_event(db, shop_id=shop.id, event_type="payment_failed", event_status="failed")

        snapshot = get_shop_billing_snapshot(db, shop, now)

        assert snapshot.billing_status == BillingStatus.TRIALING
        assert snapshot.read_only_mode is False
        assert snapshot.days_until_trial_end == 10
        # Drifted cache written back
        assert shop.billing_status == BillingStatus.TRIALING
        assert shop.read_only_mode is False

    def test_ended_trial_without_subscription_is_read_only(self, db, shop, now):
        expire_trial(db, shop, now)

        snapshot = get_shop_billing_snapshot(db, shop, now)

        assert snapshot.billing_status == BillingStatus.PAST_DUE
        assert snapshot.read_only_mode is True
        assert shop.read_only_mode is True
        with pytest.raises(ShopReadOnlyError):
            assert_shop_writable(db, shop, now)

    def test_ended_trial_with_running_subscription_is_active(self, db, shop, now):
        expire_trial(db, shop, now)
        add_subscription(db, shop, now - timedelta(days=10), now + timedelta(days=20))

        snapshot = assert_shop_writable(db, shop, now)

        assert snapshot.billing_status == BillingStatus.ACTIVE
        assert snapshot.read_only_mode is False

    def test_cancelled_subscription_does_not_count(self, db, shop, now):
        expire_trial(db, shop, now)
        add_subscription(db, shop, now - timedelta(days=10), now + timedelta(days=20),
                         status=SubscriptionStatus.CANCELLED)

        assert get_shop_billing_snapshot(db, shop, now).read_only_mode is True

    def test_missing_trial_end_counts_as_ended(self, db, shop, now):
        shop.trial_ends_at = None
        db.commit()

        snapshot = get_shop_billing_snapshot(db, shop, now)

        assert snapshot.days_until_trial_end == -1
        assert snapshot.read_only_mode is True

    def test_trial_ended_an_hour_ago_is_read_only(self, db, shop, now):
        shop.trial_ends_at = now - timedelta(hours=1)
        db.commit()

        snapshot = get_shop_billing_snapshot(db, shop, now)

        assert snapshot.billing_status == BillingStatus.PAST_DUE
        assert snapshot.read_only_mode is True
        assert snapshot.should_show_reminder is False
        with pytest.raises(ShopReadOnlyError):
            assert_shop_writable(db, shop, now)

    def test_trial_ending_in_an_hour_is_still_open(self, db, shop, now):
        shop.trial_ends_at = now + timedelta(hours=1)
        db.commit()

        snapshot = assert_shop_writable(db, shop, now)

        assert snapshot.billing_status == BillingStatus.TRIALING
        assert snapshot.read_only_mode is False
        assert snapshot.days_until_trial_end == 1
        assert snapshot.reminder_day == 1

    def test_system_owner_is_never_locked(self, db, shop, now):
        shop.is_system_owner = True
        shop.billing_status = BillingStatus.TRIALING
        expire_trial(db, shop, now)

        snapshot = assert_shop_writable(db, shop, now)

        assert snapshot.billing_status == BillingStatus.ACTIVE
        assert snapshot.read_only_mode is False
        assert snapshot.reminder_day is None
        # Stored status of a system owner is left alone
        assert shop.billing_status == BillingStatus.TRIALING

    @pytest.mark.parametrize("days,show", [(30, True), (20, True), (1, True), (15, False)])
    def test_reminder_days(self, shop, now, days, show):
        shop.trial_ends_at = now + timedelta(days=days)

        snapshot = compute_billing_snapshot(shop, None, now)

        assert snapshot.should_show_reminder is show
        assert snapshot.reminder_day == (days if show else None)

    def test_paid_month_scheduled_after_trial(self, db, shop, now):
        trial_end = now + timedelta(days=10)
        shop.trial_ends_at = trial_end
        subscription = add_subscription(db, shop, trial_end, trial_end + relativedelta(months=1))

        snapshot = compute_billing_snapshot(shop, subscription, now)

        assert snapshot.billing_status == BillingStatus.TRIALING
        assert snapshot.paid_scheduled_after_trial is True

    def test_reconcile_counts_changed_shops(self, db, shop, other_shop, now):
        expire_trial(db, other_shop, now)

        assert reconcile_billing_states(db, now) == 1
        assert other_shop.read_only_mode is True
        assert shop.read_only_mode is False


# ═══════════════════════════════════════════════════════════
# ACTIVATION
# ═══════════════════════════════════════════════════════════

class TestActivation:

    def test_payment_during_trial_starts_after_trial(self, db, shop, now):
        trial_end = as_utc(shop.trial_ends_at)

        subscription = activate_subscription(db, shop, payment_key="pay_1", now=now)

        assert as_utc(subscription.current_period_start) == trial_end
        assert as_utc(subscription.current_period_end) == trial_end + relativedelta(months=1)
        assert shop.billing_status == BillingStatus.TRIALING
        assert shop.read_only_mode is False

    def test_payment_after_trial_starts_now(self, db, shop, now):
        expire_trial(db, shop, now)
        shop.read_only_mode = True
        db.commit()

        subscription = activate_subscription(db, shop, payment_key="pay_1", now=now)

        assert as_utc(subscription.current_period_start) == now
        assert shop.billing_status == BillingStatus.ACTIVE
        assert shop.read_only_mode is False

    def test_renewal_extends_running_period(self, db, shop, now):
        expire_trial(db, shop, now)
        period_end = now + timedelta(days=5)
        add_subscription(db, shop, now - timedelta(days=25), period_end)

        subscription = activate_subscription(db, shop, payment_key="pay_2", now=now)

        assert as_utc(subscription.current_period_start) == period_end
        assert db.query(models.ShopSubscription).count() == 1


# ═══════════════════════════════════════════════════════════
# WEBHOOK
# ═══════════════════════════════════════════════════════════

class TestWebhook:

    @pytest.fixture
    def checkout(self, db, shop):
        return record_billing_event(db, shop_id=shop.id, event_type="checkout_ready",
                                    event_status="pending", order_id=ORDER_ID, amount=9900)

    def test_success_status_activates_locked_shop(self, db, shop, checkout, now):
        expire_trial(db, shop, now)
        shop.read_only_mode = True
        shop.billing_status = BillingStatus.PAST_DUE
        db.commit()

        event = apply_webhook_event(db, webhook_payload("DONE"), now)

        assert event.event_type == "webhook:PAYMENT_STATUS_CHANGED"
        assert event.shop_id == shop.id
        assert event.amount == 9900
        assert shop.billing_status == BillingStatus.ACTIVE
        assert shop.read_only_mode is False
        assert billing_service.get_subscription(db, shop.id).billing_key == "pay_123"

    def test_repeated_delivery_is_acknowledged_once(self, db, shop, checkout, now):
        assert apply_webhook_event(db, webhook_payload("DONE"), now) is not None
        assert apply_webhook_event(db, webhook_payload("DONE"), now) is None

        events = db.query(models.ShopBillingEvent).filter(
            models.ShopBillingEvent.event_type == "webhook:PAYMENT_STATUS_CHANGED"
        ).count()
        assert events == 1

    def test_failed_status_marks_past_due(self, db, shop, checkout, now):
        apply_webhook_event(db, webhook_payload("CANCELED"), now)

        assert shop.billing_status == BillingStatus.PAST_DUE
        assert shop.read_only_mode is True

    def test_unknown_order_is_only_logged(self, db, shop, now):
        event = apply_webhook_event(db, webhook_payload("DONE", order_id="ORDER-unknown"), now)

        assert event.shop_id is None
        assert billing_service.get_subscription(db, shop.id) is None

    def test_flat_payload_is_understood(self):
        fields = billing_service.parse_webhook_payload({"type": "X", "orderId": "O1", "status": "DONE", "amount": "9900"})
        assert fields["event_type"] == "X"
        assert fields["order_id"] == "O1"
        assert fields["amount"] == 9900


# ═══════════════════════════════════════════════════════════
# CHECKOUT
# ═══════════════════════════════════════════════════════════

class TestCheckout:

    def test_prepare_requires_client_key(self, db, shop, monkeypatch):
        monkeypatch.setattr(billing_service.config, "TOSS_CLIENT_KEY", None)

        with pytest.raises(billing_service.BillingConfigurationError):
            billing_service.prepare_checkout(db, shop)

    def test_prepare_records_pending_event(self, db, shop, monkeypatch):
        monkeypatch.setattr(billing_service.config, "TOSS_CLIENT_KEY", "test_ck")

        response = billing_service.prepare_checkout(db, shop)

        assert response.clientKey == "test_ck"
        assert response.paymentParams.amount == billing_service.config.BILLING_MONTHLY_AMOUNT
        assert response.paymentParams.successUrl.endswith("/webhook/toss/success")
        event = billing_service.find_order_event(db, response.paymentParams.orderId)
        assert event.event_type == "checkout_ready"
        assert event.event_status == "pending"

    def test_confirm_activates_shop(self, db, shop, now):
        record_billing_event(db, shop_id=shop.id, event_type="checkout_ready",
                             event_status="pending", order_id=ORDER_ID, amount=9900)
        toss = Mock()
        toss.confirm_payment.return_value = {"status": "DONE", "customerKey": "cust_1"}

        assert confirm_checkout(db, toss, "pay_1", ORDER_ID, 9900, now) is True

        toss.confirm_payment.assert_called_once_with("pay_1", ORDER_ID, 9900)
        subscription = billing_service.get_subscription(db, shop.id)
        assert subscription.customer_key == "cust_1"
        assert billing_service.find_order_event(db, ORDER_ID).event_type == "payment_confirmed"

    def test_amount_mismatch_is_never_confirmed(self, db, shop, now):
        record_billing_event(db, shop_id=shop.id, event_type="checkout_ready",
                             event_status="pending", order_id=ORDER_ID, amount=9900)
        toss = Mock()

        assert confirm_checkout(db, toss, "pay_1", ORDER_ID, 100, now) is False

        toss.confirm_payment.assert_not_called()
        assert billing_service.find_order_event(db, ORDER_ID).event_type == "payment_confirm_failed"

    def test_toss_rejection_is_recorded(self, db, shop, now):
        record_billing_event(db, shop_id=shop.id, event_type="checkout_ready",
                             event_status="pending", order_id=ORDER_ID, amount=9900)
        toss = Mock()
        toss.confirm_payment.side_effect = TossPaymentsError("거절", status_code=400, payload={"code": "REJECT"})

        assert confirm_checkout(db, toss, "pay_1", ORDER_ID, 9900, now) is False

        event = billing_service.find_order_event(db, ORDER_ID)
        assert event.event_type == "payment_confirm_failed"
        assert event.raw_payload == {"code": "REJECT"}
        assert billing_service.get_subscription(db, shop.id) is None


class TestTossPaymentsService:

    def test_requires_secret_key(self, monkeypatch):
        monkeypatch.setattr("dongnegage.api.services.toss_payments_service.config.TOSS_SECRET_KEY", None)
        with pytest.raises(ValueError):
            TossPaymentsService()

    def test_error_response_raises(self):
        service = TossPaymentsService(secret_key="test_sk")
        response = MagicMock(status_code=400)
        response.json.return_value = {"code": "INVALID", "message": "잘못된 요청"}
        service.session.request = Mock(return_value=response)

        with pytest.raises(TossPaymentsError) as exc:
            service.confirm_payment("pay_1", ORDER_ID, 9900)

        assert exc.value.status_code == 400
        assert exc.value.message == "잘못된 요청"
        _, kwargs = service.session.request.call_args
        assert kwargs["headers"] == {"Idempotency-Key": ORDER_ID}
        assert kwargs["json"] == {"paymentKey": "pay_1", "orderId": ORDER_ID, "amount": 9900}

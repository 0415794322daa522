"""
Web push tests
==============
Fan-out, customer notifications and eviction of expired subscriptions.
"""

from unittest.mock import Mock, patch

import pytest
import requests
from pywebpush import WebPushException

from dongnegage.api.services import push_service
from dongnegage.core import models


@pytest.fixture
def vapid(monkeypatch):
    monkeypatch.setattr(push_service.config, "VAPID_SUBJECT", "mailto:owner@example.com")
    monkeypatch.setattr(push_service.config, "VAPID_PUBLIC_KEY", "public-key")
    monkeypatch.setattr(push_service.config, "VAPID_PRIVATE_KEY", "private-key")


def subscribe(db, shop, endpoint, phone=None):
    return push_service.upsert_subscription(db, shop.id, endpoint, "p256dh-key", "auth-key", phone)


def gone(status_code):
    return WebPushException("push failed", response=Mock(status_code=status_code))


class TestFanOut:

    def test_skipped_without_vapid_keys(self, db, shop):
        subscribe(db, shop, "https://push.example/1")

        with patch.object(push_service, "webpush") as webpush:
            result = push_service.send_push_to_shop(db, shop.id, {"title": "t", "body": "b"})

        webpush.assert_not_called()
        assert result == {"sent": 0, "failed": 0, "removed": 0}

    def test_expired_subscriptions_are_removed(self, db, shop, vapid):
        subscribe(db, shop, "https://push.example/ok")
        subscribe(db, shop, "https://push.example/gone")
        subscribe(db, shop, "https://push.example/flaky")

        def fake_webpush(subscription_info, **kwargs):
            endpoint = subscription_info["endpoint"]
            if endpoint.endswith("gone"):
                raise gone(410)
            if endpoint.endswith("flaky"):
                raise gone(500)

        with patch.object(push_service, "webpush", side_effect=fake_webpush):
            result = push_service.send_push_to_shop(db, shop.id, {"title": "새 상품", "body": "예약하세요"})

        assert result == {"sent": 1, "failed": 1, "removed": 1}
        endpoints = {s.endpoint for s in db.query(models.PushSubscription).all()}
        assert endpoints == {"https://push.example/ok", "https://push.example/flaky"}

    def test_unreachable_endpoint_does_not_stop_the_rest(self, db, shop, vapid):
        subscribe(db, shop, "https://push.example/down")
        subscribe(db, shop, "https://push.example/up")
        called = []

        def fake_webpush(subscription_info, **kwargs):
            called.append(subscription_info["endpoint"])
            if subscription_info["endpoint"].endswith("down"):
                raise requests.exceptions.ConnectionError("unreachable")

        with patch.object(push_service, "webpush", side_effect=fake_webpush):
            result = push_service.send_push_to_shop(db, shop.id, {"title": "t", "body": "b"})

        assert sorted(called) == ["https://push.example/down", "https://push.example/up"]
        assert result == {"sent": 1, "failed": 1, "removed": 0}
        assert db.query(models.PushSubscription).count() == 2

    def test_payload_is_signed_with_vapid_claims(self, db, shop, vapid):
        subscribe(db, shop, "https://push.example/1")

        with patch.object(push_service, "webpush") as webpush:
            push_service.send_push_to_shop(db, shop.id, {"title": "궁구", "body": "확인"})

        kwargs = webpush.call_args.kwargs
        assert kwargs["vapid_private_key"] == "private-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:owner@example.com"}
        assert "궁구" in kwargs["data"]


class TestCustomerNotifications:

    def test_only_the_customers_devices(self, db, shop, vapid):
        subscribe(db, shop, "https://push.example/mine", phone="01012345678")
        subscribe(db, shop, "https://push.example/theirs", phone="01099998888")

        with patch.object(push_service, "webpush") as webpush:
            result = push_service.notify_customer(db, shop.id, "01012345678", {"title": "t", "body": "b"})

        assert result["sent"] == 1
        assert webpush.call_args.kwargs["subscription_info"]["endpoint"] == "https://push.example/mine"


class TestUpsert:

    def test_same_endpoint_refreshes_keys(self, db, shop):
        subscribe(db, shop, "https://push.example/1")
        push_service.upsert_subscription(db, shop.id, "https://push.example/1", "new-p256dh", "new-auth", "01012345678")

        subscriptions = db.query(models.PushSubscription).all()
        assert len(subscriptions) == 1
        assert subscriptions[0].p256dh == "new-p256dh"
        assert subscriptions[0].customer_phone == "01012345678"

"""Tests for Stripe billing: tiers, subscription changes and webhook handling.

Stripe SDK calls are patched; Stripe objects are stood in by SimpleNamespace.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from app.config import load_settings
from app.db.tables import WebhookEvent
from app.services.billing import (
    BillingError,
    create_subscription,
    get_billing_details,
    handle_webhook_event,
    list_tiers,
    tier_info,
    update_subscription,
    verify_webhook,
)
from tests.conftest import make_developer


@pytest.fixture
def stripe_configured(monkeypatch):
    settings = load_settings()
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")


def _event(event_type, obj, event_id="evt_1", created=None):
    return {
        "id": event_id,
        "type": event_type,
        "created": created or int(time.time()),
        "data": {"object": obj},
    }


# ===========================================================================
# Tiers
# ===========================================================================


class TestTiers:

    def test_list_tiers_in_order(self):
        assert [t.tier for t in list_tiers()] == ["FREE", "BASIC", "STARTER", "PRO", "EXPERT"]

    def test_tier_info(self):
        info = tier_info("PRO")
        assert info.points == 200
        assert info.xp_multiplier == 1.75
        assert info.price == 19.99

    def test_unknown_tier_falls_back_to_free(self):
        assert tier_info("PLATINUM").tier == "FREE"


# ===========================================================================
# Customer-facing operations
# ===========================================================================


@pytest.mark.asyncio
class TestSubscriptions:

    async def test_create_without_stripe_key_is_503(self, db, developer):
        with pytest.raises(BillingError) as exc:
            await create_subscription(db, developer, "PRO", "price_pro")
        assert exc.value.status_code == 503

    async def test_create_rejects_free_tier(self, db, developer, stripe_configured):
        with pytest.raises(BillingError) as exc:
            await create_subscription(db, developer, "FREE", "price_free")
        assert exc.value.status_code == 400

    async def test_create_makes_customer_and_subscription(self, db, developer, stripe_configured):
        customer = SimpleNamespace(id="cus_123")
        subscription = SimpleNamespace(
            id="sub_123",
            status="incomplete",
            latest_invoice=SimpleNamespace(payment_intent=SimpleNamespace(client_secret="pi_secret")),
        )

        with patch("app.services.billing.stripe.Customer.create", return_value=customer) as create_customer, \
             patch("app.services.billing.stripe.Subscription.create", return_value=subscription) as create_sub:
            result = await create_subscription(db, developer, "PRO", "price_pro")

        assert result == {"subscription_id": "sub_123", "client_secret": "pi_secret", "status": "incomplete"}
        create_customer.assert_called_once()
        assert create_sub.call_args.kwargs["customer"] == "cus_123"
        assert create_sub.call_args.kwargs["items"] == [{"price": "price_pro"}]

        assert developer.stripe_customer_id == "cus_123"
        assert developer.subscription_tier == "PRO"
        assert developer.subscription_status == "pending"
        assert developer.monthly_points == 200
        assert developer.points_used == 0

    async def test_existing_customer_is_reused(self, db, stripe_configured):
        developer = make_developer(db, stripe_customer_id="cus_existing")
        subscription = SimpleNamespace(id="sub_9", status="incomplete", latest_invoice=None)

        with patch("app.services.billing.stripe.Customer.create") as create_customer, \
             patch("app.services.billing.stripe.Subscription.create", return_value=subscription):
            result = await create_subscription(db, developer, "BASIC", "price_basic")

        create_customer.assert_not_called()
        assert result["client_secret"] is None

    async def test_stripe_error_is_502(self, db, developer, stripe_configured):
        with patch("app.services.billing.stripe.Customer.create", side_effect=stripe.StripeError("boom")):
            with pytest.raises(BillingError) as exc:
                await create_subscription(db, developer, "PRO", "price_pro")
        assert exc.value.status_code == 502
        assert developer.subscription_tier == "FREE"

    async def test_update_without_subscription_is_404(self, db, developer, stripe_configured):
        with pytest.raises(BillingError) as exc:
            await update_subscription(db, developer, "cancel")
        assert exc.value.status_code == 404

    async def test_cancel(self, db, stripe_configured):
        developer = make_developer(db, tier="PRO", points=200, subscription_id="sub_1")

        with patch("app.services.billing.stripe.Subscription.modify",
                   return_value=SimpleNamespace(status="active")) as modify:
            result = await update_subscription(db, developer, "cancel")

        modify.assert_called_once_with("sub_1", cancel_at_period_end=True)
        assert result == {"subscription_id": "sub_1", "status": "active"}
        assert developer.subscription_status == "cancelled"

    async def test_upgrade_swaps_price_on_existing_item(self, db, stripe_configured):
        developer = make_developer(db, tier="BASIC", points=30, subscription_id="sub_1")
        current = {"items": {"data": [{"id": "si_1"}]}}

        with patch("app.services.billing.stripe.Subscription.retrieve", return_value=current), \
             patch("app.services.billing.stripe.Subscription.modify",
                   return_value=SimpleNamespace(status="active")) as modify:
            await update_subscription(db, developer, "upgrade", "EXPERT", "price_expert")

        assert modify.call_args.kwargs["items"] == [{"id": "si_1", "price": "price_expert"}]
        assert developer.subscription_tier == "EXPERT"
        assert developer.monthly_points == 500

    async def test_upgrade_requires_tier_and_price(self, db, stripe_configured):
        developer = make_developer(db, tier="BASIC", subscription_id="sub_1")
        with pytest.raises(BillingError) as exc:
            await update_subscription(db, developer, "upgrade", "PRO", None)
        assert exc.value.status_code == 400

    async def test_billing_details(self, stripe_configured):
        developer = SimpleNamespace(subscription_id="sub_1")
        sub = SimpleNamespace(
            current_period_start=1767225600,  # 2026-01-01
            current_period_end=1769904000,  # 2026-02-01
            cancel_at_period_end=False,
            status="active",
        )
        with patch("app.services.billing.stripe.Subscription.retrieve", return_value=sub):
            details = await get_billing_details(developer)

        assert details["status"] == "active"
        assert details["current_period_end"].isoformat() == "2026-02-01T00:00:00"

    async def test_billing_details_without_subscription(self):
        assert await get_billing_details(SimpleNamespace(subscription_id=None)) is None


# ===========================================================================
# Webhooks
# ===========================================================================


class TestVerifyWebhook:

    def test_missing_signature(self, stripe_configured):
        with pytest.raises(BillingError) as exc:
            verify_webhook(b"{}", None)
        assert exc.value.status_code == 400

    def test_unconfigured_secret_is_503(self):
        with pytest.raises(BillingError) as exc:
            verify_webhook(b"{}", "t=1,v1=abc")
        assert exc.value.status_code == 503

    def test_bad_signature(self, stripe_configured):
        with patch("app.services.billing.stripe.Webhook.construct_event",
                   side_effect=stripe.SignatureVerificationError("bad", "sig")):
            with pytest.raises(BillingError) as exc:
                verify_webhook(b"{}", "t=1,v1=abc")
        assert exc.value.status_code == 400

    def test_valid_signature_returns_payload(self, stripe_configured):
        payload = json.dumps(_event("invoice.payment_failed", {"customer": "cus_1"})).encode()
        with patch("app.services.billing.stripe.Webhook.construct_event", return_value=MagicMock()) as construct:
            event = verify_webhook(payload, "t=1,v1=abc")

        construct.assert_called_once_with(payload, "t=1,v1=abc", "whsec_test")
        assert event["type"] == "invoice.payment_failed"


class TestHandleWebhookEvent:

    def test_subscription_created_sets_tier_and_points(self, db):
        developer = make_developer(db, stripe_customer_id="cus_1")
        obj = {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "metadata": {"tier": "STARTER"},
            "current_period_start": 1767225600,
            "current_period_end": 1769904000,
        }

        assert handle_webhook_event(db, _event("customer.subscription.created", obj)) == "processed"

        assert developer.subscription_tier == "STARTER"
        assert developer.subscription_status == "active"
        assert developer.subscription_id == "sub_1"
        assert developer.monthly_points == 75
        assert developer.points_reset_date.isoformat() == "2026-02-01T00:00:00"

    def test_recent_event_is_not_flagged(self, db):
        make_developer(db, stripe_customer_id="cus_1", tier="PRO", points=200)
        event = _event("customer.subscription.deleted", {"customer": "cus_1"})

        with patch("app.services.billing.logger") as log:
            handle_webhook_event(db, event)

        log.warning.assert_not_called()

    def test_duplicate_event_is_skipped(self, db):
        developer = make_developer(db, stripe_customer_id="cus_1", tier="PRO", points=200)
        event = _event("customer.subscription.deleted", {"customer": "cus_1"})

        assert handle_webhook_event(db, event) == "processed"
        assert developer.subscription_tier == "FREE"

        developer.subscription_tier = "PRO"
        db.commit()
        assert handle_webhook_event(db, event) == "duplicate"
        assert developer.subscription_tier == "PRO"

    def test_payment_events(self, db):
        developer = make_developer(db, stripe_customer_id="cus_1", tier="BASIC", points=30)
        developer.points_used = 25
        db.commit()

        handle_webhook_event(db, _event("invoice.payment_failed", {"customer": "cus_1"}, "evt_a"))
        assert developer.subscription_status == "past_due"

        handle_webhook_event(db, _event("invoice.payment_succeeded", {"customer": "cus_1"}, "evt_b"))
        assert developer.subscription_status == "active"
        assert developer.points_used == 0
        assert developer.monthly_points == 30

    def test_subscription_updated_keeps_usage(self, db):
        developer = make_developer(db, stripe_customer_id="cus_1", tier="BASIC", points=30)
        developer.points_used = 10
        db.commit()

        obj = {"customer": "cus_1", "status": "active", "metadata": {"tier": "PRO"}}
        handle_webhook_event(db, _event("customer.subscription.updated", obj))

        assert developer.subscription_tier == "PRO"
        assert developer.monthly_points == 200
        assert developer.points_used == 10

    def test_unknown_customer_and_unhandled_type(self, db):
        assert handle_webhook_event(db, _event("invoice.payment_failed", {"customer": "cus_x"}, "e1")) == "unknown_customer"
        assert handle_webhook_event(db, _event("charge.refunded", {}, "e2")) == "ignored"
        assert db.get(WebhookEvent, "e1") is not None
        assert db.get(WebhookEvent, "e2").type == "charge.refunded"

    def test_stale_event_is_logged_and_still_processed(self, db):
        developer = make_developer(db, stripe_customer_id="cus_1")
        event = _event("invoice.payment_failed", {"customer": "cus_1"}, created=int(time.time()) - 3600)

        with patch("app.services.billing.logger") as log:
            assert handle_webhook_event(db, event) == "processed"

        assert any("possible replay" in c.args[0] for c in log.warning.call_args_list)
        assert developer.subscription_status == "past_due"

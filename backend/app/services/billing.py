"""Stripe subscriptions: tier table, checkout, plan changes, webhooks.

Stripe SDK calls are blocking and go through asyncio.to_thread. Webhook
events are de-duplicated by event id, so Stripe retries are harmless.
"""

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone

import stripe
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import load_settings
from app.core.constants import PAID_TIERS, POINTS_RESET_DAYS, TIER_CONFIG
from app.core.logger import logger
from app.db.tables import Developer, WebhookEvent, utcnow
from app.models import TierInfo

WEBHOOK_REPLAY_WINDOW = 600  # seconds


class BillingError(Exception):
    """Raised for billing requests that cannot be fulfilled."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail)


def _configure() -> None:
    settings = load_settings()
    if not settings.stripe_secret_key:
        raise BillingError(503, "Payments are not configured")
    stripe.api_key = settings.stripe_secret_key


def _from_timestamp(ts: int | None) -> datetime | None:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def tier_info(tier: str) -> TierInfo:
    config = TIER_CONFIG.get(tier, TIER_CONFIG["FREE"])
    return TierInfo(tier=tier if tier in TIER_CONFIG else "FREE", **config)


def list_tiers() -> list[TierInfo]:
    return [tier_info(tier) for tier in TIER_CONFIG]


def _reset_points_for_tier(developer: Developer, tier: str, reset_date: datetime | None = None) -> None:
    developer.monthly_points = TIER_CONFIG[tier]["points"]
    developer.points_used = 0
    developer.points_earned = 0
    developer.points_reset_date = reset_date or utcnow() + timedelta(days=POINTS_RESET_DAYS)


# ---------------------------------------------------------------------------
# Customer-facing operations
# ---------------------------------------------------------------------------


async def get_billing_details(developer: Developer) -> dict | None:
    """Current Stripe billing period, or None without a subscription."""
    if not developer.subscription_id:
        return None
    _configure()
    try:
        sub = await asyncio.to_thread(stripe.Subscription.retrieve, developer.subscription_id)
    except stripe.StripeError as e:
        logger.warning(f"Stripe: could not retrieve subscription {developer.subscription_id}: {e}")
        return None
    return {
        "current_period_start": _from_timestamp(getattr(sub, "current_period_start", None)),
        "current_period_end": _from_timestamp(getattr(sub, "current_period_end", None)),
        "cancel_at_period_end": bool(getattr(sub, "cancel_at_period_end", False)),
        "status": getattr(sub, "status", None),
    }


async def create_subscription(db: Session, developer: Developer, tier: str, price_id: str) -> dict:
    if tier not in PAID_TIERS:
        raise BillingError(400, "Invalid subscription tier")
    _configure()

    try:
        if not developer.stripe_customer_id:
            customer = await asyncio.to_thread(
                stripe.Customer.create,
                email=developer.email,
                name=developer.name or None,
                metadata={"developer_id": developer.id},
            )
            developer.stripe_customer_id = customer.id
            db.commit()
            logger.info(f"Stripe: created customer {customer.id} for {developer.id}")

        subscription = await asyncio.to_thread(
            stripe.Subscription.create,
            customer=developer.stripe_customer_id,
            items=[{"price": price_id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
            metadata={"tier": tier, "developer_id": developer.id},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe: subscription create failed for {developer.id}: {e}")
        raise BillingError(502, "Payment provider error")

    developer.subscription_tier = tier
    developer.subscription_status = "pending"
    developer.subscription_id = subscription.id
    developer.subscription_start = utcnow()
    _reset_points_for_tier(developer, tier)
    db.commit()

    client_secret = None
    invoice = getattr(subscription, "latest_invoice", None)
    payment_intent = getattr(invoice, "payment_intent", None) if invoice else None
    if payment_intent is not None:
        client_secret = getattr(payment_intent, "client_secret", None)

    logger.info(f"Stripe: subscription {subscription.id} created ({tier}) for {developer.id}")
    return {
        "subscription_id": subscription.id,
        "client_secret": client_secret,
        "status": subscription.status,
    }


async def update_subscription(
    db: Session,
    developer: Developer,
    action: str,
    tier: str | None = None,
    price_id: str | None = None,
) -> dict:
    if not developer.subscription_id:
        raise BillingError(404, "No active subscription found")
    _configure()

    try:
        if action == "cancel":
            result = await asyncio.to_thread(
                stripe.Subscription.modify, developer.subscription_id, cancel_at_period_end=True
            )
            developer.subscription_status = "cancelled"
        else:
            if not tier or not price_id:
                raise BillingError(400, "Missing tier or price_id for upgrade/downgrade")
            if tier not in PAID_TIERS:
                raise BillingError(400, "Invalid subscription tier")
            current = await asyncio.to_thread(stripe.Subscription.retrieve, developer.subscription_id)
            item_id = current["items"]["data"][0]["id"]
            result = await asyncio.to_thread(
                stripe.Subscription.modify,
                developer.subscription_id,
                items=[{"id": item_id, "price": price_id}],
                proration_behavior="create_prorations",
                metadata={"tier": tier, "developer_id": developer.id},
            )
            developer.subscription_tier = tier
            developer.monthly_points = TIER_CONFIG[tier]["points"]
    except stripe.StripeError as e:
        logger.error(f"Stripe: subscription {action} failed for {developer.id}: {e}")
        raise BillingError(502, "Payment provider error")

    db.commit()
    logger.info(f"Stripe: subscription {developer.subscription_id} {action} for {developer.id}")
    return {"subscription_id": developer.subscription_id, "status": getattr(result, "status", None)}


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def verify_webhook(payload: bytes, signature: str | None) -> dict:
    """Verify the Stripe signature and return the event as a plain dict."""
    if not signature:
        raise BillingError(400, "Missing signature")
    secret = load_settings().stripe_webhook_secret
    if not secret:
        raise BillingError(503, "Webhook secret is not configured")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning(f"Stripe webhook signature rejected: {e}")
        raise BillingError(400, "Invalid signature")
    return json.loads(payload)


def _developer_for_customer(db: Session, customer_id: str | None) -> Developer | None:
    if not customer_id:
        return None
    return db.scalar(select(Developer).where(Developer.stripe_customer_id == customer_id))


def _tier_from(obj: dict, developer: Developer) -> str:
    tier = (obj.get("metadata") or {}).get("tier")
    return tier if tier in TIER_CONFIG else developer.subscription_tier


def _on_subscription_created(developer: Developer, obj: dict) -> None:
    tier = _tier_from(obj, developer)
    period_end = _from_timestamp(obj.get("current_period_end"))
    developer.subscription_tier = tier
    developer.subscription_status = obj.get("status", "active")
    developer.subscription_id = obj.get("id")
    developer.subscription_start = _from_timestamp(obj.get("current_period_start"))
    developer.subscription_end = period_end
    _reset_points_for_tier(developer, tier, period_end)


def _on_subscription_updated(developer: Developer, obj: dict) -> None:
    tier = _tier_from(obj, developer)
    period_end = _from_timestamp(obj.get("current_period_end"))
    developer.subscription_tier = tier
    developer.subscription_status = obj.get("status", developer.subscription_status)
    developer.subscription_end = period_end
    developer.monthly_points = TIER_CONFIG[tier]["points"]
    if period_end:
        developer.points_reset_date = period_end


def _on_subscription_deleted(developer: Developer, obj: dict) -> None:
    developer.subscription_tier = "FREE"
    developer.subscription_status = "cancelled"
    developer.subscription_end = utcnow()
    _reset_points_for_tier(developer, "FREE")


def _on_payment_succeeded(developer: Developer, obj: dict) -> None:
    developer.subscription_status = "active"
    _reset_points_for_tier(developer, developer.subscription_tier)


def _on_payment_failed(developer: Developer, obj: dict) -> None:
    developer.subscription_status = "past_due"


_HANDLERS = {
    "customer.subscription.created": _on_subscription_created,
    "customer.subscription.updated": _on_subscription_updated,
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.payment_succeeded": _on_payment_succeeded,
    "invoice.payment_failed": _on_payment_failed,
}


def handle_webhook_event(db: Session, event: dict) -> str:
    """Apply a verified webhook event.

    Returns:
        "processed", "duplicate", "ignored" (unhandled type) or
        "unknown_customer".
    """
    event_id = event.get("id")
    event_type = event.get("type", "")

    if event_id and db.get(WebhookEvent, event_id):
        logger.info(f"Stripe webhook {event_id} already processed — skipping")
        return "duplicate"

    created = event.get("created")
    if created and time.time() - created > WEBHOOK_REPLAY_WINDOW:
        logger.warning(f"Stripe webhook {event_id} is older than {WEBHOOK_REPLAY_WINDOW}s (possible replay)")

    handler = _HANDLERS.get(event_type)
    outcome = "ignored"
    if handler is None:
        logger.info(f"Unhandled Stripe event type: {event_type}")
    else:
        obj = (event.get("data") or {}).get("object") or {}
        developer = _developer_for_customer(db, obj.get("customer"))
        if developer is None:
            logger.error(f"Stripe webhook {event_type}: developer not found for customer {obj.get('customer')}")
            outcome = "unknown_customer"
        else:
            handler(developer, obj)
            outcome = "processed"
            logger.info(f"Stripe webhook {event_type} applied to {developer.id}")

    if event_id:
        db.add(WebhookEvent(id=event_id, type=event_type))
    db.commit()
    return outcome

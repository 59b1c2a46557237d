"""Subscription endpoints and the Stripe webhook receiver."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import Developer
from app.models import SubscriptionCreate, SubscriptionResponse, SubscriptionUpdate, TierInfo
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
from app.services.points import points_summary, reset_if_due

router = APIRouter(prefix="/api/subscription", tags=["Subscription"])


@router.get("", response_model=SubscriptionResponse)
async def get_subscription(
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    if reset_if_due(developer):
        db.commit()
    try:
        billing = await get_billing_details(developer)
    except BillingError:
        billing = None
    return SubscriptionResponse(
        tier=developer.subscription_tier,
        status=developer.subscription_status,
        config=tier_info(developer.subscription_tier),
        points=points_summary(developer),
        billing=billing,
    )


@router.get("/tiers", response_model=list[TierInfo])
async def get_tiers():
    return list_tiers()


@router.post("")
async def start_subscription(
    body: SubscriptionCreate,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    """Create an incomplete Stripe subscription; the client confirms payment with client_secret."""
    try:
        return await create_subscription(db, developer, body.tier, body.price_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put("")
async def change_subscription(
    body: SubscriptionUpdate,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    try:
        return await update_subscription(db, developer, body.action, body.tier, body.price_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    try:
        event = verify_webhook(payload, request.headers.get("stripe-signature"))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    outcome = handle_webhook_event(db, event)
    return {"received": True, "outcome": outcome}

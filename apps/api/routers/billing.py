from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import BillingNotConfiguredError, NotFoundError
from models import User, UserSubscription
from schemas import AccessStatusResponse, CancelResponse, CheckoutResponse
from services.stripe_service import (
    StripeService,
    cancel_user_subscription,
    process_stripe_event,
    sync_subscription_from_stripe,
)
from services.subscription_access import get_access_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/billing", tags=["billing"])


def _stripe() -> StripeService:
    try:
        return StripeService()
    except RuntimeError as e:
        raise BillingNotConfiguredError(str(e))


def _status(db: Session, user: User) -> AccessStatusResponse:
    return AccessStatusResponse.model_validate(get_access_status(db, user=user), from_attributes=True)


@router.get("/status", response_model=AccessStatusResponse)
def billing_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Access state from the local mirror (no Stripe call)."""
    return _status(db, current_user)


@router.get("/subscription", response_model=AccessStatusResponse)
def poll_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Reconcile with Stripe now, then report access state.

    Webhooks are the primary integration path; this covers deliveries that are
    delayed or missed.
    """
    sync_subscription_from_stripe(db, user=current_user, service=_stripe())
    return _status(db, current_user)


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a Stripe Checkout Session (subscription).
    Returns a hosted URL.
    """
    sub = db.query(UserSubscription).filter(UserSubscription.user_id == current_user.id).first()
    customer_id = sub.stripe_customer_id if sub else None
    url = _stripe().create_checkout_session(user=current_user, customer_id=customer_id)
    logger.info(f"Checkout session created for user {current_user.id}")
    return {"url": url}


@router.post("/cancel", response_model=CancelResponse)
def cancel_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel the active subscription immediately."""
    sub = cancel_user_subscription(db, user=current_user, service=_stripe())
    if sub is None:
        raise NotFoundError("Subscription", str(current_user.id))
    return CancelResponse(canceled=True, status=_status(db, current_user))


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Stripe webhook endpoint.

    Verifies signature and processes events idempotently.
    """
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    payload = await request.body()
    service = _stripe()
    try:
        event = service.construct_event(payload=payload, sig_header=sig)
    except RuntimeError as e:
        raise BillingNotConfiguredError(str(e))
    except Exception:
        # Signature verification errors should return 400 so Stripe can retry appropriately.
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    # Handlers call the Stripe API and the database synchronously.
    result = await run_in_threadpool(process_stripe_event, db, event=event, service=service)
    return {"ok": True, "result": result}

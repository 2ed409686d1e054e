from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import BillingError
from models import StripeEvent, User, UserSubscription, as_utc, utcnow
from services.subscription_access import ensure_subscription_row

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = ("customer.subscription.updated", "customer.subscription.deleted")
INVOICE_EVENTS = ("invoice.payment_succeeded", "invoice.paid")


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: Optional[str]
    price_id: str
    checkout_success_url: str
    checkout_cancel_url: str


def _get_stripe_config() -> StripeConfig:
    """
    Load Stripe config from environment via Settings.

    Fail closed: if configuration is missing, billing endpoints should not proceed.
    """
    secret_key = settings.STRIPE_SECRET_KEY or os.getenv("STRIPE_SECRET_TEST_KEY")

    # Webhook secret is only required for the webhook endpoint; checkout and the
    # poll work without it for local development before Stripe CLI is configured.
    webhook_secret = settings.STRIPE_WEBHOOK_SECRET or os.getenv("STRIPE_WEBHOOK_TEST_SECRET")

    price_id = settings.STRIPE_PRICE_ID

    base = settings.WEB_APP_BASE_URL.rstrip("/")
    success_url = settings.STRIPE_CHECKOUT_SUCCESS_URL or f"{base}/subscription?checkout=success"
    cancel_url = settings.STRIPE_CHECKOUT_CANCEL_URL or f"{base}/subscribe?checkout=cancel"

    missing = [name for name, val in [("STRIPE_SECRET_KEY", secret_key), ("STRIPE_PRICE_ID", price_id)] if not val]
    if missing:
        raise RuntimeError(f"Stripe not configured (missing: {', '.join(missing)})")

    return StripeConfig(
        secret_key=str(secret_key),
        webhook_secret=str(webhook_secret) if webhook_secret else None,
        price_id=str(price_id),
        checkout_success_url=str(success_url),
        checkout_cancel_url=str(cancel_url),
    )


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """
    The part of a Stripe subscription mirrored into ``user_subscription``.

    ``as_of`` is when this state was observed: the request time for API fetches,
    or the event's ``created`` time when a webhook carries nothing to fetch.
    """

    as_of: datetime
    status: Optional[str]
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Attribute access for StripeObjects and test doubles, key access for dicts."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        return getattr(obj, key)
    except (AttributeError, KeyError):
        return default


def _str_or_none(value: Any) -> Optional[str]:
    # Expanded objects (customer, subscription) carry their id.
    if value is not None and not isinstance(value, str):
        value = _get(value, "id")
    return str(value) if value else None


def _maybe_parse_ts(ts: Any) -> Optional[datetime]:
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _subscription_items(obj: Any) -> list:
    # ``items`` collides with dict.items on StripeObject, so read it by key.
    items = obj.get("items") if isinstance(obj, dict) else _get(obj, "items")
    data = _get(items, "data")
    if data is None or callable(data):
        return []
    return list(data)


def _extract_current_period_end_ts(obj: Any) -> Optional[int]:
    """
    Stripe API compatibility:
    - Older API versions: `subscription.current_period_end` (top-level)
    - Newer API versions: billing period fields live on `subscription.items.data[*].current_period_end`
    """
    ts = _get(obj, "current_period_end")
    if ts is not None:
        return int(ts)

    ends = [int(e) for e in (_get(it, "current_period_end") for it in _subscription_items(obj)) if e is not None]
    if ends:
        return max(ends)

    cancel_at = _get(obj, "cancel_at")
    return int(cancel_at) if cancel_at is not None else None


def _extract_price_id(obj: Any) -> Optional[str]:
    items = _subscription_items(obj)
    if not items:
        return None
    return _str_or_none(_get(_get(items[0], "price"), "id"))


def _derive_cancel_at_period_end(obj: Any, *, current_period_end_ts: Optional[int]) -> bool:
    if bool(_get(obj, "cancel_at_period_end", False)):
        return True

    # Newer Stripe API uses `cancel_at` timestamps for scheduled cancellation.
    cancel_at = _get(obj, "cancel_at")
    if cancel_at is None:
        return False
    if current_period_end_ts is None:
        return True
    return int(cancel_at) == int(current_period_end_ts)


def snapshot_from_subscription(obj: Any, *, as_of: datetime) -> SubscriptionSnapshot:
    period_end_ts = _extract_current_period_end_ts(obj)
    return SubscriptionSnapshot(
        as_of=as_of,
        status=_str_or_none(_get(obj, "status")),
        customer_id=_str_or_none(_get(obj, "customer")),
        subscription_id=_str_or_none(_get(obj, "id")),
        price_id=_extract_price_id(obj),
        current_period_end=_maybe_parse_ts(period_end_ts),
        cancel_at_period_end=_derive_cancel_at_period_end(obj, current_period_end_ts=period_end_ts),
        canceled_at=_maybe_parse_ts(_get(obj, "canceled_at")),
    )


def apply_snapshot(db: Session, *, sub: UserSubscription, snapshot: SubscriptionSnapshot) -> bool:
    """
    Overwrite the mirror with ``snapshot`` unless a newer one is already stored.

    Returns False (and changes nothing) for a stale snapshot. Does not commit.
    The trial window is never touched.
    """
    stored_as_of = as_utc(sub.state_as_of)
    as_of = as_utc(snapshot.as_of)
    if stored_as_of is not None and as_of < stored_as_of:
        logger.info(
            f"Dropping stale subscription snapshot for user {sub.user_id}",
            extra={"extra_fields": {
                "snapshot_as_of": as_of.isoformat(),
                "stored_as_of": stored_as_of.isoformat(),
                "snapshot_status": snapshot.status,
            }},
        )
        return False

    if snapshot.customer_id:
        sub.stripe_customer_id = snapshot.customer_id
    if snapshot.subscription_id:
        sub.stripe_subscription_id = snapshot.subscription_id
    if snapshot.price_id:
        sub.stripe_price_id = snapshot.price_id
    sub.subscription_status = snapshot.status
    sub.is_subscribed = (snapshot.status or "").lower() == "active"
    sub.subscription_end_date = snapshot.current_period_end
    sub.cancel_at_period_end = snapshot.cancel_at_period_end
    sub.canceled_at = snapshot.canceled_at
    sub.state_as_of = as_of
    db.add(sub)
    return True


class StripeService:
    def __init__(self) -> None:
        cfg = _get_stripe_config()
        stripe.api_key = cfg.secret_key
        self.cfg = cfg

    def create_checkout_session(self, *, user: User, customer_id: Optional[str] = None) -> str:
        params: dict[str, Any] = {
            "mode": "subscription",
            "success_url": self.cfg.checkout_success_url,
            "cancel_url": self.cfg.checkout_cancel_url,
            "line_items": [{"price": self.cfg.price_id, "quantity": 1}],
            "client_reference_id": str(user.id),
            "metadata": {"user_id": str(user.id)},
            "subscription_data": {"metadata": {"user_id": str(user.id)}},
        }
        # Prefer explicit customer if we already have it.
        if customer_id:
            params["customer"] = customer_id
        elif user.email:
            params["customer_email"] = user.email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingError(_stripe_message(e))
        return str(session.url)

    def retrieve_subscription(self, subscription_id: str) -> Any:
        try:
            return stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingError(_stripe_message(e))

    def find_active_subscription(self, customer_id: str) -> Optional[Any]:
        """The customer's active subscription if any, else their newest one."""
        try:
            # Stripe returns the newest subscription first by default.
            resp = stripe.Subscription.list(customer=customer_id, status="all", limit=10)
        except stripe.StripeError as e:
            raise BillingError(_stripe_message(e))
        subs = list(_get(resp, "data") or [])
        if not subs:
            return None
        return sorted(subs, key=_status_rank)[0]

    def find_customer_id(self, email: str) -> Optional[str]:
        try:
            resp = stripe.Customer.list(email=email, limit=1)
        except stripe.StripeError as e:
            raise BillingError(_stripe_message(e))
        data = list(_get(resp, "data") or [])
        return _str_or_none(_get(data[0], "id")) if data else None

    def cancel_subscription(self, subscription_id: str) -> Any:
        """Cancel immediately, prorating the unused period."""
        try:
            return stripe.Subscription.cancel(subscription_id, prorate=True)
        except stripe.StripeError as e:
            raise BillingError(_stripe_message(e))

    def construct_event(self, *, payload: bytes, sig_header: str):
        if not self.cfg.webhook_secret:
            raise RuntimeError("Stripe webhook secret not configured")
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=self.cfg.webhook_secret,
        )


def _stripe_message(e: Exception) -> str:
    return str(getattr(e, "user_message", None) or e)


def _status_rank(obj: Any) -> int:
    status = (_str_or_none(_get(obj, "status")) or "").lower()
    if status == "active":
        return 0
    if status == "trialing":
        return 1
    return 2


def _is_active(obj: Any) -> bool:
    return obj is not None and _status_rank(obj) == 0


def fetch_snapshot(service: StripeService, subscription_id: str) -> SubscriptionSnapshot:
    """Retrieve the subscription and stamp it with the time the request went out."""
    fetched_at = utcnow()
    return snapshot_from_subscription(service.retrieve_subscription(subscription_id), as_of=fetched_at)


def find_user_for_billing(
    db: Session,
    *,
    user_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[User]:
    """Locate the user an event is about: reference id, customer, subscription, then email."""
    if user_id:
        try:
            user = db.get(User, UUID(str(user_id)))
        except ValueError:
            user = None
        if user:
            return user
    if customer_id:
        sub = db.query(UserSubscription).filter(UserSubscription.stripe_customer_id == customer_id).first()
        if sub:
            return sub.user
    if subscription_id:
        sub = db.query(UserSubscription).filter(UserSubscription.stripe_subscription_id == subscription_id).first()
        if sub:
            return sub.user
    if email:
        return db.query(User).filter(User.email == email.strip().lower()).first()
    return None


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    sub_id = _str_or_none(_get(invoice, "subscription"))
    if sub_id:
        return sub_id
    # Newer API versions nest it under parent.subscription_details.
    details = _get(_get(invoice, "parent"), "subscription_details")
    return _str_or_none(_get(details, "subscription"))


def _event_object(event: Any) -> Any:
    data = _get(event, "data")
    return _get(data, "object")


def _handle_event(db: Session, *, event: Any, service: Optional[StripeService]) -> dict[str, Any]:
    event_type = str(_get(event, "type", "") or "")
    obj = _event_object(event)
    event_as_of = _maybe_parse_ts(_get(event, "created")) or utcnow()

    if event_type == "checkout.session.completed":
        metadata = _get(obj, "metadata") or {}
        ref_id = _str_or_none(_get(obj, "client_reference_id")) or _str_or_none(_get(metadata, "user_id"))
        customer_id = _str_or_none(_get(obj, "customer"))
        subscription_id = _str_or_none(_get(obj, "subscription"))
        email = _str_or_none(_get(_get(obj, "customer_details"), "email")) or _str_or_none(_get(obj, "customer_email"))

        user = find_user_for_billing(db, user_id=ref_id, customer_id=customer_id, subscription_id=subscription_id, email=email)
        if not user:
            return {"matched_user": False}

        if subscription_id and service is not None:
            snapshot = fetch_snapshot(service, subscription_id)
        else:
            snapshot = SubscriptionSnapshot(
                as_of=event_as_of,
                status="active",
                customer_id=customer_id,
                subscription_id=subscription_id,
            )
        sub = ensure_subscription_row(db, user_id=user.id)
        applied = apply_snapshot(db, sub=sub, snapshot=snapshot)
        return {"user_id": str(user.id), "applied": applied, "stale": not applied, "status": sub.subscription_status}

    if event_type in INVOICE_EVENTS:
        subscription_id = _invoice_subscription_id(obj)
        customer_id = _str_or_none(_get(obj, "customer"))
        if not subscription_id:
            return {"handled": False, "reason": "no_subscription"}

        user = find_user_for_billing(
            db,
            user_id=_str_or_none(_get(_get(obj, "metadata") or {}, "user_id")),
            customer_id=customer_id,
            subscription_id=subscription_id,
            email=_str_or_none(_get(obj, "customer_email")),
        )
        if not user:
            return {"matched_user": False}
        if service is None:
            return {"user_id": str(user.id), "handled": False, "reason": "no_stripe_client"}

        snapshot = fetch_snapshot(service, subscription_id)
        sub = ensure_subscription_row(db, user_id=user.id)
        applied = apply_snapshot(db, sub=sub, snapshot=snapshot)
        return {"user_id": str(user.id), "applied": applied, "stale": not applied, "status": sub.subscription_status}

    if event_type in SUBSCRIPTION_EVENTS:
        metadata = _get(obj, "metadata") or {}
        subscription_id = _str_or_none(_get(obj, "id"))
        user = find_user_for_billing(
            db,
            user_id=_str_or_none(_get(metadata, "user_id")),
            customer_id=_str_or_none(_get(obj, "customer")),
            subscription_id=subscription_id,
        )
        if not user:
            return {"matched_user": False}

        # Mirror what Stripe reports now, not the payload; as_of is this server's clock.
        if subscription_id and service is not None:
            snapshot = fetch_snapshot(service, subscription_id)
        else:
            snapshot = snapshot_from_subscription(obj, as_of=event_as_of)
        if event_type == "customer.subscription.deleted" and not snapshot.status:
            snapshot = replace(snapshot, status="canceled")

        sub = ensure_subscription_row(db, user_id=user.id)
        applied = apply_snapshot(db, sub=sub, snapshot=snapshot)
        return {"user_id": str(user.id), "applied": applied, "stale": not applied, "status": sub.subscription_status}

    # Unknown/unhandled event: accept but no-op (still idempotently recorded).
    return {"handled": False}


def process_stripe_event(db: Session, *, event: Any, service: Optional[StripeService] = None) -> dict[str, Any]:
    """
    Idempotently process a verified Stripe webhook event.

    The event id is recorded in the same transaction as its effect. A handler
    failure rolls back both and re-raises, so Stripe's redelivery retries it.
    """
    event_id = str(_get(event, "id", "") or "")
    event_type = str(_get(event, "type", "") or "")
    stripe_created = _get(event, "created")

    if not event_id:
        return {"processed": False, "reason": "missing_event_id"}

    # Idempotency: if event already processed, do nothing.
    if db.get(StripeEvent, event_id) is not None:
        logger.info(f"Stripe event {event_id} already processed")
        return {"processed": False, "idempotent": True, "event_id": event_id}

    db.add(StripeEvent(event_id=event_id, event_type=event_type or "unknown", stripe_created=int(stripe_created) if stripe_created else None))
    try:
        db.flush()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert.
        db.rollback()
        return {"processed": False, "idempotent": True, "event_id": event_id}

    try:
        outcome = _handle_event(db, event=event, service=service)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Stripe event {event_id} ({event_type}) failed; left for redelivery")
        raise

    result = {"processed": True, "event_id": event_id, "event_type": event_type, **outcome}
    logger.info(f"Stripe event {event_id} ({event_type}) processed", extra={"extra_fields": result})
    return result


def sync_subscription_from_stripe(db: Session, *, user: User, service: StripeService) -> bool:
    """
    Pull the user's subscription from Stripe and mirror it.

    Starts from the stored subscription id. When that subscription is missing or
    no longer active, the customer's subscriptions are searched for an active
    one; the customer is looked up by email when no id is stored. Returns
    whether a snapshot was applied. Commits.
    """
    sub = ensure_subscription_row(db, user_id=user.id)

    fetched_at = utcnow()
    obj = service.retrieve_subscription(sub.stripe_subscription_id) if sub.stripe_subscription_id else None

    if not _is_active(obj):
        customer_id = sub.stripe_customer_id or _str_or_none(_get(obj, "customer"))
        if not customer_id and user.email:
            customer_id = service.find_customer_id(user.email)
            if customer_id:
                sub.stripe_customer_id = customer_id
        if customer_id:
            candidate = service.find_active_subscription(customer_id)
            if candidate is not None and (obj is None or _is_active(candidate)):
                obj = candidate

    if obj is None:
        db.commit()
        return False

    applied = apply_snapshot(db, sub=sub, snapshot=snapshot_from_subscription(obj, as_of=fetched_at))
    db.commit()
    logger.info(
        f"Polled subscription for user {user.id}: {sub.subscription_status}",
        extra={"extra_fields": {"user_id": str(user.id), "applied": applied}},
    )
    return applied


def cancel_user_subscription(db: Session, *, user: User, service: StripeService) -> Optional[UserSubscription]:
    """
    Cancel the user's subscription at Stripe and mirror the result.

    Returns None when there is nothing to cancel.
    """
    sub = db.query(UserSubscription).filter(UserSubscription.user_id == user.id).first()
    if sub is None or not sub.stripe_subscription_id:
        return None
    if (sub.subscription_status or "").lower() == "canceled":
        return None

    fetched_at = utcnow()
    obj = service.cancel_subscription(sub.stripe_subscription_id)
    apply_snapshot(db, sub=sub, snapshot=snapshot_from_subscription(obj, as_of=fetched_at))
    db.commit()
    logger.info(f"User {user.id} canceled subscription {sub.stripe_subscription_id}")
    return sub

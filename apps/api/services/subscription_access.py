"""
Access state derived from the subscription mirror.

States:
- active: Stripe reports the subscription as "active"
- trial: inside the sign-up trial window and not active
- no_subscription: neither; record writes are refused

Only ``state`` and ``can_write`` drive behaviour; the rest is for display.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from models import User, UserSubscription, as_utc, utcnow

logger = logging.getLogger(__name__)

STATE_ACTIVE = "active"
STATE_TRIAL = "trial"
STATE_NO_SUBSCRIPTION = "no_subscription"


@dataclass(frozen=True)
class AccessStatus:
    state: str
    has_active_subscription: bool
    is_in_trial_period: bool
    trial_ends_at: Optional[datetime] = None
    trial_days_left: int = 0
    subscription_status: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    cancel_at_period_end: bool = False

    @property
    def can_write(self) -> bool:
        return self.has_active_subscription or self.is_in_trial_period


def ensure_subscription_row(db: Session, *, user_id: UUID) -> UserSubscription:
    sub = db.query(UserSubscription).filter(UserSubscription.user_id == user_id).first()
    if sub:
        return sub
    sub = UserSubscription(user_id=user_id)
    db.add(sub)
    db.flush()
    return sub


def provision_trial(db: Session, *, user: User, now: Optional[datetime] = None) -> UserSubscription:
    """
    Open the sign-up trial. Does not commit.

    A trial window that is already set is left untouched.
    """
    now = now or utcnow()
    sub = ensure_subscription_row(db, user_id=user.id)
    if sub.trial_start_date is None and sub.trial_end_date is None:
        sub.trial_start_date = now
        sub.trial_end_date = now + timedelta(days=settings.TRIAL_PERIOD_DAYS)
        db.add(sub)
        logger.info(f"Provisioned {settings.TRIAL_PERIOD_DAYS}-day trial for user {user.id}")
    return sub


def derive_access_status(sub: Optional[UserSubscription], *, now: Optional[datetime] = None) -> AccessStatus:
    now = now or utcnow()
    if sub is None:
        return AccessStatus(state=STATE_NO_SUBSCRIPTION, has_active_subscription=False, is_in_trial_period=False)

    status = (sub.subscription_status or "").lower() or None
    has_active = status == "active"
    trial_end = as_utc(sub.trial_end_date)
    in_trial = trial_end is not None and now < trial_end and not has_active

    days_left = 0
    if trial_end is not None and now < trial_end:
        days_left = math.ceil((trial_end - now).total_seconds() / 86400)

    if has_active:
        state = STATE_ACTIVE
    elif in_trial:
        state = STATE_TRIAL
    else:
        state = STATE_NO_SUBSCRIPTION

    return AccessStatus(
        state=state,
        has_active_subscription=has_active,
        is_in_trial_period=in_trial,
        trial_ends_at=trial_end,
        trial_days_left=days_left,
        subscription_status=sub.subscription_status,
        subscription_end_date=as_utc(sub.subscription_end_date),
        cancel_at_period_end=bool(sub.cancel_at_period_end),
    )


def get_access_status(db: Session, *, user: User, now: Optional[datetime] = None) -> AccessStatus:
    sub = db.query(UserSubscription).filter(UserSubscription.user_id == user.id).first()
    return derive_access_status(sub, now=now)

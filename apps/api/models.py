from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


SUPERVISION_LEVELS = ("Direct", "Indirect", "Independent", "Teaching")


class User(Base):
    __tablename__ = "app_user"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=False)  # lowercased
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=True)

    subscription = relationship("UserSubscription", back_populates="user", uselist=False)


class AuthSession(Base):
    """
    Server-side half of a sign-in.

    Tokens reference this row by ``sid``; sign-out and refresh revoke it, which
    invalidates the token even though its signature is still valid.
    """

    __tablename__ = "auth_session"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", lazy="joined")

    def is_live(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if self.revoked_at is not None:
            return False
        return as_utc(self.expires_at) > now


class ProcedureRecord(Base):
    """One logged procedure. Owned by exactly one user."""

    __tablename__ = "procedure_record"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)

    mrn = Column(Text, nullable=False)
    date = Column(Date, nullable=False)
    age = Column(Integer, nullable=False, default=0)
    procedure = Column(Text, nullable=False)
    supervision = Column(Text, nullable=False)  # Direct | Indirect | Independent | Teaching
    complication_notes = Column(Text, nullable=False, default="")
    operation_notes = Column(Text, nullable=False, default="")
    hospital = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_procedure_record_user_created", "user_id", "created_at"),
        Index("ix_procedure_record_user_procedure", "user_id", "procedure"),
    )


class CustomLabel(Base):
    """
    User-added procedure or hospital label.

    Built-in labels live in services.label_service and are never stored here.
    """

    __tablename__ = "custom_label"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(Text, nullable=False)  # procedure | hospital
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "kind", "value", name="uq_custom_label_user_kind_value"),
    )


class MilestoneType(Base):
    """Static reference data: reaching ``milestone_count`` of ``procedure`` earns a badge."""

    __tablename__ = "milestone_type"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    procedure = Column(Text, nullable=False, index=True)
    milestone_count = Column(Integer, nullable=False)
    badge_name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")

    __table_args__ = (
        UniqueConstraint("procedure", "milestone_count", name="uq_milestone_type_procedure_count"),
    )


class UserAchievement(Base):
    """
    Awarded milestone.

    Invariants:
    - at most one row per (user, milestone type)
    - never deleted
    - is_seen only moves false -> true
    """

    __tablename__ = "user_achievement"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    milestone_type_id = Column(Uuid, ForeignKey("milestone_type.id"), nullable=False)
    achieved_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    is_seen = Column(Boolean, default=False, nullable=False)

    milestone_type = relationship("MilestoneType", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "milestone_type_id", name="uq_user_achievement_user_milestone"),
    )


class UserSubscription(Base):
    """
    Stripe subscription mirror plus the trial window.

    Stripe is the billing source of truth; this row is what access decisions
    read. ``state_as_of`` is the observation time of the snapshot currently
    stored; older snapshots (late webhooks, slow polls) are not applied.
    """

    __tablename__ = "user_subscription"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    is_subscribed = Column(Boolean, default=False, nullable=False)
    subscription_status = Column(Text, nullable=True)  # active|trialing|past_due|canceled|...

    # Trial window is written once at provisioning and never changed.
    trial_start_date = Column(DateTime(timezone=True), nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)

    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    stripe_customer_id = Column(Text, nullable=True, index=True)
    stripe_subscription_id = Column(Text, nullable=True, index=True)
    stripe_price_id = Column(Text, nullable=True)

    state_as_of = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="subscription", lazy="joined")


class StripeEvent(Base):
    """
    Processed Stripe events (idempotency guard).

    Stripe retries webhook deliveries; storing event ids makes webhook handling safe.
    """

    __tablename__ = "stripe_events"

    event_id = Column(Text, primary_key=True)  # Stripe event id (e.g., evt_*)
    event_type = Column(Text, nullable=False, index=True)
    stripe_created = Column(Integer, nullable=True)

    received_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

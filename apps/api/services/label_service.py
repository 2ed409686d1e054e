"""
Procedure and hospital label dictionaries.

The form offers the built-in labels below plus whatever the user has typed
before. New labels are registered by the record writes that introduce them,
inside the same transaction as the record itself.
"""
from __future__ import annotations

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from models import CustomLabel
from schemas import LabelKind

logger = logging.getLogger(__name__)

DEFAULT_LABELS: dict[LabelKind, tuple[str, ...]] = {
    LabelKind.PROCEDURE: ("Egg Collection", "Embryo Transfer", "Consultation"),
    LabelKind.HOSPITAL: ("General Hospital", "Private Clinic", "University Hospital"),
}


def list_custom_labels(db: Session, *, user_id: UUID, kind: LabelKind) -> list[str]:
    rows = (
        db.query(CustomLabel.value)
        .filter(CustomLabel.user_id == user_id, CustomLabel.kind == kind.value)
        .order_by(CustomLabel.created_at.asc(), CustomLabel.value.asc())
        .all()
    )
    return [r[0] for r in rows]


def list_labels(db: Session, *, user_id: UUID, kind: LabelKind) -> dict:
    defaults = list(DEFAULT_LABELS[kind])
    custom = [v for v in list_custom_labels(db, user_id=user_id, kind=kind) if v not in defaults]
    return {"kind": kind, "defaults": defaults, "custom": custom, "all": defaults + custom}


def register_labels(db: Session, *, user_id: UUID, kind: LabelKind, values: Iterable[str]) -> list[str]:
    """
    Stage unseen labels for insert. Does not commit.

    Matching is case-sensitive, as stored. Returns the values that were new.
    """
    known = set(DEFAULT_LABELS[kind]) | set(list_custom_labels(db, user_id=user_id, kind=kind))
    added: list[str] = []
    for value in values:
        value = (value or "").strip()
        if not value or value in known:
            continue
        db.add(CustomLabel(user_id=user_id, kind=kind.value, value=value))
        known.add(value)
        added.append(value)
    if added:
        logger.info(f"Registered {len(added)} new {kind.value} label(s) for user {user_id}")
    return added


def add_label(db: Session, *, user_id: UUID, kind: LabelKind, value: str) -> dict:
    register_labels(db, user_id=user_id, kind=kind, values=[value])
    db.commit()
    return list_labels(db, user_id=user_id, kind=kind)

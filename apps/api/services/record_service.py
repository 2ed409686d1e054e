"""
Procedure record repository.

Every operation is scoped to the user passed in; a record owned by someone
else is indistinguishable from a missing one. Writes that introduce a new
procedure or hospital label register it in the same transaction as the
record, so a failed write leaves neither behind.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import ProcedureRecord, User, utcnow
from schemas import LabelKind, RecordCreate, RecordUpdate
from services.label_service import register_labels

logger = logging.getLogger(__name__)


def _record_values(data: RecordCreate) -> dict[str, Any]:
    values = data.model_dump()
    values["supervision"] = data.supervision.value
    return values


def _register_record_labels(db: Session, *, user_id: UUID, rows: Iterable[dict[str, Any]]) -> None:
    rows = list(rows)
    register_labels(db, user_id=user_id, kind=LabelKind.PROCEDURE, values=[r["procedure"] for r in rows if r.get("procedure")])
    register_labels(db, user_id=user_id, kind=LabelKind.HOSPITAL, values=[r["hospital"] for r in rows if r.get("hospital")])


def list_records(db: Session, *, user: User) -> list[ProcedureRecord]:
    """All of the caller's records, newest first."""
    return (
        db.query(ProcedureRecord)
        .filter(ProcedureRecord.user_id == user.id)
        .order_by(ProcedureRecord.created_at.desc(), ProcedureRecord.id.desc())
        .all()
    )


def get_record(db: Session, *, user: User, record_id: UUID) -> ProcedureRecord:
    record = (
        db.query(ProcedureRecord)
        .filter(ProcedureRecord.id == record_id, ProcedureRecord.user_id == user.id)
        .first()
    )
    if record is None:
        raise NotFoundError("Record", str(record_id))
    return record


def create_record(db: Session, *, user: User, data: RecordCreate) -> ProcedureRecord:
    values = _record_values(data)
    _register_record_labels(db, user_id=user.id, rows=[values])
    record = ProcedureRecord(user_id=user.id, **values)
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(f"User {user.id} created record {record.id}")
    return record


def update_record(db: Session, *, user: User, record_id: UUID, data: RecordUpdate) -> ProcedureRecord:
    record = get_record(db, user=user, record_id=record_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if "supervision" in changes:
        changes["supervision"] = data.supervision.value
    if not changes:
        return record

    _register_record_labels(db, user_id=user.id, rows=[changes])
    for key, value in changes.items():
        setattr(record, key, value)
    record.updated_at = utcnow()
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(
        f"User {user.id} updated record {record.id}",
        extra={"extra_fields": {"record_id": str(record.id), "changes": changes}},
    )
    return record


def delete_record(db: Session, *, user: User, record_id: UUID) -> bool:
    record = get_record(db, user=user, record_id=record_id)
    db.delete(record)
    db.commit()
    logger.info(f"User {user.id} deleted record {record_id}")
    return True


def bulk_create_records(db: Session, *, user: User, rows: list[RecordCreate]) -> int:
    """
    Insert all rows in one transaction.

    Any failure rolls back the whole batch; there is no partial import.
    """
    if not rows:
        return 0
    values = [_record_values(r) for r in rows]
    try:
        _register_record_labels(db, user_id=user.id, rows=values)
        now = utcnow()
        db.add_all([ProcedureRecord(user_id=user.id, created_at=now, updated_at=now, **v) for v in values])
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"User {user.id} imported {len(values)} records")
    return len(values)


def procedure_counts(records: Iterable[ProcedureRecord]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for r in records:
        if r.procedure:
            counts[r.procedure] = counts.get(r.procedure, 0) + 1
    return counts


"""
Milestone / achievement engine.

Counts the caller's records per procedure, compares against the static
milestone table, and awards each crossed milestone exactly once.

The check is idempotent: it only awards milestones missing from the user's
achievements, and the (user, milestone) unique constraint backs that up if
two checks race. Running it again with nothing newly crossed awards nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import MilestoneType, ProcedureRecord, User, UserAchievement
from services.record_service import list_records, procedure_counts

logger = logging.getLogger(__name__)


@dataclass
class MilestoneProgress:
    procedure: str
    current_count: int
    previous_threshold: int
    next_milestone: Optional[MilestoneType]
    progress_percent: float
    achievements: list = field(default_factory=list)


def list_milestone_types(db: Session) -> list[MilestoneType]:
    return (
        db.query(MilestoneType)
        .order_by(MilestoneType.procedure.asc(), MilestoneType.milestone_count.asc())
        .all()
    )


def list_achievements(db: Session, *, user: User, unseen_only: bool = False) -> list[UserAchievement]:
    q = db.query(UserAchievement).filter(UserAchievement.user_id == user.id)
    if unseen_only:
        q = q.filter(UserAchievement.is_seen.is_(False))
    return q.order_by(UserAchievement.achieved_at.asc()).all()


def milestones_due(
    counts: dict[str, int],
    milestone_types: Iterable[MilestoneType],
    achieved_ids: Iterable[UUID],
) -> list[MilestoneType]:
    """Milestones whose threshold is reached but which have not been awarded yet."""
    achieved = set(achieved_ids)
    due = []
    for mt in milestone_types:
        count = counts.get(mt.procedure, 0)
        if mt.milestone_count <= count and mt.id not in achieved:
            due.append(mt)
    return due


def check_for_new_achievements(
    db: Session,
    *,
    user: User,
    records: Optional[list[ProcedureRecord]] = None,
) -> list[UserAchievement]:
    """
    Award every newly crossed milestone. Returns only the rows created by this call.

    Callers run this after their record write has committed so the counts
    reflect it.
    """
    if records is None:
        records = list_records(db, user=user)
    counts = procedure_counts(records)
    if not counts:
        return []

    milestone_types = list_milestone_types(db)
    if not milestone_types:
        return []

    achieved_ids = [a.milestone_type_id for a in list_achievements(db, user=user)]
    due = milestones_due(counts, milestone_types, achieved_ids)
    if not due:
        return []

    new_rows = [UserAchievement(user_id=user.id, milestone_type_id=mt.id, is_seen=False) for mt in due]
    db.add_all(new_rows)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent check already awarded some of these; theirs stand.
        db.rollback()
        logger.warning(f"Achievement check for user {user.id} lost a race; nothing awarded by this call")
        return []

    for row in new_rows:
        db.refresh(row)
        logger.info(
            f"Achievement unlocked: {row.milestone_type.badge_name}",
            extra={"extra_fields": {"user_id": str(user.id), "milestone_type_id": str(row.milestone_type_id)}},
        )
    return new_rows


def compute_progress(
    counts: dict[str, int],
    milestone_types: Iterable[MilestoneType],
    achievements: Iterable[UserAchievement],
) -> list[MilestoneProgress]:
    """
    Progress towards the next milestone, one entry per procedure with records.

    percent = (count - previous) / (next - previous) * 100, clamped to [0, 100],
    where previous is the highest threshold already awarded (0 if none).
    With no milestone left for the procedure, percent is 100.
    """
    by_procedure: dict[str, list[MilestoneType]] = {}
    for mt in milestone_types:
        by_procedure.setdefault(mt.procedure, []).append(mt)
    for items in by_procedure.values():
        items.sort(key=lambda m: m.milestone_count)

    achievements_by_procedure: dict[str, list[UserAchievement]] = {}
    for a in achievements:
        mt = a.milestone_type
        if mt is not None:
            achievements_by_procedure.setdefault(mt.procedure, []).append(a)

    out: list[MilestoneProgress] = []
    for procedure, count in counts.items():
        if count <= 0:
            continue
        milestones = by_procedure.get(procedure, [])
        next_milestone = next((m for m in milestones if m.milestone_count > count), None)
        earned = achievements_by_procedure.get(procedure, [])
        previous = max(
            (a.milestone_type.milestone_count for a in earned if a.milestone_type.milestone_count <= count),
            default=0,
        )

        if next_milestone is None:
            percent = 100.0
        else:
            span = next_milestone.milestone_count - previous
            percent = (count - previous) / span * 100 if span > 0 else 100.0
            percent = max(0.0, min(100.0, percent))

        out.append(
            MilestoneProgress(
                procedure=procedure,
                current_count=count,
                previous_threshold=previous,
                next_milestone=next_milestone,
                progress_percent=round(percent, 2),
                achievements=sorted(earned, key=lambda a: a.milestone_type.milestone_count),
            )
        )

    out.sort(key=lambda p: (-p.current_count, p.procedure))
    return out


def get_progress(db: Session, *, user: User) -> list[MilestoneProgress]:
    counts = procedure_counts(list_records(db, user=user))
    return compute_progress(counts, list_milestone_types(db), list_achievements(db, user=user))


def mark_achievement_seen(db: Session, *, user: User, achievement_id: UUID) -> UserAchievement:
    achievement = (
        db.query(UserAchievement)
        .filter(UserAchievement.id == achievement_id, UserAchievement.user_id == user.id)
        .first()
    )
    if achievement is None:
        raise NotFoundError("Achievement", str(achievement_id))
    if not achievement.is_seen:
        achievement.is_seen = True
        db.add(achievement)
        db.commit()
        db.refresh(achievement)
    return achievement

"""
Milestone reference data.

Seeded into ``milestone_type`` at startup. Seeding only inserts missing
(procedure, count) pairs, so it is safe to run on every boot and never
touches rows achievements already point at.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from models import MilestoneType

logger = logging.getLogger(__name__)

# (threshold, tier name)
TIERS = (
    (5, "Getting Started"),
    (10, "Competent"),
    (25, "Proficient"),
    (50, "Experienced"),
    (100, "Expert"),
    (250, "Master"),
)

CATALOG_PROCEDURES = (
    "Egg Collection",
    "Embryo Transfer",
    "Mock Embryo Transfer",
    "Follicle Tracking",
    "Hysteroscopy",
    "Consultation",
)


def default_milestones() -> list[dict]:
    out = []
    for procedure in CATALOG_PROCEDURES:
        for count, tier in TIERS:
            out.append(
                {
                    "procedure": procedure,
                    "milestone_count": count,
                    "badge_name": f"{procedure}: {tier}",
                    "description": f"Logged {count} {procedure} procedures",
                }
            )
    return out


def seed_milestone_types(db: Session, definitions: list[dict] | None = None) -> int:
    definitions = definitions if definitions is not None else default_milestones()
    existing = {(m.procedure, m.milestone_count) for m in db.query(MilestoneType).all()}
    added = 0
    for d in definitions:
        if (d["procedure"], d["milestone_count"]) in existing:
            continue
        db.add(MilestoneType(**d))
        existing.add((d["procedure"], d["milestone_count"]))
        added += 1
    if added:
        db.commit()
        logger.info(f"Seeded {added} milestone definitions")
    return added

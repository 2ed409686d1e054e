"""
Random demo records ("generate test records" in the client).

Values are drawn from fixed pools; dates fall within the last two years.
"""
from __future__ import annotations

import random
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ValidationError
from models import SUPERVISION_LEVELS, User
from schemas import RecordCreate
from services.record_service import bulk_create_records

PROCEDURES = (
    "Egg Collection",
    "Embryo Transfer",
    "Consultation",
    "Follicle Tracking",
    "Mock Embryo Transfer",
    "Hysteroscopy",
)
HOSPITALS = (
    "General Hospital",
    "Private Clinic",
    "University Hospital",
    "Women's Hospital",
    "Fertility Center",
)
COMPLICATION_NOTES = (
    "None",
    "Mild discomfort reported",
    "Patient experienced cramping",
    "Nausea during procedure",
    "Difficulty with catheter placement",
    "Vasovagal episode",
    "Mild bleeding",
)
OPERATION_NOTES = (
    "Procedure completed successfully without complications",
    "Patient tolerated procedure well",
    "Difficult access due to cervical stenosis",
    "Anteverted uterus noted",
    "Retroverted uterus noted",
    "Multiple attempts needed for follicle access",
    "Clean single-pass embryo transfer",
    "Ultrasound guidance used throughout",
)


def generate_sample_records(count: int, *, rng: Optional[random.Random] = None, today: Optional[date] = None) -> list[RecordCreate]:
    rng = rng or random.Random()
    today = today or date.today()
    window = 2 * 365

    return [
        RecordCreate(
            mrn=f"MRN{rng.randint(100000, 999999)}",
            date=today - timedelta(days=rng.randint(0, window)),
            age=rng.randint(20, 45),
            procedure=rng.choice(PROCEDURES),
            supervision=rng.choice(SUPERVISION_LEVELS),
            hospital=rng.choice(HOSPITALS),
            complication_notes=rng.choice(COMPLICATION_NOTES),
            operation_notes=rng.choice(OPERATION_NOTES),
        )
        for _ in range(count)
    ]


def create_sample_records(db: Session, *, user: User, count: int) -> int:
    if count < 1 or count > settings.SAMPLE_RECORDS_MAX:
        raise ValidationError(f"count must be between 1 and {settings.SAMPLE_RECORDS_MAX}", field="count")
    return bulk_create_records(db, user=user, rows=generate_sample_records(count))

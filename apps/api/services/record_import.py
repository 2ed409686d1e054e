"""
Bulk record import from spreadsheets.

Reads the first sheet of an .xlsx/.xls workbook, or a .csv file, with pandas.
Column headers follow the export format (camelCase notes columns); the
snake_case spellings are accepted too.

Defaults for missing cells:
- date: the caller's default date (today unless given)
- age: 0 (also for unparseable values)
- notes: ""

Every row is validated before anything is written. One bad row rejects the
whole file.
"""
from __future__ import annotations

import io
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ValidationError
from models import User
from schemas import RecordCreate
from services.record_service import bulk_create_records

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".xlsx", ".xls", ".csv")

# header (as written in the file) -> record field
COLUMN_ALIASES = {
    "mrn": "mrn",
    "date": "date",
    "age": "age",
    "procedure": "procedure",
    "supervision": "supervision",
    "hospital": "hospital",
    "complicationNotes": "complication_notes",
    "complication_notes": "complication_notes",
    "operationNotes": "operation_notes",
    "operation_notes": "operation_notes",
}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _text(value: Any) -> str:
    if _is_blank(value):
        return ""
    # Spreadsheet cells holding numbers (e.g. an MRN) come back as floats.
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _parse_age(value: Any) -> int:
    if _is_blank(value):
        return 0
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return 0


def _parse_date(value: Any, default_date: date) -> date:
    if _is_blank(value):
        return default_date
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        raise ValueError(f"unrecognised date '{text}'")
    return parsed.date()


def read_frame(content: bytes, filename: str) -> pd.DataFrame:
    ext = Path(filename or "").suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise ValidationError(
            f"Unsupported file type '{ext or filename}'. Upload an .xlsx, .xls or .csv file.",
            field="file",
        )
    try:
        if ext == ".csv":
            frame = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False)
        else:
            frame = pd.read_excel(io.BytesIO(content), sheet_name=0)
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except (ValueError, OSError, ImportError) as e:
        logger.warning(f"Could not read import file {filename}: {e}")
        raise ValidationError("Could not read the uploaded file", field="file")

    frame.columns = [str(c).strip() for c in frame.columns]
    return frame


def parse_records(frame: pd.DataFrame, *, default_date: Optional[date] = None) -> list[RecordCreate]:
    """Map and validate every row; raises on the first invalid one."""
    default_date = default_date or date.today()
    columns = {c: COLUMN_ALIASES[c] for c in frame.columns if c in COLUMN_ALIASES}

    rows: list[RecordCreate] = []
    for i, raw in enumerate(frame.to_dict(orient="records")):
        values = {field: raw[col] for col, field in columns.items()}
        # Header row is line 1 in the sheet.
        line = i + 2
        try:
            rows.append(
                RecordCreate(
                    mrn=_text(values.get("mrn")),
                    date=_parse_date(values.get("date"), default_date),
                    age=_parse_age(values.get("age")),
                    procedure=_text(values.get("procedure")),
                    supervision=_text(values.get("supervision")),
                    hospital=_text(values.get("hospital")),
                    complication_notes=_text(values.get("complication_notes")),
                    operation_notes=_text(values.get("operation_notes")),
                )
            )
        except PydanticValidationError as e:
            first = e.errors()[0]
            where = ".".join(str(p) for p in first.get("loc", ())) or "row"
            raise ValidationError(f"Row {line}: {where}: {first.get('msg')}", field="file")
        except ValueError as e:
            raise ValidationError(f"Row {line}: date: {e}", field="file")
    return rows


def import_records(
    db: Session,
    *,
    user: User,
    content: bytes,
    filename: str,
    default_date: Optional[date] = None,
) -> int:
    frame = read_frame(content, filename)
    if len(frame) > settings.IMPORT_MAX_ROWS:
        raise ValidationError(
            f"File has {len(frame)} rows; the limit is {settings.IMPORT_MAX_ROWS}",
            field="file",
        )
    rows = parse_records(frame, default_date=default_date)
    imported = bulk_create_records(db, user=user, rows=rows)
    logger.info(
        f"Imported {imported} records from {filename}",
        extra={"extra_fields": {"user_id": str(user.id), "rows": imported}},
    )
    return imported

"""
Procedure record endpoints.

Reads (table view, single record, export) need only a signed-in user.
Writes additionally need an active subscription or a running trial, and
report any achievements they unlocked.
"""
from datetime import date
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from core.auth import AuthContext, get_current_user, require_write_access
from core.database import get_db
from models import User
from schemas import (
    AchievementResponse,
    ImportResponse,
    RecordCreate,
    RecordPage,
    RecordResponse,
    RecordUpdate,
    RecordWriteResponse,
    SampleRecordsRequest,
    Supervision,
)
from services import record_service
from services.milestone_service import check_for_new_achievements
from services.record_export import export_records
from services.record_import import import_records
from services.record_table import (
    DEFAULT_PAGE_SIZE,
    RecordFilters,
    RecordSort,
    apply_view,
    paginate,
)
from services.sample_records import create_sample_records

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/records", tags=["records"])


def get_record_view(
    sort_key: str = Query("date"),
    sort_dir: str = Query("desc"),
    search: Optional[str] = Query(None, description="Substring of any text column"),
    mrn: Optional[str] = Query(None),
    procedure: Optional[str] = Query(None),
    hospital: Optional[str] = Query(None),
    complication_notes: Optional[str] = Query(None),
    operation_notes: Optional[str] = Query(None),
    supervision: Optional[Supervision] = Query(None),
    age_min: Optional[int] = Query(None, ge=0),
    age_max: Optional[int] = Query(None, ge=0),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
) -> Tuple[RecordFilters, RecordSort]:
    text = {
        "mrn": mrn,
        "procedure": procedure,
        "hospital": hospital,
        "complication_notes": complication_notes,
        "operation_notes": operation_notes,
    }
    filters = RecordFilters(
        text={k: v for k, v in text.items() if v},
        supervision=supervision.value if supervision else None,
        age_min=age_min,
        age_max=age_max,
        date_from=date_from,
        date_to=date_to,
        search=search or None,
    )
    return filters, RecordSort(key=sort_key, direction=sort_dir)


def _achievements_after_write(db: Session, user: User) -> List[AchievementResponse]:
    return [AchievementResponse.model_validate(a) for a in check_for_new_achievements(db, user=user)]


@router.get("", response_model=RecordPage)
def list_records(
    view: Tuple[RecordFilters, RecordSort] = Depends(get_record_view),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Filtered, sorted, paginated view of the caller's records."""
    filters, sort = view
    rows = apply_view(record_service.list_records(db, user=current_user), filters, sort)
    window = paginate(rows, page=page, page_size=page_size)
    return RecordPage(
        items=[RecordResponse.model_validate(r) for r in window.items],
        total=window.total,
        page=window.page,
        page_size=window.page_size,
        pages=window.pages,
    )


@router.get("/export")
def export(
    view: Tuple[RecordFilters, RecordSort] = Depends(get_record_view),
    format: str = Query("pdf", pattern="^(pdf|xlsx)$"),
    columns: Optional[str] = Query(None, description="Comma-separated visible columns, in order"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Export the filtered rows (all pages) as PDF or Excel."""
    filters, sort = view
    rows = apply_view(record_service.list_records(db, user=current_user), filters, sort)
    visible = [c for c in (columns or "").split(",") if c.strip()]
    result = export_records(
        rows,
        fmt=format,
        columns=visible,
        date_from=filters.date_from,
        date_to=filters.date_to,
    )
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


@router.post("", response_model=RecordWriteResponse, status_code=status.HTTP_201_CREATED)
def create_record(
    data: RecordCreate,
    ctx: AuthContext = Depends(require_write_access),
    db: Session = Depends(get_db),
):
    record = record_service.create_record(db, user=ctx.user, data=data)
    return RecordWriteResponse(
        record=RecordResponse.model_validate(record),
        new_achievements=_achievements_after_write(db, ctx.user),
    )


@router.post("/import", response_model=ImportResponse)
def import_file(
    file: UploadFile = File(...),
    default_date: Optional[date] = Form(None),
    ctx: AuthContext = Depends(require_write_access),
    db: Session = Depends(get_db),
):
    """
    Bulk import from .xlsx, .xls or .csv.

    All rows are written or none are.
    """
    content = file.file.read()
    imported = import_records(
        db,
        user=ctx.user,
        content=content,
        filename=file.filename or "",
        default_date=default_date,
    )
    return ImportResponse(imported=imported, new_achievements=_achievements_after_write(db, ctx.user))


@router.post("/sample", response_model=ImportResponse, status_code=status.HTTP_201_CREATED)
def create_samples(
    request: SampleRecordsRequest,
    ctx: AuthContext = Depends(require_write_access),
    db: Session = Depends(get_db),
):
    """Generate random demo records for the caller."""
    created = create_sample_records(db, user=ctx.user, count=request.count)
    return ImportResponse(imported=created, new_achievements=_achievements_after_write(db, ctx.user))


@router.get("/{record_id}", response_model=RecordResponse)
def get_record(
    record_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return record_service.get_record(db, user=current_user, record_id=record_id)


@router.patch("/{record_id}", response_model=RecordWriteResponse)
def update_record(
    record_id: UUID,
    data: RecordUpdate,
    ctx: AuthContext = Depends(require_write_access),
    db: Session = Depends(get_db),
):
    record = record_service.update_record(db, user=ctx.user, record_id=record_id, data=data)
    return RecordWriteResponse(
        record=RecordResponse.model_validate(record),
        new_achievements=_achievements_after_write(db, ctx.user),
    )


@router.delete("/{record_id}")
def delete_record(
    record_id: UUID,
    ctx: AuthContext = Depends(require_write_access),
    db: Session = Depends(get_db),
):
    record_service.delete_record(db, user=ctx.user, record_id=record_id)
    # Achievements are never revoked.
    check_for_new_achievements(db, user=ctx.user)
    return {"success": True}

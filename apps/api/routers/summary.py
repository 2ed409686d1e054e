"""
Procedure summary endpoints (dashboard charts and the summary PDF).
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from models import User
from schemas import CountBucket, ProcedureSummaryResponse, SummaryResponse
from services.record_export import export_summary_pdf
from services.record_service import list_records
from services.record_table import RecordFilters, filter_records
from services.summary_service import RecordSummary, summarize_records

router = APIRouter(prefix="/v1/summary", tags=["summary"])


def _summary(db: Session, user: User, date_from: Optional[date], date_to: Optional[date]) -> RecordSummary:
    records = filter_records(list_records(db, user=user), RecordFilters(date_from=date_from, date_to=date_to))
    return summarize_records(records)


@router.get("", response_model=SummaryResponse)
def get_summary(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    summary = _summary(db, current_user, date_from, date_to)
    return SummaryResponse(
        total_records=summary.total_records,
        procedures=[
            ProcedureSummaryResponse(procedure=p.procedure, count=p.count, supervision_breakdown=p.supervision_breakdown)
            for p in summary.procedures
        ],
        hospitals=[CountBucket(name=b.name, count=b.count) for b in summary.hospitals],
        timeline=[CountBucket(name=b.name, count=b.count) for b in summary.timeline],
    )


@router.get("/export")
def export_summary(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = export_summary_pdf(_summary(db, current_user, date_from, date_to), date_from=date_from, date_to=date_to)
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )

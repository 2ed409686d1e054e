"""
Procedure / hospital label dictionaries for the record form.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from models import User
from schemas import LabelCreate, LabelKind, LabelListResponse
from services.label_service import add_label, list_labels

router = APIRouter(prefix="/v1/labels", tags=["labels"])


@router.get("/{kind}", response_model=LabelListResponse)
def get_labels(
    kind: LabelKind,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Built-in labels followed by the caller's own."""
    return list_labels(db, user_id=current_user.id, kind=kind)


@router.post("/{kind}", response_model=LabelListResponse, status_code=status.HTTP_201_CREATED)
def create_label(
    kind: LabelKind,
    body: LabelCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Register a label; already-known values are accepted without duplication."""
    return add_label(db, user_id=current_user.id, kind=kind, value=body.value)

"""
Milestone / achievement endpoints.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from models import User
from schemas import AchievementResponse, MilestoneProgressResponse, MilestoneTypeResponse
from services import milestone_service

router = APIRouter(prefix="/v1/milestones", tags=["milestones"])


@router.get("", response_model=List[MilestoneTypeResponse])
def list_milestones(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """All milestone definitions, by procedure then threshold."""
    return milestone_service.list_milestone_types(db)


@router.get("/progress", response_model=List[MilestoneProgressResponse])
def get_progress(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    progress = milestone_service.get_progress(db, user=current_user)
    return [MilestoneProgressResponse.model_validate(p, from_attributes=True) for p in progress]


@router.get("/achievements", response_model=List[AchievementResponse])
def list_achievements(
    unseen: bool = Query(False, description="Only achievements not yet shown to the user"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return milestone_service.list_achievements(db, user=current_user, unseen_only=unseen)


@router.post("/check", response_model=List[AchievementResponse])
def check_achievements(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Run the achievement check now. Returns only newly awarded achievements."""
    return milestone_service.check_for_new_achievements(db, user=current_user)


@router.post("/achievements/{achievement_id}/seen", response_model=AchievementResponse)
def mark_seen(
    achievement_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return milestone_service.mark_achievement_seen(db, user=current_user, achievement_id=achievement_id)

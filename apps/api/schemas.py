import datetime as dt
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Supervision(str, Enum):
    DIRECT = "Direct"
    INDIRECT = "Indirect"
    INDEPENDENT = "Independent"
    TEACHING = "Teaching"


class LabelKind(str, Enum):
    PROCEDURE = "procedure"
    HOSPITAL = "hospital"


def _strip_required(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class RecordCreate(BaseModel):
    mrn: str = Field(..., max_length=64)
    date: dt.date
    age: int = Field(default=0, ge=0, le=130)
    procedure: str = Field(..., max_length=200)
    supervision: Supervision
    hospital: str = Field(..., max_length=200)
    complication_notes: str = Field(default="", max_length=5000)
    operation_notes: str = Field(default="", max_length=5000)

    @field_validator("mrn", "procedure", "hospital")
    @classmethod
    def _required_text(cls, v: str) -> str:
        return _strip_required(v)


class RecordUpdate(BaseModel):
    """Partial update; omitted fields are left as they are."""
    mrn: Optional[str] = Field(default=None, max_length=64)
    date: Optional[dt.date] = None
    age: Optional[int] = Field(default=None, ge=0, le=130)
    procedure: Optional[str] = Field(default=None, max_length=200)
    supervision: Optional[Supervision] = None
    hospital: Optional[str] = Field(default=None, max_length=200)
    complication_notes: Optional[str] = Field(default=None, max_length=5000)
    operation_notes: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("mrn", "procedure", "hospital")
    @classmethod
    def _required_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _strip_required(v)


class RecordResponse(BaseModel):
    id: UUID
    mrn: str
    date: dt.date
    age: int
    procedure: str
    supervision: str
    hospital: str
    complication_notes: str
    operation_notes: str
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class MilestoneTypeResponse(BaseModel):
    id: UUID
    procedure: str
    milestone_count: int
    badge_name: str
    description: str

    model_config = ConfigDict(from_attributes=True)


class AchievementResponse(BaseModel):
    id: UUID
    milestone_type_id: UUID
    achieved_at: dt.datetime
    is_seen: bool
    milestone_type: MilestoneTypeResponse

    model_config = ConfigDict(from_attributes=True)


class RecordWriteResponse(BaseModel):
    """A created/updated record plus any achievements the write unlocked."""
    record: RecordResponse
    new_achievements: List[AchievementResponse] = []


class RecordPage(BaseModel):
    items: List[RecordResponse]
    total: int
    page: int
    page_size: int
    pages: int


class ImportResponse(BaseModel):
    imported: int
    new_achievements: List[AchievementResponse] = []


class SampleRecordsRequest(BaseModel):
    count: int = Field(default=50, ge=1)


class LabelCreate(BaseModel):
    value: str = Field(..., max_length=200)

    @field_validator("value")
    @classmethod
    def _required_text(cls, v: str) -> str:
        return _strip_required(v)


class LabelListResponse(BaseModel):
    kind: LabelKind
    defaults: List[str]
    custom: List[str]
    all: List[str]


class MilestoneProgressResponse(BaseModel):
    procedure: str
    current_count: int
    previous_threshold: int
    next_milestone: Optional[MilestoneTypeResponse] = None
    progress_percent: float
    achievements: List[AchievementResponse] = []


class ProcedureSummaryResponse(BaseModel):
    procedure: str
    count: int
    supervision_breakdown: Dict[str, int]


class CountBucket(BaseModel):
    name: str
    count: int


class SummaryResponse(BaseModel):
    total_records: int
    procedures: List[ProcedureSummaryResponse]
    hospitals: List[CountBucket]
    timeline: List[CountBucket]


class AccessStatusResponse(BaseModel):
    state: str  # no_subscription | trial | active
    has_active_subscription: bool
    is_in_trial_period: bool
    can_write: bool
    trial_ends_at: Optional[dt.datetime] = None
    trial_days_left: int = 0
    subscription_status: Optional[str] = None
    subscription_end_date: Optional[dt.datetime] = None
    cancel_at_period_end: bool = False


class CheckoutResponse(BaseModel):
    url: str


class CancelResponse(BaseModel):
    canceled: bool
    status: AccessStatusResponse

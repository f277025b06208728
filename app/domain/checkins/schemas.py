"""Check-in domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .windows import WeeklyWindow

MISSED_REASONS = ["sick", "traveling", "personal_emergency", "other"]


class SeriesCreate(BaseModel):
    """Schema for assigning a recurring check-in to a client"""

    client_id: int
    form_id: str
    form_title: Optional[str] = None
    # Either an explicit start + window length...
    start_at: Optional[datetime] = None
    window_hours: Optional[float] = Field(default=None, gt=0)
    # ...or a weekday window (first opening on/after start_at or now)
    weekly_window: Optional[WeeklyWindow] = None
    total_weeks: Optional[int] = Field(default=None, ge=1)  # None = indefinite


class SeriesUpdate(BaseModel):
    total_weeks: Optional[int] = Field(default=None, ge=1)
    window_hours: Optional[float] = Field(default=None, gt=0)


class SeriesResponse(BaseModel):
    id: str
    coach_id: int
    client_id: int
    form_id: str
    form_title: Optional[str]
    cadence_days: int
    window_hours: float
    total_weeks: Optional[int]
    start_at: datetime
    is_active: bool
    is_paused: bool
    paused_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SeriesDeleteResult(BaseModel):
    message: str
    deleted_assignments: int
    deleted_responses: int
    preserved_assignments: int
    preserve_history: bool


class OneOffCreate(BaseModel):
    client_id: int
    form_id: str
    form_title: Optional[str] = None
    open_at: Optional[datetime] = None
    window_hours: Optional[float] = Field(default=None, gt=0)


class AssignmentResponse(BaseModel):
    id: str
    series_id: Optional[str] = None
    week: Optional[int] = None
    client_id: int
    coach_id: int
    form_id: str
    title: Optional[str] = None
    open_at: datetime
    close_at: datetime
    status: str
    window_state: str
    response_id: Optional[str] = None
    milestones_fired: list[str] = []
    extension_granted: bool = False
    is_virtual: bool = False

    class Config:
        from_attributes = True


class AssignmentListResponse(BaseModel):
    checkins: list[AssignmentResponse]
    summary: dict


class ResponseSubmit(BaseModel):
    answers: dict


class SubmissionResult(BaseModel):
    assignment_id: str
    response_id: str
    submitted_at: datetime


class ExtensionRequest(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        if not v or len(v.strip()) < 10:
            raise ValueError("Please provide a more detailed reason (at least 10 characters)")
        return v.strip()


class MarkMissedRequest(BaseModel):
    reason: str
    comment: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        if v not in MISSED_REASONS:
            raise ValueError(f"Invalid reason. Must be one of: {', '.join(MISSED_REASONS)}")
        return v


class ReminderSweepResult(BaseModel):
    checked: int
    sent: int
    skipped: int
    failed: int
    timed_out: int
    unrecorded: int

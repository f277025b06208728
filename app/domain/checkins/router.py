"""Check-in router - FastAPI endpoints for recurring check-in scheduling"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_coach
from ...database import get_db
from ...models import User
from ...services.notification_service import EmailNotificationDispatcher, NotificationDispatcher
from .materializer import AssignmentView
from .reminders import ReminderScheduler
from .schemas import (
    AssignmentListResponse,
    AssignmentResponse,
    ExtensionRequest,
    MarkMissedRequest,
    OneOffCreate,
    ReminderSweepResult,
    ResponseSubmit,
    SeriesCreate,
    SeriesDeleteResult,
    SeriesResponse,
    SeriesUpdate,
    SubmissionResult,
)
from .service import CheckInService
from .windows import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/check-ins", tags=["Check-ins"])


def get_checkin_service(db: Session = Depends(get_db)) -> CheckInService:
    """Dependency injection for CheckInService"""
    return CheckInService(db)


def get_notification_dispatcher() -> NotificationDispatcher:
    return EmailNotificationDispatcher()


def to_response(view: AssignmentView) -> AssignmentResponse:
    return AssignmentResponse.model_validate(view.model_dump())


def summarize(views: list[AssignmentView]) -> dict:
    return {
        "total": len(views),
        "pending": sum(1 for v in views if v.status in ("scheduled", "open")),
        "completed": sum(1 for v in views if v.status == "submitted"),
        "overdue": sum(1 for v in views if v.status == "missed"),
    }


# ============================================================================
# SERIES (COACH)
# ============================================================================


@router.post("/series", response_model=SeriesResponse)
async def create_series(
    data: SeriesCreate,
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    """Assign a recurring weekly check-in to one of the coach's clients"""
    return service.create_series(current_user, data)


@router.get("/series", response_model=list[SeriesResponse])
async def list_series(
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    return service.list_series_for_coach(current_user)


@router.patch("/series/{series_id}", response_model=SeriesResponse)
async def update_series(
    series_id: str,
    data: SeriesUpdate,
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    return service.update_series(series_id, current_user, data)


@router.post("/series/{series_id}/pause", response_model=SeriesResponse)
async def pause_series(
    series_id: str,
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    return service.pause_series(series_id, current_user)


@router.post("/series/{series_id}/resume", response_model=SeriesResponse)
async def resume_series(
    series_id: str,
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    return service.resume_series(series_id, current_user)


@router.delete("/series/{series_id}", response_model=SeriesDeleteResult)
async def delete_series(
    series_id: str,
    preserve_history: bool = Query(True),
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    """Delete a series; by default submitted weeks and their responses are kept"""
    return SeriesDeleteResult(**service.delete_series(series_id, current_user, preserve_history))


@router.post("/one-off", response_model=AssignmentResponse)
async def create_one_off(
    data: OneOffCreate,
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    assignment = service.create_one_off(current_user, data)
    return to_response(service.get_assignment(current_user, assignment.id))


# ============================================================================
# ASSIGNMENTS
# ============================================================================


@router.get("/me", response_model=AssignmentListResponse)
async def list_my_checkins(
    current_user: User = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service),
):
    """Check-ins the signed-in client should see right now"""
    views = service.list_for_client(current_user, current_user.id)
    return AssignmentListResponse(checkins=[to_response(v) for v in views], summary=summarize(views))


@router.get("/clients/{client_id}", response_model=AssignmentListResponse)
async def list_client_checkins(
    client_id: int,
    current_user: User = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service),
):
    views = service.list_for_client(current_user, client_id)
    return AssignmentListResponse(checkins=[to_response(v) for v in views], summary=summarize(views))


@router.get("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def get_assignment(
    assignment_id: str,
    current_user: User = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service),
):
    """Resolve a check-in link; a bare series id opens the current week"""
    return to_response(service.get_assignment(current_user, assignment_id))


@router.post("/assignments/{assignment_id}/responses", response_model=SubmissionResult)
async def submit_response(
    assignment_id: str,
    data: ResponseSubmit,
    current_user: User = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service),
):
    response = service.submit_response(current_user, assignment_id, data.answers)
    return SubmissionResult(
        assignment_id=response.assignment_id,
        response_id=response.id,
        submitted_at=response.submitted_at,
    )


@router.post("/assignments/{assignment_id}/extension", response_model=AssignmentResponse)
async def request_extension(
    assignment_id: str,
    data: ExtensionRequest,
    current_user: User = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service),
):
    """Extensions are granted automatically and allow a late submission"""
    return to_response(service.request_extension(current_user, assignment_id, data.reason))


@router.post("/assignments/{assignment_id}/open-for-check-in", response_model=AssignmentResponse)
async def open_for_check_in(
    assignment_id: str,
    current_user: User = Depends(require_coach),
    service: CheckInService = Depends(get_checkin_service),
):
    """Coach lets the client submit a check-in even though its window has closed"""
    return to_response(service.open_for_check_in(current_user, assignment_id))


@router.post("/assignments/{assignment_id}/mark-missed", response_model=AssignmentResponse)
async def mark_missed(
    assignment_id: str,
    data: MarkMissedRequest,
    current_user: User = Depends(get_current_user),
    service: CheckInService = Depends(get_checkin_service),
):
    return to_response(service.mark_missed(current_user, assignment_id, data.reason, data.comment))


# ============================================================================
# REMINDERS
# ============================================================================


@router.post("/reminders/run", response_model=ReminderSweepResult)
async def run_reminder_sweep(
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Manually trigger a reminder sweep over the calling coach's clients
    (In production this runs from the worker cron every few minutes)
    """
    logger.info(f"🔔 Manual reminder sweep triggered by coach {current_user.id}")
    summary = await ReminderScheduler(dispatcher, coach_id=current_user.id).run_sweep(db, utcnow())
    return ReminderSweepResult(**summary.model_dump())

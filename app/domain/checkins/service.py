"""Check-in service - Business logic for series, assignments and submissions"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    DEFAULT_CADENCE_DAYS,
    DEFAULT_WINDOW_HOURS,
    PRECREATE_HORIZON_WEEKS,
    use_pre_created_assignments,
)
from ...models import CheckInAssignment, CheckInResponse, CheckInSeries, User, generate_document_id
from ...utils.sanitization import validate_and_sanitize_input
from .exceptions import AuthorizationDenied, InvalidOperation, NotFound
from .identity import AssignmentKey, StandaloneId, parse_assignment_id
from .materializer import AssignmentView, get_occurrence, list_assignments_for
from .repository import CheckInRepository
from .schemas import OneOffCreate, SeriesCreate, SeriesUpdate
from .windows import (
    WindowState,
    compute_window,
    current_week,
    occurrence_open_at,
    to_naive_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

COACH_OPENED_REASON = "Opened by coach for check-in"


def build_week_assignment(series: CheckInSeries, week: int, status: str = "scheduled") -> CheckInAssignment:
    """Stored document for one week of a series, under its canonical id"""
    window = compute_window(
        occurrence_open_at(series.start_at, week, series.cadence_days), series.window_hours
    )
    return CheckInAssignment(
        id=AssignmentKey(series.id, week).encode(),
        series_id=series.id,
        week=week,
        client_id=series.client_id,
        coach_id=series.coach_id,
        form_id=series.form_id,
        title=series.form_title,
        open_at=window.open_at,
        close_at=window.close_at,
        status=status,
        milestones_fired=[],
    )


class CheckInService:
    """Service layer for check-in scheduling"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = CheckInRepository()

    # ========================================================================
    # SERIES (COACH)
    # ========================================================================

    def _get_coached_client(self, coach: User, client_id: int) -> User:
        client = self.repo.get_user(self.db, client_id)
        if not client:
            raise NotFound("Client not found")
        if client.coach_id != coach.id:
            logger.warning(f"⚠️ Coach {coach.id} attempted to assign check-ins to client {client_id}")
            raise AuthorizationDenied("This client is not assigned to you")
        return client

    def create_series(self, coach: User, data: SeriesCreate, now: Optional[datetime] = None) -> CheckInSeries:
        """Create a series with week 1 stored; pre-create later weeks when the toggle is on"""
        now = now or utcnow()
        self._get_coached_client(coach, data.client_id)

        start_at = to_naive_utc(data.start_at) or now
        if data.weekly_window:
            start_at = data.weekly_window.first_open_at(start_at)
            window_hours = data.weekly_window.duration() / timedelta(hours=1)
        else:
            window_hours = data.window_hours or DEFAULT_WINDOW_HOURS

        series = CheckInSeries(
            id=generate_document_id(),
            coach_id=coach.id,
            client_id=data.client_id,
            form_id=data.form_id,
            form_title=data.form_title,
            cadence_days=DEFAULT_CADENCE_DAYS,
            window_hours=window_hours,
            total_weeks=data.total_weeks,
            start_at=start_at,
        )

        weeks = 1
        if use_pre_created_assignments():
            weeks = data.total_weeks or PRECREATE_HORIZON_WEEKS

        assignments = [build_week_assignment(series, week) for week in range(1, weeks + 1)]
        self.db.add(series)
        self.repo.batch_create_assignments(self.db, assignments)
        self.db.refresh(series)

        logger.info(
            f"✅ Series {series.id} created for client {series.client_id}: "
            f"{len(assignments)} week(s) stored, total={series.total_weeks or 'indefinite'}"
        )
        return series

    def create_one_off(self, coach: User, data: OneOffCreate, now: Optional[datetime] = None) -> CheckInAssignment:
        now = now or utcnow()
        self._get_coached_client(coach, data.client_id)

        window = compute_window(
            to_naive_utc(data.open_at) or now, data.window_hours or DEFAULT_WINDOW_HOURS
        )
        assignment = CheckInAssignment(
            id=generate_document_id(),
            client_id=data.client_id,
            coach_id=coach.id,
            form_id=data.form_id,
            title=data.form_title,
            open_at=window.open_at,
            close_at=window.close_at,
            status="scheduled",
            milestones_fired=[],
        )
        return self.repo.create_assignment(self.db, assignment)

    def list_series_for_coach(self, coach: User) -> list[CheckInSeries]:
        return self.repo.get_series_for_coach(self.db, coach.id)

    def get_owned_series(self, series_id: str, coach: User) -> CheckInSeries:
        series = self.repo.get_series(self.db, series_id)
        if not series:
            raise NotFound("Check-in series not found")
        if series.coach_id != coach.id:
            raise AuthorizationDenied("You do not have permission to modify this check-in series")
        return series

    def update_series(
        self, series_id: str, coach: User, data: SeriesUpdate, now: Optional[datetime] = None
    ) -> CheckInSeries:
        """
        Change total weeks and/or window length.

        Submitted weeks are never touched. Unsubmitted stored weeks keep their
        open time and get a new close time. With pre-created assignments,
        weeks beyond a reduced total are deleted and weeks up to a raised
        total are created.
        """
        now = now or utcnow()
        series = self.get_owned_series(series_id, coach)
        stored = self.repo.get_assignments_for_series(self.db, series.id)

        if data.total_weeks is not None:
            submitted_weeks = [a.week for a in stored if a.status == "submitted" and a.week]
            if submitted_weeks and data.total_weeks < max(submitted_weeks):
                raise InvalidOperation(
                    f"Week {max(submitted_weeks)} has already been submitted; total weeks cannot be lower"
                )
            series.total_weeks = data.total_weeks

        if data.window_hours is not None:
            series.window_hours = data.window_hours

        for assignment in stored:
            if assignment.status == "submitted" or assignment.response_id:
                continue
            if series.total_weeks is not None and assignment.week and assignment.week > series.total_weeks:
                self.db.delete(assignment)
                continue
            if data.window_hours is not None:
                assignment.close_at = compute_window(assignment.open_at, series.window_hours).close_at
                assignment.version = (assignment.version or 1) + 1

        if use_pre_created_assignments() and series.total_weeks is not None:
            existing_weeks = {a.week for a in stored}
            self.db.add_all(
                build_week_assignment(series, week)
                for week in range(1, series.total_weeks + 1)
                if week not in existing_weeks
            )

        self.db.commit()
        self.db.refresh(series)
        logger.info(f"✅ Series {series.id} updated: total={series.total_weeks}, window={series.window_hours}h")
        return series

    def pause_series(self, series_id: str, coach: User, now: Optional[datetime] = None) -> CheckInSeries:
        now = now or utcnow()
        series = self.get_owned_series(series_id, coach)
        if series.is_paused:
            return series
        return self.repo.update_series(self.db, series, is_paused=True, paused_at=now)

    def resume_series(self, series_id: str, coach: User, now: Optional[datetime] = None) -> CheckInSeries:
        """
        Weeks that opened and closed while paused are stored as closed
        (excused, no reminders, not shown as missed). A week whose window is
        still open at resume time stays submittable. The series then
        continues on its original weekly schedule.
        """
        now = now or utcnow()
        series = self.get_owned_series(series_id, coach)
        if not series.is_paused:
            return series

        paused_at = series.paused_at or now
        stored = {a.week: a for a in self.repo.get_assignments_for_series(self.db, series.id)}
        last_week = current_week(series.start_at, now, series.cadence_days, series.total_weeks)

        excused = 0
        for week in range(1, last_week + 1):
            open_at = occurrence_open_at(series.start_at, week, series.cadence_days)
            if open_at < paused_at or open_at > now:
                continue
            if compute_window(open_at, series.window_hours).close_at > now:
                continue
            assignment = stored.get(week)
            if assignment is None:
                self.db.add(build_week_assignment(series, week, status="closed"))
                excused += 1
            elif assignment.status != "submitted":
                assignment.status = "closed"
                assignment.version = (assignment.version or 1) + 1
                excused += 1

        series.is_paused = False
        series.paused_at = None
        self.db.commit()
        self.db.refresh(series)
        logger.info(f"▶️ Series {series.id} resumed, {excused} paused week(s) closed")
        return series

    def delete_series(self, series_id: str, coach: User, preserve_history: bool = True) -> dict:
        """
        preserve_history: keep submitted weeks (and their responses) and
        deactivate the series; otherwise delete everything.
        """
        series = self.get_owned_series(series_id, coach)
        assignments = self.repo.get_assignments_for_series(self.db, series.id)

        deleted_count = 0
        deleted_responses = 0
        preserved_count = 0
        for assignment in assignments:
            if preserve_history and assignment.status == "submitted":
                preserved_count += 1
                continue
            if assignment.response_id:
                response = self.repo.get_response(self.db, assignment.response_id)
                if response:
                    self.db.delete(response)
                    deleted_responses += 1
            self.db.delete(assignment)
            deleted_count += 1

        if preserve_history:
            series.is_active = False
        else:
            self.db.delete(series)
        self.db.commit()

        if preserve_history:
            message = (
                f"Successfully deleted {deleted_count} pending check-ins while preserving "
                f"{preserved_count} completed check-ins and their history"
            )
        else:
            message = (
                f"Successfully deleted {deleted_count} check-in assignments and "
                f"{deleted_responses} responses (entire series including history)"
            )
        logger.info(f"🗑️ Series {series_id}: {message}")

        return {
            "message": message,
            "deleted_assignments": deleted_count,
            "deleted_responses": deleted_responses,
            "preserved_assignments": preserved_count,
            "preserve_history": preserve_history,
        }

    def extend_precreated_horizon(self, now: Optional[datetime] = None) -> int:
        """Keep PRECREATE_HORIZON_WEEKS weeks stored ahead of every indefinite series"""
        now = now or utcnow()
        created = 0
        for series in self.repo.get_active_series(self.db):
            if series.total_weeks is not None:
                continue
            try:
                existing = {a.week for a in self.repo.get_assignments_for_series(self.db, series.id)}
                last_week = current_week(series.start_at, now, series.cadence_days) + PRECREATE_HORIZON_WEEKS
                missing = [
                    build_week_assignment(series, week)
                    for week in range(1, last_week + 1)
                    if week not in existing
                ]
                if missing:
                    self.repo.batch_create_assignments(self.db, missing)
                    created += len(missing)
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Failed to extend pre-created weeks for series {series.id}: {e}")
                continue
        return created

    # ========================================================================
    # ASSIGNMENTS (CLIENT)
    # ========================================================================

    def _check_can_view_client(self, user: User, client_id: int) -> None:
        if user.id == client_id:
            return
        if user.role == "coach":
            client = self.repo.get_user(self.db, client_id)
            if client and client.coach_id == user.id:
                return
        raise AuthorizationDenied("You do not have permission to view these check-ins")

    def list_for_client(self, user: User, client_id: int, now: Optional[datetime] = None) -> list[AssignmentView]:
        self._check_can_view_client(user, client_id)
        return list_assignments_for(self.db, client_id, now or utcnow())

    def resolve_key(self, raw_id: str, now: Optional[datetime] = None) -> str:
        """
        Canonical id for a raw id. A bare series id resolves to that series'
        current week rather than to the series' first document.
        """
        key = parse_assignment_id(raw_id)
        if isinstance(key, StandaloneId):
            series = self.repo.get_series(self.db, raw_id)
            if series is not None:
                week = current_week(
                    series.start_at, now or utcnow(), series.cadence_days, series.total_weeks
                )
                return AssignmentKey(series.id, week).encode()
        return raw_id

    def get_assignment(self, user: User, raw_id: str, now: Optional[datetime] = None) -> AssignmentView:
        now = now or utcnow()
        view = get_occurrence(self.db, self.resolve_key(raw_id, now), now)
        self._check_can_view_client(user, view.client_id)
        return view

    def _get_own_assignment(self, user: User, raw_id: str, now: datetime) -> AssignmentView:
        view = get_occurrence(self.db, self.resolve_key(raw_id, now), now)
        if view.client_id != user.id:
            raise AuthorizationDenied("This check-in does not belong to you")
        return view

    def ensure_persisted(self, view: AssignmentView) -> CheckInAssignment:
        """Store a virtual occurrence under its canonical id (no-op if already stored)"""
        if not view.is_virtual:
            assignment = self.repo.get_assignment(self.db, view.id)
            if assignment is None:
                raise NotFound("Check-in assignment not found")
            return assignment

        existing = self.repo.get_assignment(self.db, view.id)
        if existing is not None:
            return existing

        assignment = CheckInAssignment(
            id=view.id,
            series_id=view.series_id,
            week=view.week,
            client_id=view.client_id,
            coach_id=view.coach_id,
            form_id=view.form_id,
            title=view.title,
            open_at=view.open_at,
            close_at=view.close_at,
            status="scheduled",
            milestones_fired=[],
        )
        try:
            return self.repo.create_assignment(self.db, assignment)
        except IntegrityError:
            # Stored concurrently by the reminder sweep or another request
            self.db.rollback()
            return self.repo.get_assignment(self.db, view.id)

    def submit_response(
        self, user: User, raw_id: str, answers: dict, now: Optional[datetime] = None
    ) -> CheckInResponse:
        """
        Record a client's answers. A virtual week is stored under its
        canonical id first so the response can always be tied back to its week.
        """
        now = now or utcnow()
        view = self._get_own_assignment(user, raw_id, now)

        if view.status == "submitted":
            raise InvalidOperation("This check-in has already been submitted")
        if view.window_state == WindowState.NOT_YET_OPEN:
            raise InvalidOperation("This check-in is not open yet")
        if view.window_state == WindowState.CLOSED and not view.extension_granted:
            raise InvalidOperation("The check-in window has closed. Request an extension to submit late.")

        assignment = self.ensure_persisted(view)
        response = CheckInResponse(
            id=generate_document_id(),
            assignment_id=assignment.id,
            client_id=user.id,
            answers=answers,
            submitted_at=now,
        )

        # Conditional on version so a milestone recorded by the sweep in between is kept
        for _ in range(3):
            self.db.refresh(assignment)
            if assignment.status == "submitted":
                raise InvalidOperation("This check-in has already been submitted")
            if self.repo.record_submission(self.db, assignment.id, response, assignment.version):
                logger.info(f"✅ Check-in {assignment.id} submitted by client {user.id}")
                return response
            logger.info(f"🔁 Version conflict submitting {assignment.id}, retrying")

        raise InvalidOperation("Check-in was modified concurrently, please try again")

    def request_extension(
        self, user: User, raw_id: str, reason: str, now: Optional[datetime] = None
    ) -> AssignmentView:
        now = now or utcnow()
        view = self._get_own_assignment(user, raw_id, now)
        if view.status == "submitted":
            raise InvalidOperation("Cannot request extension for a completed check-in")
        if view.extension_granted:
            return view

        try:
            reason = validate_and_sanitize_input(reason, max_length=1000)
        except ValueError as e:
            raise InvalidOperation(str(e)) from e

        assignment = self.ensure_persisted(view)
        self.repo.merge_update(
            self.db, assignment.id, {"extension_granted": True, "extension_reason": reason}
        )
        logger.info(f"⏳ Extension granted for check-in {assignment.id}")
        return get_occurrence(self.db, assignment.id, now)

    def open_for_check_in(self, coach: User, raw_id: str, now: Optional[datetime] = None) -> AssignmentView:
        """Coach reopens a client's check-in so it can be submitted after its window closed"""
        now = now or utcnow()
        view = get_occurrence(self.db, self.resolve_key(raw_id, now), now)

        client = self.repo.get_user(self.db, view.client_id)
        if not client or client.coach_id != coach.id:
            logger.warning(f"⚠️ Coach {coach.id} attempted to open check-in {view.id}")
            raise AuthorizationDenied("You can only open check-ins for your own clients")
        if view.status == "submitted":
            raise InvalidOperation("Cannot open a completed check-in")
        if view.extension_granted:
            return view

        assignment = self.ensure_persisted(view)
        self.repo.merge_update(
            self.db,
            assignment.id,
            {
                "extension_granted": True,
                "extension_reason": COACH_OPENED_REASON,
                "extension_granted_by": coach.id,
            },
        )
        logger.info(f"🔓 Check-in {assignment.id} opened for client {view.client_id} by coach {coach.id}")
        return get_occurrence(self.db, assignment.id, now)

    def mark_missed(
        self,
        user: User,
        raw_id: str,
        reason: str,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AssignmentView:
        now = now or utcnow()
        view = self._get_own_assignment(user, raw_id, now)

        if view.status == "submitted":
            raise InvalidOperation("Cannot mark check-in as missed. Current status: submitted")
        if view.window_state != WindowState.CLOSED:
            raise InvalidOperation("Check-in can only be marked as missed after its window has closed")
        if reason == "other" and not comment:
            raise InvalidOperation('Comment is required when reason is "other"')

        try:
            comment = validate_and_sanitize_input(comment) if comment else None
        except ValueError as e:
            raise InvalidOperation(str(e)) from e

        assignment = self.ensure_persisted(view)
        self.repo.merge_update(
            self.db,
            assignment.id,
            {"status": "missed", "missed_reason": reason, "missed_comment": comment},
        )
        return get_occurrence(self.db, assignment.id, now)

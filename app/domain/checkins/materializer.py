"""
Assignment materialization

Turns series configuration into the occurrences a client sees "now".

- PreCreatedStrategy: every week is a stored document; read them as-is.
- ComputedStrategy (default): weeks are computed from the series and only
  stored documents (submitted, marked missed, reminded) exist in the DB.

Both produce AssignmentView objects. When a stored document and a computed
occurrence share a canonical id, merge_occurrences() keeps the stored one.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...config import use_pre_created_assignments
from ...models import CheckInAssignment, CheckInSeries
from .exceptions import NotFound
from .identity import AssignmentKey, parse_assignment_id
from .repository import CheckInRepository
from .windows import (
    Window,
    classify,
    compute_window,
    current_week,
    display_status,
    occurrence_open_at,
)

logger = logging.getLogger(__name__)


class AssignmentView(BaseModel):
    """One occurrence as returned to callers, stored or virtual"""

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
    window_open_notified: bool = False
    is_virtual: bool = False
    version: Optional[int] = None

    @property
    def is_recurring(self) -> bool:
        return self.series_id is not None


def view_from_stored(
    assignment: CheckInAssignment,
    as_of: datetime,
    series: Optional[CheckInSeries] = None,
) -> AssignmentView:
    """
    With a series, the close time of an unsubmitted occurrence is recomputed
    from the series' current window length. Submitted occurrences are frozen.
    """
    close_at = assignment.close_at
    if series is not None and assignment.status != "submitted" and not assignment.response_id:
        close_at = compute_window(assignment.open_at, series.window_hours).close_at

    state = classify(as_of, Window(open_at=assignment.open_at, close_at=close_at))
    return AssignmentView(
        id=assignment.id,
        series_id=assignment.series_id,
        week=assignment.week,
        client_id=assignment.client_id,
        coach_id=assignment.coach_id,
        form_id=assignment.form_id,
        title=assignment.title,
        open_at=assignment.open_at,
        close_at=close_at,
        status=display_status(state, assignment.status, bool(assignment.response_id)),
        window_state=state,
        response_id=assignment.response_id,
        milestones_fired=list(assignment.milestones_fired or []),
        extension_granted=bool(assignment.extension_granted),
        window_open_notified=assignment.window_open_notified_at is not None,
        is_virtual=False,
        version=assignment.version,
    )


def virtual_occurrence(series: CheckInSeries, week: int, as_of: datetime) -> AssignmentView:
    window = compute_window(
        occurrence_open_at(series.start_at, week, series.cadence_days), series.window_hours
    )
    state = classify(as_of, window)
    return AssignmentView(
        id=AssignmentKey(series.id, week).encode(),
        series_id=series.id,
        week=week,
        client_id=series.client_id,
        coach_id=series.coach_id,
        form_id=series.form_id,
        title=series.form_title,
        open_at=window.open_at,
        close_at=window.close_at,
        status=display_status(state),
        window_state=state,
        is_virtual=True,
    )


def merge_occurrences(
    stored: Iterable[AssignmentView], computed: Iterable[AssignmentView]
) -> list[AssignmentView]:
    """Union by canonical id; a stored document always replaces a computed one"""
    merged = {view.id: view for view in computed}
    for view in stored:
        merged[view.id] = view
    return sorted(merged.values(), key=lambda v: (v.open_at, v.id))


class AssignmentMaterializationStrategy:
    """Produces the occurrences a client sees at a point in time"""

    name = "base"
    recompute_windows = False

    def __init__(self, repo: Optional[CheckInRepository] = None):
        self.repo = repo or CheckInRepository()

    def materialize(self, db: Session, client_id: int, as_of: datetime) -> list[AssignmentView]:
        raise NotImplementedError

    def stored_views(self, db: Session, client_id: int, as_of: datetime) -> list[AssignmentView]:
        """
        Stored documents for the client. Recurring documents whose series is
        gone, or belongs to another client, are dropped instead of failing the list.
        """
        series_by_id = {
            s.id: s for s in self.repo.get_series_for_client(db, client_id, active_only=False)
        }
        views = []
        for assignment in self.repo.get_assignments_for_client(db, client_id):
            try:
                series = None
                if assignment.series_id is not None:
                    series = series_by_id.get(assignment.series_id) or self.repo.get_series(
                        db, assignment.series_id
                    )
                    if series is None:
                        logger.warning(
                            f"⚠️ Assignment {assignment.id} references missing series {assignment.series_id}, omitting"
                        )
                        continue
                    if series.client_id != client_id:
                        logger.warning(
                            f"⚠️ Series {series.id} is not assigned to client {client_id}, omitting {assignment.id}"
                        )
                        continue
                views.append(
                    view_from_stored(assignment, as_of, series if self.recompute_windows else None)
                )
            except Exception as e:
                logger.error(f"❌ Failed to materialize stored assignment {assignment.id}: {e}")
                continue
        return views


class PreCreatedStrategy(AssignmentMaterializationStrategy):
    """USE_PRE_CREATED_ASSIGNMENTS=true: stored documents only"""

    name = "pre_created"

    def materialize(self, db: Session, client_id: int, as_of: datetime) -> list[AssignmentView]:
        return merge_occurrences(self.stored_views(db, client_id, as_of), [])


class ComputedStrategy(AssignmentMaterializationStrategy):
    """USE_PRE_CREATED_ASSIGNMENTS=false: weeks computed from each active series"""

    name = "computed"
    recompute_windows = True

    def series_occurrences(
        self,
        series: CheckInSeries,
        as_of: datetime,
        closing_after: Optional[datetime] = None,
    ) -> list[AssignmentView]:
        """
        Virtual weeks 1..current week of one series. Weeks already closed show
        as missed. A paused series gets no week that opens after the pause.
        closing_after skips weeks that closed before it.
        """
        last_week = current_week(series.start_at, as_of, series.cadence_days, series.total_weeks)
        window_length = timedelta(hours=series.window_hours)
        occurrences = []
        for week in range(1, last_week + 1):
            open_at = occurrence_open_at(series.start_at, week, series.cadence_days)
            if series.is_paused and series.paused_at is not None and open_at >= series.paused_at:
                break
            if closing_after is not None and open_at + window_length < closing_after:
                continue
            occurrences.append(virtual_occurrence(series, week, as_of))
        return occurrences

    def materialize(self, db: Session, client_id: int, as_of: datetime) -> list[AssignmentView]:
        computed = []
        for series in self.repo.get_series_for_client(db, client_id):
            try:
                if series.client_id != client_id:
                    continue
                computed.extend(self.series_occurrences(series, as_of))
            except Exception as e:
                logger.error(f"❌ Failed to compute occurrences for series {series.id}: {e}")
                continue

        return merge_occurrences(self.stored_views(db, client_id, as_of), computed)


def get_materialization_strategy(use_pre_created: Optional[bool] = None) -> AssignmentMaterializationStrategy:
    if use_pre_created is None:
        use_pre_created = use_pre_created_assignments()
    return PreCreatedStrategy() if use_pre_created else ComputedStrategy()


def list_assignments_for(
    db: Session,
    client_id: int,
    as_of: datetime,
    use_pre_created: Optional[bool] = None,
) -> list[AssignmentView]:
    """Everything the client should see at `as_of`, ordered by open time"""
    strategy = get_materialization_strategy(use_pre_created)
    assignments = strategy.materialize(db, client_id, as_of)
    logger.debug(
        f"📋 Materialized {len(assignments)} check-ins for client {client_id} ({strategy.name})"
    )
    return assignments


def get_occurrence(
    db: Session,
    assignment_id: str,
    as_of: datetime,
    use_pre_created: Optional[bool] = None,
) -> AssignmentView:
    """
    One occurrence by canonical id: the stored document if there is one,
    otherwise (computed mode only) the virtual week of its series.
    """
    strategy = get_materialization_strategy(use_pre_created)
    repo = strategy.repo

    stored = repo.get_assignment(db, assignment_id)
    key = parse_assignment_id(assignment_id)

    if stored is not None:
        series = None
        if stored.series_id is not None:
            series = repo.get_series(db, stored.series_id)
            if series is None:
                raise NotFound("Check-in series not found")
        return view_from_stored(stored, as_of, series if strategy.recompute_windows else None)

    if not isinstance(key, AssignmentKey) or not strategy.recompute_windows:
        raise NotFound("Check-in assignment not found")

    series = repo.get_series(db, key.series_id)
    if series is None or not series.is_active:
        raise NotFound("Check-in series not found")

    if series.total_weeks is not None and key.week > series.total_weeks:
        raise NotFound(f"Week {key.week} is beyond the end of this series")

    for view in strategy.series_occurrences(series, as_of):
        if view.week == key.week:
            return view
    raise NotFound(f"Week {key.week} is not available yet")

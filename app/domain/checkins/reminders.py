"""
Check-in reminder sweep

Each occurrence gets at most one notification per milestone:

    closing_24h   close - 24h <= now < close - 1h
    closing_1h    close - 1h  <= now < close
    closed_2h     now >= close + 2h, still unsubmitted

The sweep is run on a timer (see worker.py) and is safe to re-run: the
fired set on the assignment is checked before sending and extended after a
successful send (fire-then-record, so delivery is at-least-once).

The same sweep also sends a one-time "window is open" notice shortly after
each window opens. It is tracked in window_open_notified_at, not in the
milestone set, and follows the same check / send / record steps.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    REMINDER_ITEM_TIMEOUT_SECONDS,
    REMINDER_LOOKBACK_HOURS,
    use_pre_created_assignments,
)
from ...models import CheckInAssignment, CheckInSeries, User
from .exceptions import DispatchFailure
from .materializer import (
    AssignmentView,
    ComputedStrategy,
    merge_occurrences,
    view_from_stored,
)
from .repository import CheckInRepository

logger = logging.getLogger(__name__)


class Milestone:
    CLOSING_24H = "closing_24h"
    CLOSING_1H = "closing_1h"
    CLOSED_2H = "closed_2h"

    ALL = (CLOSING_24H, CLOSING_1H, CLOSED_2H)


WINDOW_OPEN_NOTICE = "window_open"

# Furthest ahead of close that any milestone applies, plus slack for the sweep interval
CANDIDATE_HORIZON = timedelta(hours=25)

# A window-open notice is only sent this soon after opening
WINDOW_OPEN_NOTICE_PERIOD = timedelta(hours=12)


def due_milestone(view: AssignmentView, now: datetime) -> Optional[str]:
    """The milestone whose threshold `now` has crossed, if any"""
    # closed = excused by the coach (e.g. weeks skipped while the series was paused)
    if view.status in ("submitted", "closed") or view.response_id:
        return None

    close_at = view.close_at
    if now >= close_at + timedelta(hours=2):
        return Milestone.CLOSED_2H
    if close_at - timedelta(hours=1) <= now < close_at:
        return Milestone.CLOSING_1H
    if close_at - timedelta(hours=24) <= now < close_at - timedelta(hours=1):
        return Milestone.CLOSING_24H
    return None


def window_open_notice_due(view: AssignmentView, now: datetime) -> bool:
    """
    True once the window has opened, until WINDOW_OPEN_NOTICE_PERIOD has
    passed or the last hour (covered by closing_1h) has started.
    """
    if view.window_open_notified or view.response_id:
        return False
    if view.status in ("submitted", "closed", "missed"):
        return False
    last_moment = min(view.open_at + WINDOW_OPEN_NOTICE_PERIOD, view.close_at - timedelta(hours=1))
    return view.open_at <= now < last_moment


class SweepSummary(BaseModel):
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    timed_out: int = 0
    unrecorded: int = 0


def new_assignment_from_view(view: AssignmentView, **fields) -> CheckInAssignment:
    values = dict(
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
    values.update(fields)
    return CheckInAssignment(**values)


class ReminderScheduler:
    """
    Runs one reminder sweep over every occurrence near a milestone.
    With coach_id only that coach's clients are swept.
    """

    def __init__(
        self,
        dispatcher,
        item_timeout: float = REMINDER_ITEM_TIMEOUT_SECONDS,
        lookback: timedelta = timedelta(hours=REMINDER_LOOKBACK_HOURS),
        use_pre_created: Optional[bool] = None,
        coach_id: Optional[int] = None,
    ):
        self.dispatcher = dispatcher
        self.item_timeout = item_timeout
        self.lookback = lookback
        self.use_pre_created = use_pre_created
        self.coach_id = coach_id
        self.repo = CheckInRepository()

    def _pre_created(self) -> bool:
        return use_pre_created_assignments() if self.use_pre_created is None else self.use_pre_created

    def _stored_views(
        self, db: Session, assignments: list[CheckInAssignment], now: datetime, use_pre_created: bool
    ) -> list[AssignmentView]:
        """Views for stored rows, minus rows of paused, inactive or missing series"""
        series_cache: dict[str, Optional[CheckInSeries]] = {}
        views = []
        for assignment in assignments:
            if self.coach_id is not None and assignment.coach_id != self.coach_id:
                continue
            series = None
            if assignment.series_id is not None:
                if assignment.series_id not in series_cache:
                    series_cache[assignment.series_id] = self.repo.get_series(db, assignment.series_id)
                series = series_cache[assignment.series_id]
                if series is None or not series.is_active or series.is_paused:
                    continue
            views.append(view_from_stored(assignment, now, None if use_pre_created else series))
        return views

    def _virtual_views(self, db: Session, now: datetime, closing_after: datetime) -> list[AssignmentView]:
        strategy = ComputedStrategy(self.repo)
        views = []
        for series in self.repo.get_active_series(db):
            if self.coach_id is not None and series.coach_id != self.coach_id:
                continue
            try:
                views.extend(strategy.series_occurrences(series, now, closing_after=closing_after))
            except Exception as e:
                logger.error(f"❌ Failed to compute reminder candidates for series {series.id}: {e}")
        return views

    def collect_candidates(
        self, db: Session, now: datetime, use_pre_created: Optional[bool] = None
    ) -> list[AssignmentView]:
        """Occurrences that may be due a closing/closed milestone"""
        if use_pre_created is None:
            use_pre_created = self._pre_created()
        close_from = now - self.lookback
        close_until = now + CANDIDATE_HORIZON

        stored = self._stored_views(
            db, self.repo.get_reminder_candidates(db, close_from, close_until), now, use_pre_created
        )
        computed = []
        if not use_pre_created:
            computed = [v for v in self._virtual_views(db, now, close_from) if v.close_at <= close_until]
        return merge_occurrences(stored, computed)

    def collect_openings(
        self, db: Session, now: datetime, use_pre_created: Optional[bool] = None
    ) -> list[AssignmentView]:
        """Occurrences that opened within WINDOW_OPEN_NOTICE_PERIOD and are still open"""
        if use_pre_created is None:
            use_pre_created = self._pre_created()
        open_from = now - WINDOW_OPEN_NOTICE_PERIOD

        stored = self._stored_views(
            db, self.repo.get_recently_opened(db, open_from, now), now, use_pre_created
        )
        computed = []
        if not use_pre_created:
            computed = [v for v in self._virtual_views(db, now, now) if v.open_at >= open_from]
        return merge_occurrences(stored, computed)

    async def run_sweep(self, db: Session, now: datetime) -> SweepSummary:
        summary = SweepSummary()
        use_pre_created = self._pre_created()
        candidates = self.collect_candidates(db, now, use_pre_created)
        openings = self.collect_openings(db, now, use_pre_created)
        logger.info(
            f"🔔 Reminder sweep at {now:%Y-%m-%d %H:%M}: {len(candidates)} candidates, "
            f"{len(openings)} newly opened"
        )

        for view in candidates:
            await self._run_item(db, summary, view, self.process_occurrence(db, view, now))
        for view in openings:
            await self._run_item(db, summary, view, self.process_window_open(db, view, now))

        logger.info(f"📊 Reminder sweep summary: {summary.model_dump()}")
        return summary

    async def _run_item(
        self, db: Session, summary: SweepSummary, view: AssignmentView, work: Awaitable[str]
    ) -> None:
        """One unit of work under the per-item timeout; failures are counted, never raised"""
        summary.checked += 1
        try:
            outcome = await asyncio.wait_for(work, timeout=self.item_timeout)
        except asyncio.TimeoutError:
            summary.timed_out += 1
            logger.warning(f"⏱️ Notification for {view.id} timed out, retrying next sweep")
            return
        except DispatchFailure as e:
            summary.failed += 1
            logger.error(f"❌ {e.detail}")
            return
        except Exception as e:
            summary.failed += 1
            db.rollback()
            logger.error(f"❌ Reminder processing failed for {view.id}: {e}")
            return

        if outcome == "sent":
            summary.sent += 1
        elif outcome == "unrecorded":
            summary.unrecorded += 1
        else:
            summary.skipped += 1

    def _recipient(self, db: Session, view: AssignmentView, kind: str) -> Optional[User]:
        recipient = self.repo.get_user(db, view.client_id)
        if recipient is None or not recipient.email:
            logger.debug(f"ℹ️ No recipient email for {view.id}, skipping {kind}")
            return None
        if not recipient.email_notifications:
            logger.debug(f"ℹ️ Client {recipient.id} has email notifications disabled")
            return None
        return recipient

    async def process_occurrence(self, db: Session, view: AssignmentView, now: datetime) -> str:
        """One unit of work: check, send, record. Returns sent/skipped/unrecorded."""
        milestone = due_milestone(view, now)
        if milestone is None or milestone in view.milestones_fired:
            return "skipped"

        # Re-read: a submission or an overlapping sweep may have written since collection
        current = self.repo.get_assignment(db, view.id)
        if current is not None:
            if current.status == "submitted" or current.response_id:
                return "skipped"
            if milestone in (current.milestones_fired or []):
                return "skipped"

        recipient = self._recipient(db, view, milestone)
        if recipient is None:
            return "skipped"

        sent = await self.dispatcher.send(milestone, view.id, recipient, assignment=view)
        if not sent:
            raise DispatchFailure(f"Dispatch of {milestone} for {view.id} failed, left unfired")

        try:
            self.record_milestone(db, view, milestone, persisted=current is not None)
        except Exception as e:
            db.rollback()
            logger.error(
                f"❌ Sent {milestone} for {view.id} but failed to record it, next sweep re-evaluates: {e}"
            )
            return "unrecorded"

        logger.info(f"✅ {milestone} reminder sent for {view.id}")
        return "sent"

    def record_milestone(
        self, db: Session, view: AssignmentView, milestone: str, persisted: bool = False
    ) -> None:
        if view.is_virtual and not persisted:
            try:
                self.repo.create_assignment(db, new_assignment_from_view(view, milestones_fired=[milestone]))
                return
            except IntegrityError:
                # Promoted concurrently (submission or an overlapping sweep)
                db.rollback()

        self.repo.add_milestone(db, view.id, milestone)

    async def process_window_open(self, db: Session, view: AssignmentView, now: datetime) -> str:
        if not window_open_notice_due(view, now):
            return "skipped"

        current = self.repo.get_assignment(db, view.id)
        if current is not None:
            if current.window_open_notified_at is not None or current.response_id:
                return "skipped"
            if current.status in ("submitted", "closed", "missed"):
                return "skipped"

        recipient = self._recipient(db, view, WINDOW_OPEN_NOTICE)
        if recipient is None:
            return "skipped"

        sent = await self.dispatcher.send(WINDOW_OPEN_NOTICE, view.id, recipient, assignment=view)
        if not sent:
            raise DispatchFailure(f"Window-open notice for {view.id} failed, will retry")

        try:
            self.record_window_open(db, view, now, persisted=current is not None)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Sent window-open notice for {view.id} but failed to record it: {e}")
            return "unrecorded"

        logger.info(f"✅ Window-open notice sent for {view.id}")
        return "sent"

    def record_window_open(
        self, db: Session, view: AssignmentView, now: datetime, persisted: bool = False
    ) -> None:
        if view.is_virtual and not persisted:
            try:
                self.repo.create_assignment(db, new_assignment_from_view(view, window_open_notified_at=now))
                return
            except IntegrityError:
                db.rollback()

        # Partial update of one column, milestones_fired is left as stored
        self.repo.merge_update(db, view.id, {"window_open_notified_at": now})

"""Check-in repository - Database operations for series, assignments and responses"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ...models import CheckInAssignment, CheckInResponse, CheckInSeries, User
from .exceptions import TransientStorageFailure

logger = logging.getLogger(__name__)

# Conditional update retries before giving up (the caller's next attempt retries again)
MAX_CONDITIONAL_RETRIES = 3


class CheckInRepository:
    """Repository for check-in database operations"""

    # Series
    @staticmethod
    def get_series(db: Session, series_id: str) -> Optional[CheckInSeries]:
        return db.query(CheckInSeries).filter(CheckInSeries.id == series_id).first()

    @staticmethod
    def get_series_for_client(db: Session, client_id: int, active_only: bool = True) -> list[CheckInSeries]:
        query = db.query(CheckInSeries).filter(CheckInSeries.client_id == client_id)
        if active_only:
            query = query.filter(CheckInSeries.is_active.is_(True))
        return query.order_by(CheckInSeries.start_at.asc()).all()

    @staticmethod
    def get_series_for_coach(db: Session, coach_id: int) -> list[CheckInSeries]:
        return (
            db.query(CheckInSeries)
            .filter(CheckInSeries.coach_id == coach_id)
            .order_by(CheckInSeries.created_at.desc())
            .all()
        )

    @staticmethod
    def get_active_series(db: Session) -> list[CheckInSeries]:
        return (
            db.query(CheckInSeries)
            .filter(CheckInSeries.is_active.is_(True), CheckInSeries.is_paused.is_(False))
            .all()
        )

    @staticmethod
    def update_series(db: Session, series: CheckInSeries, **updates) -> CheckInSeries:
        for key, value in updates.items():
            if hasattr(series, key):
                setattr(series, key, value)
        db.commit()
        db.refresh(series)
        return series

    # Assignments
    @staticmethod
    def get_assignment(db: Session, assignment_id: str) -> Optional[CheckInAssignment]:
        return db.query(CheckInAssignment).filter(CheckInAssignment.id == assignment_id).first()

    @staticmethod
    def get_assignments_for_client(db: Session, client_id: int) -> list[CheckInAssignment]:
        return (
            db.query(CheckInAssignment)
            .filter(CheckInAssignment.client_id == client_id)
            .order_by(CheckInAssignment.open_at.asc(), CheckInAssignment.id.asc())
            .all()
        )

    @staticmethod
    def get_assignments_for_series(db: Session, series_id: str) -> list[CheckInAssignment]:
        return (
            db.query(CheckInAssignment)
            .filter(CheckInAssignment.series_id == series_id)
            .order_by(CheckInAssignment.week.asc())
            .all()
        )

    @staticmethod
    def get_reminder_candidates(
        db: Session, close_from: datetime, close_until: datetime
    ) -> list[CheckInAssignment]:
        """Unsubmitted assignments whose window closes inside [close_from, close_until]"""
        return (
            db.query(CheckInAssignment)
            .filter(
                CheckInAssignment.status != "submitted",
                CheckInAssignment.close_at >= close_from,
                CheckInAssignment.close_at <= close_until,
            )
            .order_by(CheckInAssignment.close_at.asc())
            .all()
        )

    @staticmethod
    def get_recently_opened(db: Session, open_from: datetime, open_until: datetime) -> list[CheckInAssignment]:
        """Unsubmitted assignments whose window opened inside [open_from, open_until]"""
        return (
            db.query(CheckInAssignment)
            .filter(
                CheckInAssignment.status != "submitted",
                CheckInAssignment.open_at >= open_from,
                CheckInAssignment.open_at <= open_until,
            )
            .order_by(CheckInAssignment.open_at.asc())
            .all()
        )

    @staticmethod
    def batch_create_assignments(db: Session, assignments: list[CheckInAssignment]) -> None:
        """Write several assignment documents in one commit"""
        db.add_all(assignments)
        db.commit()

    @staticmethod
    def create_assignment(db: Session, assignment: CheckInAssignment) -> CheckInAssignment:
        db.add(assignment)
        db.commit()
        db.refresh(assignment)
        return assignment

    @staticmethod
    def merge_update(
        db: Session,
        assignment_id: str,
        updates: dict,
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Partial update of the given fields only, bumping version.
        With expected_version the write only lands if nobody else wrote in
        between; returns False in that case.
        """
        stmt = update(CheckInAssignment).where(CheckInAssignment.id == assignment_id)
        if expected_version is not None:
            stmt = stmt.where(CheckInAssignment.version == expected_version)
        stmt = stmt.values(**updates, version=CheckInAssignment.version + 1)

        try:
            result = db.execute(stmt.execution_options(synchronize_session=False))
            db.commit()
        except OperationalError as e:
            db.rollback()
            raise TransientStorageFailure(f"Failed to update assignment {assignment_id}") from e

        # Drop any stale in-session copy so the next read sees the committed row
        db.expire_all()
        return result.rowcount == 1

    @staticmethod
    def add_milestone(db: Session, assignment_id: str, milestone: str) -> bool:
        """
        Add a milestone to milestones_fired with a read-modify-write on version.
        Returns False if the milestone was already recorded.
        """
        for _ in range(MAX_CONDITIONAL_RETRIES):
            row = (
                db.query(CheckInAssignment.milestones_fired, CheckInAssignment.version)
                .filter(CheckInAssignment.id == assignment_id)
                .first()
            )
            if row is None:
                return False

            fired = list(row.milestones_fired or [])
            if milestone in fired:
                return False

            if CheckInRepository.merge_update(
                db, assignment_id, {"milestones_fired": fired + [milestone]}, row.version
            ):
                return True
            logger.info(f"🔁 Version conflict recording {milestone} on {assignment_id}, retrying")

        raise TransientStorageFailure(
            f"Could not record {milestone} on {assignment_id} after {MAX_CONDITIONAL_RETRIES} attempts"
        )

    @staticmethod
    def record_submission(
        db: Session, assignment_id: str, response: CheckInResponse, expected_version: int
    ) -> bool:
        """
        Mark the assignment submitted and store the response in one transaction.
        Only lands if the assignment is still at expected_version and unsubmitted.
        """
        stmt = (
            update(CheckInAssignment)
            .where(
                CheckInAssignment.id == assignment_id,
                CheckInAssignment.version == expected_version,
                CheckInAssignment.status != "submitted",
            )
            .values(
                status="submitted",
                response_id=response.id,
                version=CheckInAssignment.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            if result.rowcount != 1:
                db.rollback()
                return False
            db.add(response)
            db.commit()
        except OperationalError as e:
            db.rollback()
            raise TransientStorageFailure(f"Failed to record submission for {assignment_id}") from e

        db.expire_all()
        return True

    # Responses
    @staticmethod
    def get_response(db: Session, response_id: str) -> Optional[CheckInResponse]:
        return db.query(CheckInResponse).filter(CheckInResponse.id == response_id).first()

    # Users
    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

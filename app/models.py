import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_document_id():
    """Generate a free-standing document id (series, one-off assignments, responses)"""
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    role = Column(String(20), default="client", nullable=False)  # coach, client
    coach_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # Set for clients
    email_notifications = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    coach = relationship("User", remote_side=[id])


class CheckInSeries(Base):
    """Recurring check-in template a coach assigns to a client"""

    __tablename__ = "check_in_series"

    id = Column(String(64), primary_key=True, default=generate_document_id)
    coach_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    form_id = Column(String(255), nullable=False)
    form_title = Column(String(255), nullable=True)
    cadence_days = Column(Integer, default=7, nullable=False)  # weekly only
    window_hours = Column(Float, default=48, nullable=False)
    total_weeks = Column(Integer, nullable=True)  # None = indefinite
    start_at = Column(DateTime, nullable=False)  # Open time of week 1 (UTC)
    is_active = Column(Boolean, default=True, nullable=False)
    is_paused = Column(Boolean, default=False, nullable=False)
    paused_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    coach = relationship("User", foreign_keys=[coach_id])
    client = relationship("User", foreign_keys=[client_id])


class CheckInAssignment(Base):
    """
    One occurrence of a series (id = <series_id>_week_<N>) or a one-off
    check-in (free-standing id, series_id NULL).
    """

    __tablename__ = "check_in_assignments"

    id = Column(String(128), primary_key=True)
    series_id = Column(String(64), nullable=True, index=True)
    week = Column(Integer, nullable=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    coach_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    form_id = Column(String(255), nullable=False)
    title = Column(String(255), nullable=True)
    open_at = Column(DateTime, nullable=False, index=True)
    close_at = Column(DateTime, nullable=False, index=True)
    # scheduled, open, submitted, missed, closed
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    response_id = Column(String(64), nullable=True)
    # Subset of closing_24h, closing_1h, closed_2h; only ever grows
    milestones_fired = Column(JSON, default=list, nullable=False)
    extension_granted = Column(Boolean, default=False, nullable=False)
    extension_reason = Column(Text, nullable=True)
    extension_granted_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # Coach who reopened it
    window_open_notified_at = Column(DateTime, nullable=True)
    missed_reason = Column(String(50), nullable=True)
    missed_comment = Column(Text, nullable=True)
    # Bumped on every conditional update
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def is_recurring(self) -> bool:
        return self.series_id is not None


class CheckInResponse(Base):
    """A client's submitted answers for one occurrence"""

    __tablename__ = "check_in_responses"

    id = Column(String(64), primary_key=True, default=generate_document_id)
    assignment_id = Column(String(128), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    answers = Column(JSON, nullable=False)
    submitted_at = Column(DateTime, nullable=False)

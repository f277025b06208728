"""Shared fixtures: in-memory database, users, series and a recording dispatcher."""
import asyncio
import os
from datetime import datetime

# Must be set before app modules read config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import CheckInSeries, User
from app.services.notification_service import NotificationDispatcher

# Monday 2026-01-05 09:00 UTC
T0 = datetime(2026, 1, 5, 9, 0)


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher double that records every send instead of emailing."""

    def __init__(self, succeed: bool = True, delay: float = 0.0, error: Exception = None) -> None:
        self.succeed = succeed
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, str, int]] = []

    async def send(self, milestone, assignment_id, recipient, assignment=None) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.calls.append((milestone, assignment_id, recipient.id))
        return self.succeed

    @property
    def milestones(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture(autouse=True)
def computed_mode(monkeypatch):
    """Every test starts with pre-created assignments off."""
    monkeypatch.delenv("USE_PRE_CREATED_ASSIGNMENTS", raising=False)


@pytest.fixture
def pre_created(monkeypatch):
    monkeypatch.setenv("USE_PRE_CREATED_ASSIGNMENTS", "true")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


def make_user(db, uid: str, role: str = "client", coach: User = None, **kwargs) -> User:
    user = User(
        firebase_uid=uid,
        email=f"{uid}@example.com",
        full_name=uid.capitalize(),
        role=role,
        coach_id=coach.id if coach else None,
        email_notifications=kwargs.pop("email_notifications", True),
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def coach(db):
    return make_user(db, "coach", role="coach")


@pytest.fixture
def client_user(db, coach):
    return make_user(db, "client", coach=coach)


@pytest.fixture
def other_client(db, coach):
    return make_user(db, "other", coach=coach)


def make_series(db, coach: User, client: User, series_id: str = "seriesA", **overrides) -> CheckInSeries:
    values = dict(
        id=series_id,
        coach_id=coach.id,
        client_id=client.id,
        form_id="weekly-form",
        form_title="Weekly check-in",
        cadence_days=7,
        window_hours=48,
        total_weeks=None,
        start_at=T0,
        is_active=True,
        is_paused=False,
    )
    values.update(overrides)
    series = CheckInSeries(**values)
    db.add(series)
    db.commit()
    db.refresh(series)
    return series


@pytest.fixture
def series(db, coach, client_user):
    return make_series(db, coach, client_user)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()

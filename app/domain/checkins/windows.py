"""
Check-in window calculations

Pure functions only. The window of an occurrence is the half-open range
[open_at, close_at); at close_at it is already closed. All datetimes are naive
UTC, matching what the database columns hold.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import BaseModel, field_validator

CLOSING_SOON_THRESHOLD = timedelta(hours=24)

DAYS_OF_WEEK = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class WindowState:
    NOT_YET_OPEN = "not_yet_open"
    OPEN = "open"
    CLOSING_SOON = "closing_soon"  # Sub-state of OPEN, never persisted
    CLOSED = "closed"


class Window(BaseModel):
    open_at: datetime
    close_at: datetime


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes from requests are converted; naive ones are taken as UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _as_timedelta(duration: Union[timedelta, int, float]) -> timedelta:
    if isinstance(duration, timedelta):
        return duration
    return timedelta(hours=duration)


def compute_window(open_at: datetime, duration: Union[timedelta, int, float]) -> Window:
    """close_at = open_at + duration (plain numbers are hours)"""
    return Window(open_at=open_at, close_at=open_at + _as_timedelta(duration))


def classify(
    now: datetime, window: Window, closing_soon: timedelta = CLOSING_SOON_THRESHOLD
) -> str:
    if now < window.open_at:
        return WindowState.NOT_YET_OPEN
    if now >= window.close_at:
        return WindowState.CLOSED
    if window.close_at - now <= closing_soon:
        return WindowState.CLOSING_SOON
    return WindowState.OPEN


def occurrence_open_at(start_at: datetime, week: int, cadence_days: int = 7) -> datetime:
    return start_at + timedelta(days=cadence_days * (week - 1))


def current_week(
    start_at: datetime,
    as_of: datetime,
    cadence_days: int = 7,
    total_weeks: Optional[int] = None,
) -> int:
    """
    floor((as_of - start_at) / cadence) + 1, clamped to [1, total_weeks].
    Before the series starts this is week 1.
    """
    week = (as_of - start_at) // timedelta(days=cadence_days) + 1
    if total_weeks is not None:
        week = min(week, total_weeks)
    return max(week, 1)


def display_status(state: str, stored_status: Optional[str] = None, has_response: bool = False) -> str:
    """Status a client sees for an occurrence at the time `state` was classified"""
    if has_response or stored_status == "submitted":
        return "submitted"
    if stored_status in ("missed", "closed"):
        return stored_status
    if state == WindowState.NOT_YET_OPEN:
        return "scheduled"
    if state == WindowState.CLOSED:
        return "missed"
    return "open"


# ============================================================================
# WEEKDAY WINDOWS
# ============================================================================


def _parse_time(value: str) -> tuple[int, int]:
    hours, _, minutes = value.partition(":")
    return int(hours or 0), int(minutes or 0)


class WeeklyWindow(BaseModel):
    """
    A window given as weekday + time of day, e.g. Friday 10:00 to Monday 22:00.
    Coaches can create a series this way instead of a start time and duration.
    """

    start_day: str = "friday"
    start_time: str = "10:00"
    end_day: str = "monday"
    end_time: str = "22:00"

    @field_validator("start_day", "end_day")
    @classmethod
    def validate_day(cls, v):
        v = v.lower()
        if v not in DAYS_OF_WEEK:
            raise ValueError(f"Invalid day: {v}")
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v):
        hours, minutes = _parse_time(v)
        if not (0 <= hours < 24 and 0 <= minutes < 60):
            raise ValueError(f"Invalid time: {v}")
        return f"{hours:02d}:{minutes:02d}"

    def _offset(self, day: str, time_of_day: str) -> timedelta:
        hours, minutes = _parse_time(time_of_day)
        return timedelta(days=DAYS_OF_WEEK.index(day), hours=hours, minutes=minutes)

    def duration(self) -> timedelta:
        """Length of the window; wraps across the week boundary (Fri -> Mon)"""
        delta = self._offset(self.end_day, self.end_time) - self._offset(
            self.start_day, self.start_time
        )
        if delta <= timedelta(0):
            delta += timedelta(days=7)
        return delta

    def first_open_at(self, after: datetime) -> datetime:
        """First window opening at or after `after`"""
        week_start = (after - timedelta(days=after.weekday())).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        candidate = week_start + self._offset(self.start_day, self.start_time)
        if candidate < after:
            candidate += timedelta(days=7)
        return candidate

    def describe(self) -> str:
        def fmt(day: str, time_of_day: str) -> str:
            hours, minutes = _parse_time(time_of_day)
            period = "PM" if hours >= 12 else "AM"
            display_hours = hours - 12 if hours > 12 else (12 if hours == 0 else hours)
            return f"{day.capitalize()} {display_hours}:{minutes:02d} {period}"

        return f"{fmt(self.start_day, self.start_time)} - {fmt(self.end_day, self.end_time)}"


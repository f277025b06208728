"""Tests for window arithmetic and classification."""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from app.domain.checkins.windows import (
    WeeklyWindow,
    WindowState,
    classify,
    compute_window,
    current_week,
    display_status,
    occurrence_open_at,
    to_naive_utc,
)

from .conftest import T0

ONE_US = timedelta(microseconds=1)


def test_compute_window_accepts_hours_or_timedelta() -> None:
    assert compute_window(T0, 48).close_at == T0 + timedelta(hours=48)
    assert compute_window(T0, timedelta(hours=6)).close_at == T0 + timedelta(hours=6)


def test_window_is_half_open() -> None:
    window = compute_window(T0, 48)
    assert classify(T0 - ONE_US, window) == WindowState.NOT_YET_OPEN
    assert classify(T0, window) == WindowState.OPEN
    assert classify(window.close_at - ONE_US, window) == WindowState.CLOSING_SOON
    assert classify(window.close_at, window) == WindowState.CLOSED
    assert classify(window.close_at + ONE_US, window) == WindowState.CLOSED


def test_closing_soon_starts_24h_before_close() -> None:
    window = compute_window(T0, 48)
    assert classify(window.close_at - timedelta(hours=24) - ONE_US, window) == WindowState.OPEN
    assert classify(window.close_at - timedelta(hours=24), window) == WindowState.CLOSING_SOON


def test_current_week() -> None:
    assert current_week(T0, T0 + timedelta(days=15)) == 3
    assert current_week(T0, T0 + timedelta(days=21)) == 4
    assert current_week(T0, T0 + timedelta(days=21) - ONE_US) == 3


def test_current_week_is_clamped() -> None:
    assert current_week(T0, T0 - timedelta(days=3)) == 1
    assert current_week(T0, T0 + timedelta(days=100), total_weeks=5) == 5


def test_occurrence_open_at() -> None:
    assert occurrence_open_at(T0, 1) == T0
    assert occurrence_open_at(T0, 3) == T0 + timedelta(days=14)


def test_to_naive_utc() -> None:
    aware = datetime(2026, 1, 5, 11, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == T0
    assert to_naive_utc(T0) == T0
    assert to_naive_utc(None) is None


def test_display_status() -> None:
    assert display_status(WindowState.NOT_YET_OPEN) == "scheduled"
    assert display_status(WindowState.CLOSING_SOON) == "open"
    assert display_status(WindowState.CLOSED) == "missed"
    assert display_status(WindowState.CLOSED, "scheduled", has_response=True) == "submitted"
    assert display_status(WindowState.OPEN, "closed") == "closed"


def test_weekly_window_wraps_over_weekend() -> None:
    window = WeeklyWindow()
    assert window.duration() == timedelta(hours=84)
    assert window.describe() == "Friday 10:00 AM - Monday 10:00 PM"


def test_weekly_window_first_open_at() -> None:
    window = WeeklyWindow()
    # T0 is a Monday, so the first opening is that Friday
    assert window.first_open_at(T0) == datetime(2026, 1, 9, 10, 0)
    assert window.first_open_at(datetime(2026, 1, 9, 10, 0)) == datetime(2026, 1, 9, 10, 0)
    assert window.first_open_at(datetime(2026, 1, 10, 8, 0)) == datetime(2026, 1, 16, 10, 0)


def test_weekly_window_normalizes_and_validates() -> None:
    window = WeeklyWindow(start_day="Tuesday", start_time="9:5", end_day="tuesday", end_time="21:05")
    assert window.start_day == "tuesday"
    assert window.start_time == "09:05"
    assert window.duration() == timedelta(hours=12)

    with pytest.raises(ValidationError):
        WeeklyWindow(start_day="someday")
    with pytest.raises(ValidationError):
        WeeklyWindow(end_time="25:00")

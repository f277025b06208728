"""Tests for canonical assignment ids."""
from types import SimpleNamespace

from app.domain.checkins.identity import (
    AssignmentKey,
    StandaloneId,
    canonical_id,
    canonical_id_for,
    parse_assignment_id,
)


def test_encode_and_parse_week_key() -> None:
    key = AssignmentKey("seriesA", 3)
    assert key.encode() == "seriesA_week_3"
    assert parse_assignment_id("seriesA_week_3") == key


def test_parse_uses_last_marker() -> None:
    """Series ids may themselves contain the marker text."""
    assert parse_assignment_id("my_week_plan_week_12") == AssignmentKey("my_week_plan", 12)


def test_bare_and_malformed_ids_are_standalone() -> None:
    for raw in ("abc123", "seriesA_week_", "seriesA_week_x", "seriesA_week_0", "_week_2"):
        assert parse_assignment_id(raw) == StandaloneId(raw)


def test_non_ascii_digits_are_standalone() -> None:
    # superscript two, Arabic-Indic three, fullwidth one
    for raw in ("seriesA_week_²", "seriesA_week_٣", "seriesA_week_１", "seriesA_week_-1"):
        assert parse_assignment_id(raw) == StandaloneId(raw)


def test_canonical_id_appends_week_once() -> None:
    assert canonical_id("seriesA", True, 2) == "seriesA_week_2"
    assert canonical_id("seriesA_week_2", True, 2) == "seriesA_week_2"


def test_canonical_id_leaves_one_offs_alone() -> None:
    assert canonical_id("oneoff1", False, None) == "oneoff1"
    assert canonical_id("seriesA", True, None) == "seriesA"


def test_canonical_id_for_objects() -> None:
    recurring = SimpleNamespace(id="whatever", series_id="seriesA", week=5)
    one_off = SimpleNamespace(id="oneoff1", series_id=None, week=None)
    assert canonical_id_for(recurring) == "seriesA_week_5"
    assert canonical_id_for(one_off) == "oneoff1"

"""
Assignment identity

A recurring occurrence is identified by (series_id, week). That pair is only
encoded as "<series_id>_week_<N>" at the storage/HTTP boundary; everything
else passes AssignmentKey around.

A bare id without the marker is either a one-off assignment or a series id
with no week resolved. The string alone cannot tell which, so callers check
the series record before reading (see CheckInService.resolve_key).
"""

from typing import NamedTuple, Optional, Union

WEEK_MARKER = "_week_"


class AssignmentKey(NamedTuple):
    series_id: str
    week: int

    def encode(self) -> str:
        return f"{self.series_id}{WEEK_MARKER}{self.week}"


class StandaloneId(NamedTuple):
    standalone_id: str


def canonical_id(raw_id: str, is_recurring: bool, week: Optional[int]) -> str:
    """Return the id that must be used for every read/write of this occurrence"""
    if is_recurring and week is not None and WEEK_MARKER not in str(raw_id):
        return AssignmentKey(str(raw_id), int(week)).encode()
    return raw_id


def canonical_id_for(assignment) -> str:
    """canonical_id() for anything with id / series_id / week attributes"""
    series_id = getattr(assignment, "series_id", None)
    raw_id = series_id if series_id is not None else assignment.id
    return canonical_id(raw_id, series_id is not None, getattr(assignment, "week", None))


def parse_assignment_id(assignment_id: str) -> Union[AssignmentKey, StandaloneId]:
    """Inverse of AssignmentKey.encode(); anything else is a StandaloneId"""
    base, marker, week = str(assignment_id).rpartition(WEEK_MARKER)
    # Only ASCII digits round-trip through encode()
    if not marker or not base or not (week.isascii() and week.isdecimal()) or int(week) < 1:
        return StandaloneId(assignment_id)
    return AssignmentKey(base, int(week))

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum


class Side(str, Enum):
    """One of the two debate positions."""
    SIDE_A = "side_a"
    SIDE_B = "side_b"


class SummaryType(str, Enum):
    LIVE = "live"
    PERIODIC = "periodic"
    FINAL = "final"


class ParticipantRole(str, Enum):
    ANCHOR = "anchor"  # speaking role, always has a side
    ORGANISER = "organiser"
    AUDIENCE = "audience"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite returns stored timestamps without tzinfo; they are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

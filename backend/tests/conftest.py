"""
Shared fixtures:
- in-memory SQLite engine with all tables
- inline executor so fire-and-forget writes finish before assertions
- fake host recognizer and restart scheduler
- the "For"/"Against" debate room used across aggregation and summary tests
"""

from __future__ import annotations

from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from debatestream.config import Settings
from debatestream.models.base import init_db
from debatestream.models.caption import Caption
from debatestream.models.common import ParticipantRole, Side
from debatestream.models.room import Message, Participant, Room, Vote

T0 = datetime(2025, 6, 29, 18, 0, 0, tzinfo=timezone.utc)


class InlineExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        fut: Future = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except BaseException as e:  # pragma: no cover - surfaced through the future
            fut.set_exception(e)
        return fut


class FakeRecognizer:
    def __init__(self, fail_starts: int = 0) -> None:
        self.continuous = False
        self.interim_results = False
        self.lang = ""
        self.starts = 0
        self.stops = 0
        self.fail_starts = fail_starts

    def start(self) -> None:
        if self.fail_starts > 0:
            self.fail_starts -= 1
            raise RuntimeError("recognition has already started")
        self.starts += 1

    def stop(self) -> None:
        self.stops += 1


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def delays(self) -> List[float]:
        return [t.delay for t in self.timers]

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire(self) -> None:
        pending = self.pending
        assert len(pending) == 1, f"expected one pending timer, got {len(pending)}"
        pending[0].fired = True
        pending[0].callback()


@pytest.fixture
def settings() -> Settings:
    return Settings(gemini_api_key=None, max_restart_attempts=10)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> Callable[[], Session]:
    return lambda: Session(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


def add_room(session: Session, room_id: str = "room-1", *, ended: Optional[datetime] = None) -> Room:
    room = Room(
        id=room_id,
        topic="Remote work is better than office work",
        side_a_label="For",
        side_b_label="Against",
        created_at=T0 - timedelta(minutes=5),
        started_at=T0,
        ended_at=ended,
    )
    session.add(room)
    session.commit()
    return room


@pytest.fixture
def debate_room(session: Session) -> Room:
    """3 chat messages (A at t1, B at t2, A at t3), 2 final captions (A at t4, B at t5), votes 3/1."""
    room = add_room(session, ended=T0 + timedelta(minutes=42))
    t = [T0 + timedelta(minutes=m) for m in (1, 2, 3, 4, 5)]
    session.add_all(
        [
            Message(room_id=room.id, user_id="u1", side=Side.SIDE_A, content="Commuting wastes hours every single week", timestamp=t[0]),
            Message(room_id=room.id, user_id="u2", side=Side.SIDE_B, content="Teams collaborate better in person", timestamp=t[1]),
            Message(room_id=room.id, user_id="u1", side=Side.SIDE_A, content="Remote teams report higher productivity", timestamp=t[2]),
            Caption(room_id=room.id, user_id="anchor-a", participant_side=Side.SIDE_A, content="Productivity studies favour remote setups", confidence=0.95, timestamp=t[3], is_final=True),
            Caption(room_id=room.id, user_id="anchor-b", participant_side=Side.SIDE_B, content="Mentoring junior staff suffers remotely", confidence=0.6, timestamp=t[4], is_final=True),
            Vote(room_id=room.id, user_id="v1", voted_side=Side.SIDE_A),
            Vote(room_id=room.id, user_id="v2", voted_side=Side.SIDE_A),
            Vote(room_id=room.id, user_id="v3", voted_side=Side.SIDE_A),
            Vote(room_id=room.id, user_id="v4", voted_side=Side.SIDE_B),
            Participant(room_id=room.id, user_id="anchor-a", role=ParticipantRole.ANCHOR, side=Side.SIDE_A),
            Participant(room_id=room.id, user_id="anchor-b", role=ParticipantRole.ANCHOR, side=Side.SIDE_B),
            Participant(room_id=room.id, user_id="u1", role=ParticipantRole.AUDIENCE),
        ]
    )
    session.commit()
    return room

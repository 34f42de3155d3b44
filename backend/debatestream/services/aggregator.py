from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional, Sequence

from sqlmodel import Session

from debatestream.errors import RoomNotFoundError
from debatestream.models.caption import Caption
from debatestream.models.common import Side, as_utc, utcnow
from debatestream.models.room import Message, Room, Vote
from debatestream.repositories.captions import CaptionsRepository
from debatestream.repositories.rooms import RoomsRepository

SourceKind = Literal["speech", "chat"]


@dataclass(frozen=True)
class AggregatedEntry:
    text: str
    side: Optional[Side]
    timestamp: datetime
    source_kind: SourceKind
    confidence: Optional[float] = None


@dataclass(frozen=True)
class VoteTally:
    side_a: int = 0
    side_b: int = 0

    @property
    def total(self) -> int:
        return self.side_a + self.side_b

    def percentages(self) -> tuple[float, float]:
        if self.total == 0:
            return 0.0, 0.0
        return (
            round(self.side_a / self.total * 100, 1),
            round(self.side_b / self.total * 100, 1),
        )

    def as_dict(self) -> dict[str, int]:
        return {"side_a": self.side_a, "side_b": self.side_b}


@dataclass
class AggregatedTranscript:
    room_id: str
    topic: str
    side_a_label: str
    side_b_label: str
    entries: List[AggregatedEntry]
    side_a: List[AggregatedEntry]
    side_b: List[AggregatedEntry]
    votes: VoteTally
    message_count: int
    caption_count: int
    duration_minutes: int
    participant_count: int = 0

    def label_for(self, side: Side) -> str:
        return self.side_a_label if side == Side.SIDE_A else self.side_b_label


def merge_entries(messages: Sequence[Message], captions: Sequence[Caption]) -> List[AggregatedEntry]:
    """Chronological merge. Equal timestamps keep messages ahead of captions."""
    tagged: List[AggregatedEntry] = [
        AggregatedEntry(text=m.content, side=m.side, timestamp=as_utc(m.timestamp), source_kind="chat")
        for m in messages
    ]
    tagged.extend(
        AggregatedEntry(
            text=c.content,
            side=c.participant_side,
            timestamp=as_utc(c.timestamp),
            source_kind="speech",
            confidence=c.confidence,
        )
        for c in captions
    )
    # sorted() is stable, so fetch order breaks ties
    return sorted(tagged, key=lambda e: e.timestamp)


def partition_by_side(entries: Sequence[AggregatedEntry], side: Side) -> List[AggregatedEntry]:
    return [e for e in entries if e.side == side]


def tally_votes(votes: Sequence[Vote]) -> VoteTally:
    a = sum(1 for v in votes if v.voted_side == Side.SIDE_A)
    b = sum(1 for v in votes if v.voted_side == Side.SIDE_B)
    return VoteTally(side_a=a, side_b=b)


def debate_duration_minutes(room: Room, now: Optional[datetime] = None) -> int:
    start = as_utc(room.started_at or room.created_at)
    end = as_utc(room.ended_at or now or utcnow())
    return round((end - start).total_seconds() / 60)


def aggregate_room(room_id: str, session: Session, now: Optional[datetime] = None) -> AggregatedTranscript:
    rooms = RoomsRepository(session)
    room = rooms.get(room_id)
    if room is None:
        raise RoomNotFoundError(room_id)

    messages = rooms.list_messages(room_id)
    captions = CaptionsRepository(session).list_final_by_room(room_id)
    votes = rooms.list_votes(room_id)

    entries = merge_entries(messages, captions)
    return AggregatedTranscript(
        room_id=room_id,
        topic=room.topic,
        side_a_label=room.side_a_label,
        side_b_label=room.side_b_label,
        entries=entries,
        side_a=partition_by_side(entries, Side.SIDE_A),
        side_b=partition_by_side(entries, Side.SIDE_B),
        votes=tally_votes(votes),
        message_count=len(messages),
        caption_count=len(captions),
        duration_minutes=debate_duration_minutes(room, now),
        participant_count=rooms.count_participants(room_id),
    )

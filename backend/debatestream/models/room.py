"""Tables owned by the room service; this backend only reads them."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from debatestream.models.common import ParticipantRole, Side, utcnow


class Room(SQLModel, table=True):
    __tablename__ = "rooms"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    topic: str
    side_a_label: str = Field(default="Side A")
    side_b_label: str = Field(default="Side B")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    ended_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class Message(SQLModel, table=True):
    __tablename__ = "messages"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: str = Field(index=True, foreign_key="rooms.id")
    user_id: Optional[str] = None
    side: Optional[Side] = None
    content: str
    timestamp: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime(timezone=True))


class Vote(SQLModel, table=True):
    __tablename__ = "votes"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: str = Field(index=True, foreign_key="rooms.id")
    user_id: str
    voted_side: Side


class Participant(SQLModel, table=True):
    __tablename__ = "participants"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: str = Field(index=True, foreign_key="rooms.id")
    user_id: str
    role: ParticipantRole = Field(default=ParticipantRole.AUDIENCE)
    side: Optional[Side] = None  # anchors only

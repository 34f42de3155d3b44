from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from debatestream.models.common import Side, utcnow


class Caption(SQLModel, table=True):
    __tablename__ = "captions"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: str = Field(index=True, foreign_key="rooms.id")
    user_id: str = Field(index=True)
    participant_side: Optional[Side] = None
    content: str
    confidence: float = Field(default=0.9)
    timestamp: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime(timezone=True))
    is_final: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

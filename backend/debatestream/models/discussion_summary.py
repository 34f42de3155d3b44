from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import Column, DateTime, JSON
from sqlmodel import SQLModel, Field

from debatestream.models.common import SummaryType, utcnow


class DiscussionSummary(SQLModel, table=True):
    __tablename__ = "discussion_summaries"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: str = Field(index=True, foreign_key="rooms.id")
    summary_type: SummaryType = Field(default=SummaryType.FINAL, index=True)
    content: str
    vote_results: Dict[str, int] = Field(default_factory=dict, sa_column=Column(JSON))
    key_points: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    side_a_arguments: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    side_b_arguments: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    total_messages: int = 0
    total_captions: int = 0
    debate_duration: int = 0  # minutes
    generated_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

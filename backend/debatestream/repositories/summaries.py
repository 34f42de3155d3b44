from __future__ import annotations

from typing import Optional
from sqlmodel import Session, select

from debatestream.models.common import SummaryType
from debatestream.models.discussion_summary import DiscussionSummary


class SummariesRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, summary: DiscussionSummary) -> DiscussionSummary:
        # Append-only: several final summaries may exist for one room
        self.session.add(summary)
        self.session.commit()
        self.session.refresh(summary)
        return summary

    def get_latest(self, room_id: str, summary_type: SummaryType = SummaryType.FINAL) -> Optional[DiscussionSummary]:
        statement = (
            select(DiscussionSummary)
            .where(DiscussionSummary.room_id == room_id, DiscussionSummary.summary_type == summary_type)
            .order_by(DiscussionSummary.generated_at.desc(), DiscussionSummary.id.desc())
        )
        return self.session.exec(statement).first()

    def list_by_room(self, room_id: str) -> list[DiscussionSummary]:
        statement = (
            select(DiscussionSummary)
            .where(DiscussionSummary.room_id == room_id)
            .order_by(DiscussionSummary.generated_at.asc())
        )
        return list(self.session.exec(statement))

from __future__ import annotations

from typing import Optional
from sqlmodel import Session, select

from debatestream.models.caption import Caption


class CaptionsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, caption: Caption) -> Caption:
        self.session.add(caption)
        self.session.commit()
        self.session.refresh(caption)
        return caption

    def list_final_by_room(self, room_id: str) -> list[Caption]:
        statement = (
            select(Caption)
            .where(Caption.room_id == room_id, Caption.is_final == True)  # noqa: E712
            .order_by(Caption.timestamp.asc(), Caption.id.asc())
        )
        return list(self.session.exec(statement))

    def list_recent_final(self, room_id: str, limit: int) -> list[Caption]:
        """Most recent ``limit`` final captions, returned oldest first."""
        statement = (
            select(Caption)
            .where(Caption.room_id == room_id, Caption.is_final == True)  # noqa: E712
            .order_by(Caption.timestamp.desc(), Caption.id.desc())
            .limit(limit)
        )
        rows = list(self.session.exec(statement))
        rows.reverse()
        return rows

    def get(self, caption_id: int) -> Optional[Caption]:
        return self.session.get(Caption, caption_id)

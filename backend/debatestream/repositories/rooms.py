from __future__ import annotations

from typing import Optional
from sqlmodel import Session, select

from debatestream.models.room import Message, Participant, Room, Vote


class RoomsRepository:
    """Read access to the room service's tables."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, room_id: str) -> Optional[Room]:
        return self.session.get(Room, room_id)

    def list_messages(self, room_id: str) -> list[Message]:
        statement = select(Message).where(Message.room_id == room_id).order_by(Message.timestamp.asc(), Message.id.asc())
        return list(self.session.exec(statement))

    def list_votes(self, room_id: str) -> list[Vote]:
        statement = select(Vote).where(Vote.room_id == room_id)
        return list(self.session.exec(statement))

    def count_participants(self, room_id: str) -> int:
        statement = select(Participant.id).where(Participant.room_id == room_id)
        return len(list(self.session.exec(statement)))

    def get_participant(self, room_id: str, user_id: str) -> Optional[Participant]:
        statement = select(Participant).where(Participant.room_id == room_id, Participant.user_id == user_id)
        return self.session.exec(statement).first()

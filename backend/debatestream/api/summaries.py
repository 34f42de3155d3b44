from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session
import logging

from debatestream.config import Settings
from debatestream.deps import get_session
from debatestream.errors import RoomNotFoundError
from debatestream.models.discussion_summary import DiscussionSummary
from debatestream.repositories.summaries import SummariesRepository
from debatestream.services.aggregator import aggregate_room
from debatestream.services.summarization_service import (
    GeminiClient,
    LlmConfig,
    TextGenerator,
    summarize_room,
)

logger = logging.getLogger("debatestream.api")


router = APIRouter(prefix="/rooms", tags=["summaries"])


def get_text_generator() -> TextGenerator:
    return GeminiClient(LlmConfig.from_settings(Settings()))


class AggregateResponse(BaseModel):
    room_id: str
    topic: str
    side_a_label: str
    side_b_label: str
    total_messages: int
    total_captions: int
    side_a_entries: int
    side_b_entries: int
    vote_results: Dict[str, int]
    vote_percentages: Dict[str, float]
    debate_duration: int
    participants: int


class SummarizeResponse(BaseModel):
    ok: bool
    content: str
    source: str
    saved: bool
    summary_id: Optional[int] = None


@router.get("/{room_id}/aggregate")
def aggregate_endpoint(room_id: str, session: Session = Depends(get_session)) -> AggregateResponse:
    try:
        t = aggregate_room(room_id, session)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail="Room not found")
    pa, pb = t.votes.percentages()
    return AggregateResponse(
        room_id=t.room_id,
        topic=t.topic,
        side_a_label=t.side_a_label,
        side_b_label=t.side_b_label,
        total_messages=t.message_count,
        total_captions=t.caption_count,
        side_a_entries=len(t.side_a),
        side_b_entries=len(t.side_b),
        vote_results=t.votes.as_dict(),
        vote_percentages={"side_a": pa, "side_b": pb},
        debate_duration=t.duration_minutes,
        participants=t.participant_count,
    )


@router.post("/{room_id}/summarize")
def summarize_endpoint(
    room_id: str,
    session: Session = Depends(get_session),
    generator: TextGenerator = Depends(get_text_generator),
) -> SummarizeResponse:
    try:
        result = summarize_room(room_id, session, generator=generator)
    except RoomNotFoundError:
        raise HTTPException(status_code=404, detail="Room not found")
    return SummarizeResponse(
        ok=True,
        content=result.content,
        source=result.source,
        saved=result.saved,
        summary_id=result.summary.id if result.summary is not None else None,
    )


@router.get("/{room_id}/summaries/latest")
def latest_summary(room_id: str, session: Session = Depends(get_session)) -> DiscussionSummary:
    summary = SummariesRepository(session).get_latest(room_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="No summary for this room")
    return summary


@router.get("/{room_id}/summaries")
def list_summaries(room_id: str, session: Session = Depends(get_session)) -> Dict[str, Any]:
    return {"summaries": SummariesRepository(session).list_by_room(room_id)}

from __future__ import annotations

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool
import logging

from debatestream.deps import get_session
from debatestream.models.caption import Caption
from debatestream.models.common import Side
from debatestream.repositories.captions import CaptionsRepository
from debatestream.services.caption_persister import CaptionPersister, CaptionRequest, get_caption_persister
from debatestream.services.caption_stream import CaptionStreamReader, get_caption_reader

logger = logging.getLogger("debatestream.api")


router = APIRouter(prefix="/rooms", tags=["captions"])

STREAM_POLL_INTERVAL_SEC = 0.1


class CaptionIn(BaseModel):
    speaker_id: str
    side: Optional[Side] = None
    text: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    is_final: bool = True


class CaptionAccepted(BaseModel):
    queued: bool


@router.post("/{room_id}/captions", status_code=202)
def ingest_caption(
    room_id: str,
    body: CaptionIn,
    persister: CaptionPersister = Depends(get_caption_persister),
) -> CaptionAccepted:
    # Interim text is preview only
    if not body.is_final:
        return CaptionAccepted(queued=False)
    if not body.text.strip():
        raise HTTPException(status_code=422, detail="Caption text is empty")
    if body.side is None:
        raise HTTPException(status_code=422, detail="Caption side not determined")

    persister.submit(
        CaptionRequest(
            room_id=room_id,
            speaker_id=body.speaker_id,
            side=body.side,
            text=body.text,
            confidence=body.confidence,
        )
    )
    return CaptionAccepted(queued=True)


@router.get("/{room_id}/captions")
def list_captions(room_id: str, limit: Optional[int] = None, session: Session = Depends(get_session)) -> List[Caption]:
    repo = CaptionsRepository(session)
    if limit is not None and limit > 0:
        return repo.list_recent_final(room_id, limit)
    return repo.list_final_by_room(room_id)


@router.websocket("/{room_id}/captions/stream")
async def stream_captions(
    websocket: WebSocket,
    room_id: str,
    reader: CaptionStreamReader = Depends(get_caption_reader),
) -> None:
    await websocket.accept()
    stream = await run_in_threadpool(reader.subscribe, room_id)

    async def _watch_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            stream.close()

    watcher = asyncio.create_task(_watch_disconnect())
    try:
        with stream:
            # Poll without blocking so open streams never hold a worker thread
            while not stream.closed:
                for caption in stream.available():
                    await websocket.send_json(jsonable_encoder(caption))
                await asyncio.sleep(STREAM_POLL_INTERVAL_SEC)
    except WebSocketDisconnect:
        pass
    finally:
        watcher.cancel()
        logger.info("Caption stream for room %s closed", room_id)

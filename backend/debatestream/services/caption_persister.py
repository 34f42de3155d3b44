from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from debatestream.config import Settings
from debatestream.deps import SessionFactory, new_session
from debatestream.models.caption import Caption
from debatestream.models.common import Side
from debatestream.repositories.captions import CaptionsRepository
from debatestream.services.caption_stream import get_caption_feed
from debatestream.services.change_feed import ChangeFeed

logger = logging.getLogger("debatestream.captions")


@dataclass(frozen=True)
class CaptionRequest:
    room_id: str
    speaker_id: str
    side: Optional[Side]
    text: str
    confidence: Optional[float] = None


def clamp_confidence(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if v != v:  # NaN
        return default
    return max(0.0, min(1.0, v))


class CaptionPersister:
    """Writes finalized captions; at most once, dropped on failure.

    ``submit`` never blocks the caller. Each write runs in its own session so
    one failure cannot poison the next.
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        feed: Optional[ChangeFeed[Caption]] = None,
        executor: Optional[Executor] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._session_factory = session_factory or new_session
        self._feed = feed
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(1, self._settings.caption_writer_threads),
            thread_name_prefix="caption-writer",
        )

    def submit(self, request: CaptionRequest) -> Future:
        return self._executor.submit(self.persist, request)

    def persist(self, request: CaptionRequest) -> Optional[Caption]:
        text = (request.text or "").strip()
        if not text:
            logger.debug("Dropping empty caption for %s/%s", request.room_id, request.speaker_id)
            return None
        try:
            side = Side(request.side) if request.side is not None else None
        except ValueError:
            side = None
        if side is None:
            logger.warning(
                "Dropping caption without side for %s/%s", request.room_id, request.speaker_id
            )
            return None

        caption = Caption(
            room_id=request.room_id,
            user_id=request.speaker_id,
            participant_side=side,
            content=text,
            confidence=clamp_confidence(request.confidence, self._settings.default_confidence),
            is_final=True,
        )
        try:
            with self._session_factory() as session:
                saved = CaptionsRepository(session).create(caption)
                session.expunge(saved)
        except Exception:
            logger.exception("Failed to save caption for %s side in room %s", side.value, request.room_id)
            return None

        logger.info("Caption saved for %s side in room %s", side.value, request.room_id)
        if self._feed is not None:
            self._feed.publish(saved.room_id, saved)
        return saved

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


_persister: Optional[CaptionPersister] = None


def get_caption_persister() -> CaptionPersister:
    """Get or create the process-wide persister, publishing on the caption feed."""
    global _persister
    if _persister is None:
        _persister = CaptionPersister(feed=get_caption_feed())
    return _persister

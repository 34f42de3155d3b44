from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from debatestream.models.caption import Caption
from debatestream.models.common import as_utc
from debatestream.repositories.captions import CaptionsRepository
from debatestream.deps import SessionFactory, new_session
from debatestream.services.change_feed import ChangeFeed, OrderedEventSource, OrderedStream

logger = logging.getLogger("debatestream.captions")


_caption_feed: ChangeFeed[Caption] = ChangeFeed()


def get_caption_feed() -> ChangeFeed[Caption]:
    return _caption_feed


class CaptionStreamReader:
    """Live, ordered view of a room's final captions.

    ``subscribe`` returns an OrderedStream: existing captions by timestamp,
    then inserts in arrival order. Subscribe again to restart from the store.
    """

    def __init__(
        self,
        feed: Optional[ChangeFeed[Caption]] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._source: OrderedEventSource[Caption] = OrderedEventSource(
            feed or get_caption_feed(), key=lambda c: c.id
        )
        self._session_factory = session_factory or new_session

    def _fetch(self, room_id: str) -> List[Caption]:
        try:
            with self._session_factory() as session:
                rows = CaptionsRepository(session).list_final_by_room(room_id)
                for row in rows:
                    session.expunge(row)
                return rows
        except Exception:
            # Live delivery still works without the backlog
            logger.exception("Failed to fetch captions for room %s", room_id)
            return []

    def subscribe(self, room_id: str) -> OrderedStream[Caption]:
        return self._source.subscribe(room_id, lambda: self._fetch(room_id))


def most_recent(captions: Sequence[Caption], limit: int) -> List[Caption]:
    """Display window: the last ``limit`` captions, oldest first."""
    if limit <= 0:
        return []
    ordered = sorted(captions, key=lambda c: (as_utc(c.timestamp), c.id or 0))
    return ordered[-limit:]


def get_caption_reader() -> CaptionStreamReader:
    return CaptionStreamReader()

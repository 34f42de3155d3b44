"""In-process insert notifications and the fetch-then-live ordered event source."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Dict, Generic, Hashable, Iterable, Iterator, List, Optional, Set, TypeVar

logger = logging.getLogger("debatestream.feed")

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """One listener's queue on a channel. Created by ChangeFeed.subscribe."""

    def __init__(self, feed: "ChangeFeed[T]", channel: str) -> None:
        self._feed = feed
        self.channel = channel
        self._queue: "queue.Queue[object]" = queue.Queue()
        self.closed = False

    def _push(self, item: object) -> None:
        self._queue.put_nowait(item)

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Next event, or None on timeout or after close."""
        if self.closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def drain(self) -> List[T]:
        items: List[T] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is _CLOSED:
                return items
            items.append(item)  # type: ignore[arg-type]

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        self._queue.put_nowait(_CLOSED)


class ChangeFeed(Generic[T]):
    """Per-channel publish/subscribe. Channels are room ids."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: Dict[str, List[Subscription[T]]] = {}

    def subscribe(self, channel: str) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, channel)
        with self._lock:
            self._subs.setdefault(channel, []).append(sub)
        return sub

    def publish(self, channel: str, item: T) -> int:
        with self._lock:
            targets = list(self._subs.get(channel, ()))
        for sub in targets:
            sub._push(item)
        return len(targets)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subs.get(channel, ()))

    def _remove(self, sub: Subscription[T]) -> None:
        with self._lock:
            subs = self._subs.get(sub.channel)
            if not subs:
                return
            try:
                subs.remove(sub)
            except ValueError:
                pass
            if not subs:
                del self._subs[sub.channel]


class OrderedStream(Generic[T]):
    """Initial snapshot first, then live events in arrival order.

    Use as a context manager; leaving the block releases the feed subscription.
    Iteration blocks for live events and ends once the stream is closed.
    """

    def __init__(
        self,
        subscription: Subscription[T],
        initial_fetch: Callable[[], Iterable[T]],
        key: Callable[[T], Hashable],
    ) -> None:
        self._sub = subscription
        self._initial_fetch = initial_fetch
        self._key = key
        self._pending: List[T] = []
        # Snapshot keys whose live duplicate has not arrived yet. Live events
        # are published once per subscriber, so only these can repeat.
        self._unmatched: Set[Hashable] = set()
        self._fetched = False

    def _ensure_fetched(self) -> None:
        if self._fetched:
            return
        self._fetched = True
        for item in self._initial_fetch():
            self._unmatched.add(self._key(item))
            self._pending.append(item)

    def _accept(self, item: T) -> bool:
        k = self._key(item)
        if k in self._unmatched:
            self._unmatched.discard(k)
            return False
        return True

    def next(self, timeout: Optional[float] = None) -> Optional[T]:
        self._ensure_fetched()
        if self._pending:
            return self._pending.pop(0)
        while True:
            item = self._sub.get(timeout=timeout)
            if item is None:
                return None
            if self._accept(item):
                return item

    def available(self) -> List[T]:
        """Everything deliverable right now, without blocking."""
        self._ensure_fetched()
        out = self._pending
        self._pending = []
        out.extend(item for item in self._sub.drain() if self._accept(item))
        return out

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.next()
            if item is None:
                return
            yield item

    @property
    def closed(self) -> bool:
        return self._sub.closed

    def close(self) -> None:
        self._sub.close()

    def __enter__(self) -> "OrderedStream[T]":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class OrderedEventSource(Generic[T]):
    def __init__(self, feed: ChangeFeed[T], key: Callable[[T], Hashable]) -> None:
        self._feed = feed
        self._key = key

    def subscribe(self, channel: str, initial_fetch: Callable[[], Iterable[T]]) -> OrderedStream[T]:
        # Listen before fetching so inserts racing the fetch are not lost;
        # duplicates are dropped by key.
        sub = self._feed.subscribe(channel)
        stream = OrderedStream(sub, initial_fetch, self._key)
        try:
            stream._ensure_fetched()
        except Exception:
            sub.close()
            raise
        logger.debug("Subscribed to %s (%d initial)", channel, len(stream._pending))
        return stream

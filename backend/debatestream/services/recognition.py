"""Continuous speech recognition supervision, one session per speaking participant.

The host recognizer (browser Web Speech API, a desktop engine, ...) drives a
RecognitionSession by calling ``on_start``, ``on_result``, ``on_end`` and
``on_error``. The session owns the state machine, the bounded auto-restart
timer and the hand-off of finalized text to the caption persister.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from sqlmodel import Session

from debatestream.config import Settings
from debatestream.errors import ErrorClass, classify_recognizer_error, describe_recognizer_error
from debatestream.models.common import ParticipantRole, Side
from debatestream.repositories.rooms import RoomsRepository
from debatestream.services.caption_persister import (
    CaptionPersister,
    CaptionRequest,
    clamp_confidence,
    get_caption_persister,
)

logger = logging.getLogger("debatestream.recognition")


class RecognitionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    ERRORED_RECOVERABLE = "errored_recoverable"
    ERRORED_FATAL = "errored_fatal"
    STOPPED = "stopped"


@dataclass
class RecognitionResult:
    transcript: str
    is_final: bool
    confidence: Optional[float] = None


class HostRecognizer(Protocol):
    continuous: bool
    interim_results: bool
    lang: str

    def start(self) -> None: ...

    def stop(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass(frozen=True)
class SpeakerContext:
    room_id: str
    speaker_id: str
    role: ParticipantRole
    side: Optional[Side] = None

    @property
    def can_caption(self) -> bool:
        return self.role == ParticipantRole.ANCHOR and self.side is not None


def load_speaker(session: Session, room_id: str, user_id: str) -> SpeakerContext:
    """Speaker context from the room's participant record; unknown users are audience."""
    participant = RoomsRepository(session).get_participant(room_id, user_id)
    if participant is None:
        return SpeakerContext(room_id=room_id, speaker_id=user_id, role=ParticipantRole.AUDIENCE)
    return SpeakerContext(room_id=room_id, speaker_id=user_id, role=participant.role, side=participant.side)


CaptionSink = Callable[[CaptionRequest], object]
StatusListener = Callable[["RecognitionSession", RecognitionState], None]


class RecognitionSession:
    def __init__(
        self,
        speaker: SpeakerContext,
        recognizer: Optional[HostRecognizer],
        on_caption: CaptionSink,
        *,
        settings: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
        auto_start: bool = True,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        self.speaker = speaker
        self.settings = settings or Settings()
        self.auto_start = auto_start
        self._recognizer = recognizer
        self._on_caption = on_caption
        self._on_status = on_status
        self._scheduler: Scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.RLock()
        self._timer: Optional[TimerHandle] = None
        # Bumped whenever the pending timer changes; a callback with an older token is stale
        self._timer_token = 0
        self._side: Optional[Side] = None

        self.state = RecognitionState.IDLE
        self.attempt_count = 0
        self.last_restart_delay: Optional[float] = None
        self.buffered_final_text = ""
        self.interim_text = ""
        self.error: Optional[str] = None

        if recognizer is None:
            self.error = "Speech recognition not supported on this host"
            logger.error("%s (speaker %s)", self.error, speaker.speaker_id)
            self._set_state(RecognitionState.ERRORED_FATAL)
            return

        recognizer.continuous = True
        recognizer.interim_results = True
        recognizer.lang = self.settings.recognizer_locale

    @property
    def supported(self) -> bool:
        return self._recognizer is not None

    @property
    def side(self) -> Optional[Side]:
        return self._side

    @property
    def restart_pending(self) -> bool:
        return self._timer is not None

    @property
    def transcript(self) -> str:
        """Finalized text plus the live interim tail, for preview only."""
        return self.buffered_final_text + self.interim_text

    def attach(self) -> bool:
        """Start automatically for anchors with a side; no-op otherwise."""
        if not (self.auto_start and self.speaker.can_caption and self.supported):
            return False
        logger.info("Auto-starting captions for %s anchor %s", self.speaker.side.value, self.speaker.speaker_id)
        return self.start()

    def start(self) -> bool:
        with self._lock:
            if self._recognizer is None:
                return False
            if self.speaker.side is None:
                self.error = "Cannot start recording: participant side not determined"
                logger.warning("%s (speaker %s)", self.error, self.speaker.speaker_id)
                return False

            try:
                self._recognizer.start()
            except Exception:
                # A pending restart and its attempt count stay as they were
                self.error = "Failed to start speech recognition"
                logger.exception("Failed to start speech recognition for %s", self.speaker.speaker_id)
                return False
            self._cancel_timer()
            self.attempt_count = 0
            self.buffered_final_text = ""
            self.interim_text = ""
            self.error = None
            self._side = self.speaker.side
            self._set_state(RecognitionState.LISTENING)
            logger.info("Starting speech recognition for %s side", self._side.value)
            return True

    def stop(self) -> None:
        with self._lock:
            self._cancel_timer()
            was_listening = self.state == RecognitionState.LISTENING
            self._set_state(RecognitionState.STOPPED)
            if was_listening and self._recognizer is not None:
                try:
                    self._recognizer.stop()
                except Exception:
                    logger.exception("Recognizer stop failed for %s", self.speaker.speaker_id)
            logger.info("Manually stopped speech recognition for %s", self.speaker.speaker_id)

    def clear_transcript(self) -> None:
        with self._lock:
            self.buffered_final_text = ""
            self.interim_text = ""

    # Host events

    def on_start(self) -> None:
        with self._lock:
            if self.state in (RecognitionState.IDLE, RecognitionState.ERRORED_RECOVERABLE):
                self._set_state(RecognitionState.LISTENING)
            if self.state == RecognitionState.LISTENING:
                self.error = None

    def on_end(self) -> None:
        with self._lock:
            if self.state in (RecognitionState.STOPPED, RecognitionState.ERRORED_FATAL):
                return
            if self.state == RecognitionState.ERRORED_RECOVERABLE and self._timer is not None:
                # The error that preceded this end already scheduled the restart
                return
            if self.auto_start and self.speaker.can_caption:
                self._set_state(RecognitionState.ERRORED_RECOVERABLE)
                self._schedule_restart()
            else:
                self._set_state(RecognitionState.IDLE)

    def on_error(self, code: str) -> None:
        with self._lock:
            if self.state in (RecognitionState.STOPPED, RecognitionState.ERRORED_FATAL):
                return
            kind = classify_recognizer_error(code)
            self.error = describe_recognizer_error(code)
            if kind in (ErrorClass.PERMISSION_DENIED, ErrorClass.FATAL, ErrorClass.UNSUPPORTED):
                logger.error("Speech recognition error %r for %s; not restarting", code, self.speaker.speaker_id)
                self._cancel_timer()
                self._set_state(RecognitionState.ERRORED_FATAL)
                return
            logger.warning("Speech recognition error %r for %s", code, self.speaker.speaker_id)
            self._set_state(RecognitionState.ERRORED_RECOVERABLE)
            if self.auto_start and self.speaker.can_caption:
                self._schedule_restart()

    def on_result(self, result_index: int, results: Sequence[RecognitionResult]) -> Optional[CaptionRequest]:
        final_text = ""
        interim_text = ""
        for res in results[max(0, result_index):]:
            if res.is_final:
                final_text += res.transcript
            else:
                interim_text += res.transcript

        request: Optional[CaptionRequest] = None
        with self._lock:
            self.interim_text = interim_text
            if final_text.strip() and self._side is not None:
                self.buffered_final_text += final_text
                reported = results[result_index].confidence if 0 <= result_index < len(results) else None
                request = CaptionRequest(
                    room_id=self.speaker.room_id,
                    speaker_id=self.speaker.speaker_id,
                    side=self._side,
                    text=final_text.strip(),
                    confidence=clamp_confidence(reported, self.settings.default_confidence),
                )

        if request is not None:
            try:
                self._on_caption(request)
            except Exception:
                logger.exception("Caption hand-off failed for %s", self.speaker.speaker_id)
        return request

    # Restart scheduling

    def _schedule_restart(self) -> None:
        if self.attempt_count >= self.settings.max_restart_attempts:
            self._cancel_timer()
            self.error = (
                f"Automatic captions stopped after {self.attempt_count} restart attempts"
            )
            logger.error("%s (speaker %s)", self.error, self.speaker.speaker_id)
            self._set_state(RecognitionState.ERRORED_FATAL)
            return
        delay = self.settings.restart_base_delay_sec + self.settings.restart_delay_step_sec * self.attempt_count
        self.attempt_count += 1
        self.last_restart_delay = delay
        self._cancel_timer()
        token = self._timer_token
        self._timer = self._scheduler.call_later(delay, lambda: self._restart_due(token))
        logger.info(
            "Auto-restarting captions for %s (attempt %d) in %.1fs",
            self.speaker.speaker_id, self.attempt_count, delay,
        )

    def _restart_due(self, token: int) -> None:
        with self._lock:
            if token != self._timer_token:
                # fired after being cancelled or replaced
                return
            self._timer = None
            self._timer_token += 1
            if self.state != RecognitionState.ERRORED_RECOVERABLE or self._recognizer is None:
                return
            try:
                self._recognizer.start()
            except Exception:
                logger.warning("Auto-restart failed for %s", self.speaker.speaker_id, exc_info=True)
                self._schedule_restart()
                return
            self._set_state(RecognitionState.LISTENING)

    def _cancel_timer(self) -> None:
        self._timer_token += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_state(self, new_state: RecognitionState) -> None:
        if self.state == new_state:
            return
        self.state = new_state
        if self._on_status is not None:
            try:
                self._on_status(self, new_state)
            except Exception:
                logger.exception("Status listener failed")


class RecognitionRegistry:
    """At most one live session per (room, speaker).

    Sessions opened without an explicit sink hand their captions to the
    persister (the process-wide one unless another is given).
    """

    def __init__(self, persister: Optional[CaptionPersister] = None) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[Tuple[str, str], RecognitionSession] = {}
        self._persister = persister

    def _default_sink(self) -> CaptionSink:
        if self._persister is None:
            self._persister = get_caption_persister()
        return self._persister.submit

    def open(
        self,
        speaker: SpeakerContext,
        recognizer: Optional[HostRecognizer],
        on_caption: Optional[CaptionSink] = None,
        **kwargs,
    ) -> RecognitionSession:
        key = (speaker.room_id, speaker.speaker_id)
        sink = on_caption or self._default_sink()
        with self._lock:
            previous = self._sessions.pop(key, None)
            session = RecognitionSession(speaker, recognizer, sink, **kwargs)
            self._sessions[key] = session
        if previous is not None:
            previous.stop()
        session.attach()
        return session

    def get(self, room_id: str, speaker_id: str) -> Optional[RecognitionSession]:
        with self._lock:
            return self._sessions.get((room_id, speaker_id))

    def close(self, room_id: str, speaker_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop((room_id, speaker_id), None)
        if session is None:
            return False
        session.stop()
        return True

    def sessions_for_room(self, room_id: str) -> List[RecognitionSession]:
        with self._lock:
            return [s for (rid, _), s in self._sessions.items() if rid == room_id]

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.stop()

    def open_for_participant(
        self,
        session: Session,
        room_id: str,
        user_id: str,
        recognizer: Optional[HostRecognizer],
        **kwargs,
    ) -> RecognitionSession:
        return self.open(load_speaker(session, room_id, user_id), recognizer, **kwargs)


_registry: Optional[RecognitionRegistry] = None


def get_recognition_registry() -> RecognitionRegistry:
    """Get or create the process-wide registry, writing through the caption persister."""
    global _registry
    if _registry is None:
        _registry = RecognitionRegistry(get_caption_persister())
    return _registry

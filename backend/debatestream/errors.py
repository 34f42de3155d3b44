"""Error taxonomy shared by the recognition, caption and summary services."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorClass(str, Enum):
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT = "transient"
    FATAL = "fatal"


# Host recognizer error codes (Web Speech API naming)
_PERMISSION_CODES = {"not-allowed", "service-not-allowed"}
_FATAL_CODES = {"audio-capture", "language-not-supported", "bad-grammar"}


def classify_recognizer_error(code: str) -> ErrorClass:
    """Map a host error code to its class. no-speech, network, aborted and unknown codes are retried."""
    c = (code or "").strip().lower()
    if c in _PERMISSION_CODES:
        return ErrorClass.PERMISSION_DENIED
    if c in _FATAL_CODES:
        return ErrorClass.FATAL
    return ErrorClass.TRANSIENT


def describe_recognizer_error(code: str) -> str:
    c = (code or "").strip().lower()
    if c in _PERMISSION_CODES:
        return "Microphone access denied. Please allow microphone access for automatic captions."
    if c == "no-speech":
        return "No speech detected, will auto-restart."
    if c == "network":
        return "Network error. Captions will retry automatically."
    return f"Speech recognition error: {code}"


class RoomNotFoundError(LookupError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id


class SynthesisError(RuntimeError):
    """The generative service produced no usable summary."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class SynthesisCancelled(RuntimeError):
    pass

from __future__ import annotations

from typing import List

import pytest

from debatestream.config import Settings
from debatestream.models.common import ParticipantRole, Side
from debatestream.repositories.captions import CaptionsRepository
from debatestream.services.caption_persister import CaptionPersister, CaptionRequest
from debatestream.services.change_feed import ChangeFeed
from debatestream.services.recognition import (
    RecognitionRegistry,
    RecognitionResult,
    RecognitionSession,
    RecognitionState,
    SpeakerContext,
    load_speaker,
)

from conftest import FakeRecognizer, FakeScheduler, InlineExecutor

ANCHOR_A = SpeakerContext(room_id="room-1", speaker_id="anchor-a", role=ParticipantRole.ANCHOR, side=Side.SIDE_A)


def _session(recognizer, scheduler, settings=None, speaker=ANCHOR_A, sink=None, **kwargs) -> RecognitionSession:
    requests: List[CaptionRequest] = []
    session = RecognitionSession(
        speaker,
        recognizer,
        sink if sink is not None else requests.append,
        settings=settings or Settings(),
        scheduler=scheduler,
        **kwargs,
    )
    session.requests = requests  # type: ignore[attr-defined]
    return session


def test_attach_auto_starts_anchor_with_side(recognizer: FakeRecognizer, scheduler: FakeScheduler) -> None:
    session = _session(recognizer, scheduler)
    assert session.attach() is True
    assert session.state == RecognitionState.LISTENING
    assert recognizer.starts == 1
    assert recognizer.continuous is True
    assert recognizer.interim_results is True
    assert recognizer.lang == "en-US"


@pytest.mark.parametrize(
    "speaker",
    [
        SpeakerContext(room_id="room-1", speaker_id="viewer", role=ParticipantRole.AUDIENCE),
        SpeakerContext(room_id="room-1", speaker_id="anchor-x", role=ParticipantRole.ANCHOR, side=None),
    ],
)
def test_attach_skips_speakers_without_speaking_role_or_side(recognizer, scheduler, speaker) -> None:
    session = _session(recognizer, scheduler, speaker=speaker)
    assert session.attach() is False
    assert session.state == RecognitionState.IDLE
    assert recognizer.starts == 0


def test_explicit_start_without_side_reports_error(recognizer, scheduler) -> None:
    speaker = SpeakerContext(room_id="room-1", speaker_id="anchor-x", role=ParticipantRole.ANCHOR, side=None)
    session = _session(recognizer, scheduler, speaker=speaker)
    assert session.start() is False
    assert "side not determined" in (session.error or "")
    assert session.state == RecognitionState.IDLE


def test_missing_recognizer_is_fatal_and_reported_once(scheduler) -> None:
    seen: List[RecognitionState] = []
    session = _session(None, scheduler, on_status=lambda s, state: seen.append(state))
    assert session.state == RecognitionState.ERRORED_FATAL
    assert session.supported is False
    assert session.attach() is False
    assert session.start() is False
    session.on_end()
    assert seen == [RecognitionState.ERRORED_FATAL]
    assert scheduler.timers == []


def test_permission_denied_goes_fatal_without_restart(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_error("not-allowed")
    session.on_end()
    assert session.state == RecognitionState.ERRORED_FATAL
    assert scheduler.timers == []
    assert session.attempt_count == 0
    assert "Microphone access denied" in (session.error or "")


def test_five_no_speech_errors_schedule_increasing_delays(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    for _ in range(5):
        session.on_error("no-speech")
        session.on_end()
        assert session.state == RecognitionState.ERRORED_RECOVERABLE
        scheduler.fire()
        assert session.state == RecognitionState.LISTENING

    assert len(scheduler.timers) == 5
    delays = scheduler.delays
    assert delays == [1.0, 1.5, 2.0, 2.5, 3.0]
    assert all(a < b for a, b in zip(delays, delays[1:]))
    assert session.attempt_count == 5
    assert recognizer.starts == 6


def test_unsolicited_end_counts_up_then_cap_is_fatal(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler, settings=Settings(max_restart_attempts=3))
    session.attach()
    counts = []
    for _ in range(3):
        session.on_end()
        counts.append(session.attempt_count)
        scheduler.fire()
    assert counts == [1, 2, 3]

    session.on_end()
    assert session.state == RecognitionState.ERRORED_FATAL
    assert len(scheduler.timers) == 3
    assert scheduler.pending == []
    assert "restart attempts" in (session.error or "")


def test_end_without_auto_start_returns_to_idle(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler, auto_start=False)
    session.start()
    session.on_end()
    assert session.state == RecognitionState.IDLE
    assert scheduler.timers == []


def test_explicit_start_resets_attempts_and_cancels_pending_timer(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_end()
    scheduler.fire()
    session.on_end()
    assert session.attempt_count == 2
    pending = scheduler.pending[0]

    assert session.start() is True
    assert pending.cancelled is True
    assert session.attempt_count == 0
    assert session.restart_pending is False


def test_stop_cancels_restart_and_never_restarts(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_end()
    timer = scheduler.pending[0]

    session.stop()
    assert timer.cancelled is True
    assert session.state == RecognitionState.STOPPED

    # a late timer callback or end event must not bring it back
    timer.callback()
    session.on_end()
    session.on_error("network")
    assert session.state == RecognitionState.STOPPED
    assert recognizer.starts == 1
    assert len(scheduler.timers) == 1


def test_only_one_timer_pending_when_error_and_end_interleave(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_error("network")
    session.on_error("network")
    session.on_end()
    assert len(scheduler.pending) == 1
    assert scheduler.timers[0].cancelled is True


def test_failed_restart_is_rescheduled(scheduler) -> None:
    recognizer = FakeRecognizer()
    session = _session(recognizer, scheduler)
    session.attach()
    recognizer.fail_starts = 1
    session.on_end()
    scheduler.fire()
    assert session.state == RecognitionState.ERRORED_RECOVERABLE
    assert session.attempt_count == 2
    scheduler.fire()
    assert session.state == RecognitionState.LISTENING


def test_final_result_emits_one_attributed_request(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    results = [
        RecognitionResult("Remote work saves time. ", is_final=True, confidence=0.93),
        RecognitionResult("and money", is_final=False, confidence=0.4),
    ]
    request = session.on_result(0, results)

    assert session.requests == [request]  # type: ignore[attr-defined]
    assert request is not None
    assert request.side == Side.SIDE_A
    assert request.text == "Remote work saves time."
    assert request.confidence == pytest.approx(0.93)
    assert session.interim_text == "and money"
    assert session.transcript == "Remote work saves time. and money"
    assert "and money" not in session.buffered_final_text


def test_result_index_skips_already_delivered_results(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    first = RecognitionResult("First point.", is_final=True, confidence=0.9)
    second = RecognitionResult(" Second point.", is_final=True, confidence=None)
    session.on_result(0, [first])
    request = session.on_result(1, [first, second])
    assert request is not None
    assert request.text == "Second point."
    assert request.confidence == 0.9  # host omitted it
    assert session.buffered_final_text == "First point. Second point."


@pytest.mark.parametrize(
    "results",
    [
        [RecognitionResult("thinking out loud", is_final=False, confidence=0.5)],
        [RecognitionResult("   ", is_final=True, confidence=0.9)],
    ],
)
def test_interim_or_blank_results_emit_nothing(recognizer, scheduler, results) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    assert session.on_result(0, results) is None
    assert session.requests == []  # type: ignore[attr-defined]


def test_confidence_is_clamped_into_unit_interval(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    request = session.on_result(0, [RecognitionResult("Loud and clear", is_final=True, confidence=1.7)])
    assert request is not None and request.confidence == 1.0


def test_sink_failure_does_not_break_session(recognizer, scheduler) -> None:
    def broken_sink(request: CaptionRequest) -> None:
        raise RuntimeError("queue full")

    session = _session(recognizer, scheduler, sink=broken_sink)
    session.attach()
    session.on_result(0, [RecognitionResult("Point one", is_final=True, confidence=0.9)])
    session.on_result(1, [RecognitionResult("Point one", True, 0.9), RecognitionResult(" Point two", True, 0.9)])
    assert session.state == RecognitionState.LISTENING
    assert session.buffered_final_text == "Point one Point two"


def test_clear_transcript_empties_buffers(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_result(0, [RecognitionResult("Kept", True, 0.9), RecognitionResult(" maybe", False, 0.3)])
    session.clear_transcript()
    assert session.transcript == ""


def test_registry_keeps_one_session_per_speaker(scheduler) -> None:
    registry = RecognitionRegistry()
    first_rec, second_rec = FakeRecognizer(), FakeRecognizer()
    first = registry.open(ANCHOR_A, first_rec, lambda r: None, scheduler=scheduler)
    second = registry.open(ANCHOR_A, second_rec, lambda r: None, scheduler=scheduler)

    assert first.state == RecognitionState.STOPPED
    assert second.state == RecognitionState.LISTENING
    assert registry.get("room-1", "anchor-a") is second
    assert registry.sessions_for_room("room-1") == [second]
    assert registry.close("room-1", "anchor-a") is True
    assert registry.get("room-1", "anchor-a") is None


def test_load_speaker_reads_participant_role_and_side(session, debate_room) -> None:
    anchor = load_speaker(session, debate_room.id, "anchor-b")
    assert (anchor.role, anchor.side, anchor.can_caption) == (ParticipantRole.ANCHOR, Side.SIDE_B, True)

    viewer = load_speaker(session, debate_room.id, "u1")
    assert viewer.can_caption is False

    stranger = load_speaker(session, debate_room.id, "nobody")
    assert (stranger.role, stranger.side) == (ParticipantRole.AUDIENCE, None)


def test_stale_timer_callback_leaves_single_pending_restart(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_end()
    replaced = scheduler.timers[0]
    session.on_error("network")
    assert replaced.cancelled is True

    # a threading.Timer that already fired still runs after cancel()
    replaced.callback()
    session.on_error("network")

    assert len(scheduler.pending) == 1
    assert session.restart_pending is True
    assert recognizer.starts == 1
    assert session.state == RecognitionState.ERRORED_RECOVERABLE


def test_failed_explicit_start_keeps_attempts_and_pending_restart(recognizer, scheduler) -> None:
    session = _session(recognizer, scheduler)
    session.attach()
    session.on_end()
    assert session.attempt_count == 1

    recognizer.fail_starts = 1
    assert session.start() is False
    assert session.attempt_count == 1
    assert session.restart_pending is True
    assert scheduler.pending[0].cancelled is False

    scheduler.fire()
    assert session.state == RecognitionState.LISTENING


def test_registry_close_all_stops_every_session(scheduler) -> None:
    registry = RecognitionRegistry()
    anchor_b = SpeakerContext(room_id="room-1", speaker_id="anchor-b", role=ParticipantRole.ANCHOR, side=Side.SIDE_B)
    sessions = [
        registry.open(ANCHOR_A, FakeRecognizer(), lambda r: None, scheduler=scheduler),
        registry.open(anchor_b, FakeRecognizer(), lambda r: None, scheduler=scheduler),
    ]
    registry.close_all()
    assert [s.state for s in sessions] == [RecognitionState.STOPPED, RecognitionState.STOPPED]
    assert registry.sessions_for_room("room-1") == []


def test_registry_session_stores_only_final_text(session, debate_room, session_factory, scheduler) -> None:
    persister = CaptionPersister(session_factory, feed=ChangeFeed(), executor=InlineExecutor(), settings=Settings())
    registry = RecognitionRegistry(persister)
    live = registry.open_for_participant(session, debate_room.id, "anchor-b", FakeRecognizer(), scheduler=scheduler)
    assert live.state == RecognitionState.LISTENING

    live.on_result(0, [RecognitionResult("Offices build", is_final=False, confidence=0.4)])
    live.on_result(
        0,
        [
            RecognitionResult("Offices build culture.", is_final=True, confidence=0.85),
            RecognitionResult(" and trust", is_final=False, confidence=0.3),
        ],
    )

    rows = CaptionsRepository(session).list_final_by_room(debate_room.id)
    assert len(rows) == 3
    stored = rows[-1]
    assert (stored.content, stored.user_id, stored.participant_side) == ("Offices build culture.", "anchor-b", Side.SIDE_B)
    assert stored.confidence == pytest.approx(0.85)
    assert not any("trust" in r.content for r in rows)

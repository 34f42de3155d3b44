from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence
import logging
import re
import threading

import requests
from sqlmodel import Session

from debatestream.config import Settings
from debatestream.errors import SynthesisCancelled, SynthesisError
from debatestream.models.common import SummaryType
from debatestream.models.discussion_summary import DiscussionSummary
from debatestream.repositories.summaries import SummariesRepository
from debatestream.services.aggregator import AggregatedEntry, AggregatedTranscript, aggregate_room

logger = logging.getLogger("debatestream.summary")


@dataclass
class LlmConfig:
    api_key: Optional[str] = None
    model: str = "gemini-2.0-flash-exp"
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_tokens: int = 3000
    timeout_sec: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LlmConfig":
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            endpoint=settings.gemini_endpoint,
            temperature=settings.temperature,
            top_k=settings.top_k,
            top_p=settings.top_p,
            max_tokens=settings.max_output_tokens,
            timeout_sec=settings.gemini_timeout_sec,
        )


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


class GeminiClient:
    """generateContent over HTTP. Every failure surfaces as SynthesisError."""

    def __init__(self, cfg: LlmConfig, http: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self._http = http or requests.Session()

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.cfg.temperature,
                "topK": self.cfg.top_k,
                "topP": self.cfg.top_p,
                "maxOutputTokens": self.cfg.max_tokens,
            },
        }

    def generate(self, prompt: str) -> str:
        if not self.cfg.api_key:
            raise SynthesisError("Gemini API key not configured. Set DS_GEMINI_API_KEY.")
        url = f"{self.cfg.endpoint.rstrip('/')}/{self.cfg.model}:generateContent"
        try:
            resp = self._http.post(
                url,
                params={"key": self.cfg.api_key},
                json=self._payload(prompt),
                timeout=self.cfg.timeout_sec,
            )
        except requests.RequestException as e:
            raise SynthesisError(f"Gemini request failed: {e}") from e

        if not resp.ok:
            detail = ""
            try:
                detail = str((resp.json().get("error") or {}).get("message") or "")
            except ValueError:
                pass
            raise SynthesisError(
                f"Gemini API error: {resp.status_code} {resp.reason}. {detail}".strip(),
                status=resp.status_code,
            )

        try:
            data = resp.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SynthesisError("No content generated by Gemini API") from e
        if not isinstance(text, str) or not text.strip():
            raise SynthesisError("No content generated by Gemini API")
        return text


@dataclass
class SynthesisResult:
    content: str
    source: Literal["remote", "fallback"]
    transcript: AggregatedTranscript
    summary: Optional[DiscussionSummary] = None

    @property
    def saved(self) -> bool:
        return self.summary is not None


def _fmt_pct(value: float, total: int) -> str:
    return f"{value:.1f}" if total > 0 else "0"


def _format_entries(entries: Sequence[AggregatedEntry], low_confidence: float) -> str:
    lines: List[str] = []
    for item in entries:
        tag = "[SPEECH]" if item.source_kind == "speech" else "[CHAT]"
        note = ""
        if item.source_kind == "speech" and item.confidence is not None and item.confidence < low_confidence:
            note = " (low confidence)"
        lines.append(f"{item.timestamp.strftime('%H:%M')} {tag}: {item.text}{note}")
    return "\n".join(lines)


def build_prompt(t: AggregatedTranscript, settings: Optional[Settings] = None) -> str:
    s = settings or Settings()
    pa, pb = t.votes.percentages()
    pa_s, pb_s = _fmt_pct(pa, t.votes.total), _fmt_pct(pb, t.votes.total)
    a, b = t.side_a_label, t.side_b_label
    side_a_text = _format_entries(t.side_a, s.low_confidence_threshold) or "No contributions recorded"
    side_b_text = _format_entries(t.side_b, s.low_confidence_threshold) or "No contributions recorded"

    return f"""
Generate a comprehensive and engaging summary of this debate on the topic: "{t.topic}"

## Debate Information:
**Topic:** {t.topic}
**Sides:** {a} vs {b}
**Total Messages:** {t.message_count}
**Total Speech Captions:** {t.caption_count}
**Total Votes:** {t.votes.total}
**Duration:** {t.duration_minutes} minutes

## Voting Results:
- **{a}:** {t.votes.side_a} votes ({pa_s}%)
- **{b}:** {t.votes.side_b} votes ({pb_s}%)

## {a} Content ({len(t.side_a)} contributions):
{side_a_text}

## {b} Content ({len(t.side_b)} contributions):
{side_b_text}

## Instructions:
Please provide a structured, comprehensive summary with the following sections:

### 1. Executive Summary
A compelling 2-3 sentence overview of the debate topic, key dynamics, and outcome.

### 2. Debate Overview
- Brief description of the debate format and participation
- Timeline and key moments
- Overall engagement level and quality

### 3. Key Arguments Analysis

**{a} Position:**
- Main arguments and supporting points
- Strongest rhetorical moments
- Strategic approach and messaging

**{b} Position:**
- Main arguments and supporting points
- Strongest rhetorical moments
- Strategic approach and messaging

### 4. Discussion Highlights
- Most compelling exchanges
- Areas of agreement or common ground
- Points of strongest disagreement
- Notable quotes or moments (if any)

### 5. Audience Response & Voting Analysis
- Final vote breakdown and what it suggests
- Possible factors influencing voting patterns
- Alignment between argument strength and popular support

### 6. Key Takeaways
- Main insights from the debate
- Unresolved questions or areas for further discussion
- Broader implications of the topic

### 7. Conclusion
A balanced assessment that acknowledges the merits of both sides while highlighting the value of the democratic discourse process.

## Style Guidelines:
- Write in an engaging, journalistic style
- Remain objective and balanced
- Focus on substance over personal attacks
- Make it accessible to readers unfamiliar with the topic
- Include specific examples from the discussion when relevant
- Acknowledge both chat messages and live speech contributions
- Note when speech recognition may have affected caption accuracy

Generate a summary that would be valuable for someone who wants to understand this debate without reading through all the individual contributions.
"""


def _bullets(entries: Sequence[AggregatedEntry], limit: int) -> str:
    lines = [f"- {e.text}" for e in entries[:limit]]
    return "\n".join(lines) or "- No arguments recorded"


def render_fallback_summary(t: AggregatedTranscript, settings: Optional[Settings] = None) -> str:
    """Local template with the same sections as the remote summary.

    Pure function of the aggregated data: identical input, identical text.
    """
    s = settings or Settings()
    pa, pb = t.votes.percentages()
    pa_s, pb_s = _fmt_pct(pa, t.votes.total), _fmt_pct(pb, t.votes.total)
    a, b = t.side_a_label, t.side_b_label
    top = s.fallback_top_contributions

    return f"""# Debate Summary: {t.topic}

## Executive Summary
This debate on "{t.topic}" generated {t.message_count} chat messages and {t.caption_count} speech contributions, with {t.votes.total} participants casting votes. The discussion concluded with {a} receiving {t.votes.side_a} votes ({pa_s}%) and {b} receiving {t.votes.side_b} votes ({pb_s}%).

## Debate Overview
The debate featured structured discussion between {a} and {b} positions, with participants contributing through both text chat and live speech. The format allowed for real-time audience engagement and voting.

## Key Arguments

### {a} Position ({len(t.side_a)} contributions):
{_bullets(t.side_a, top)}

### {b} Position ({len(t.side_b)} contributions):
{_bullets(t.side_b, top)}

## Voting Results
- **{a}:** {t.votes.side_a} votes ({pa_s}%)
- **{b}:** {t.votes.side_b} votes ({pb_s}%)

## Discussion Timeline
The debate included:
- {t.message_count} text messages from participants
- {t.caption_count} speech-to-text captions from anchors
- Real-time voting by {t.votes.total} participants
- {t.duration_minutes} minutes of discussion

## Conclusion
This debate provided valuable insights into different perspectives on {t.topic}. The voting results reflect the audience's response to the arguments presented by both sides.

*Note: This is a basic summary. AI-powered analysis is temporarily unavailable.*"""


def extract_key_points(entries: Sequence[AggregatedEntry], count: int = 10, min_length: int = 4) -> List[str]:
    """Most frequent words longer than ``min_length``; ties keep first appearance."""
    text = " ".join(e.text for e in entries).lower()
    words = [w for w in re.split(r"\W+", text) if len(w) > min_length]
    return [w for w, _ in Counter(words).most_common(count)]


def extract_side_arguments(entries: Sequence[AggregatedEntry], count: int = 10) -> List[str]:
    return [e.text for e in entries[:count]]


def synthesize(
    t: AggregatedTranscript,
    generator: Optional[TextGenerator],
    settings: Optional[Settings] = None,
) -> tuple[str, Literal["remote", "fallback"]]:
    """Remote generation, else the local template. Never raises for a valid transcript."""
    s = settings or Settings()
    if generator is not None:
        try:
            return generator.generate(build_prompt(t, s)), "remote"
        except SynthesisError as e:
            logger.warning("Summary generation failed for room %s: %s", t.room_id, e)
        except Exception:
            logger.exception("Unexpected summary generation failure for room %s", t.room_id)
    return render_fallback_summary(t, s), "fallback"


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise SynthesisCancelled("summary generation cancelled")


def summarize_room(
    room_id: str,
    session: Session,
    generator: Optional[TextGenerator] = None,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    cancel: Optional[threading.Event] = None,
) -> SynthesisResult:
    """Aggregate a room, synthesize a summary and store it as a final record.

    A failed save is logged; the generated content is still returned.
    """
    s = settings or Settings()
    if generator is None:
        generator = GeminiClient(LlmConfig.from_settings(s))

    transcript = aggregate_room(room_id, session, now=now)
    _check_cancel(cancel)

    content, source = synthesize(transcript, generator, s)
    _check_cancel(cancel)

    record = DiscussionSummary(
        room_id=room_id,
        summary_type=SummaryType.FINAL,
        content=content,
        vote_results=transcript.votes.as_dict(),
        key_points=extract_key_points(transcript.entries, s.key_points_count, s.key_point_min_length),
        side_a_arguments=extract_side_arguments(transcript.side_a, s.side_arguments_count),
        side_b_arguments=extract_side_arguments(transcript.side_b, s.side_arguments_count),
        total_messages=transcript.message_count,
        total_captions=transcript.caption_count,
        debate_duration=transcript.duration_minutes,
    )
    saved: Optional[DiscussionSummary] = None
    try:
        saved = SummariesRepository(session).create(record)
    except Exception:
        logger.exception("Failed to save summary for room %s", room_id)
        try:
            session.rollback()
        except Exception:
            logger.warning("Rollback after failed summary save also failed", exc_info=True)

    logger.info("Summary for room %s generated via %s (saved=%s)", room_id, source, saved is not None)
    return SynthesisResult(content=content, source=source, transcript=transcript, summary=saved)

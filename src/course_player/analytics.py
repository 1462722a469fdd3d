"""Analytics sink: fire-and-forget telemetry for playback events.

The pipeline behind the sink is external. Components only call
``track(event, payload)``; a failing sink must never disturb playback,
so :func:`safe_track` logs and drops sink errors.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class AnalyticsEvent(StrEnum):
    """Event names emitted by the playback subsystem."""

    VIDEO_STARTED = "video_started"
    VIDEO_PAUSED = "video_paused"
    VIDEO_SEEKED = "video_seeked"
    VIDEO_SEEK_BLOCKED = "video_seek_blocked"
    VIDEO_MILESTONE = "video_milestone"
    VIDEO_COMPLETED = "video_completed"
    VIDEO_REPLAYED = "video_replayed"
    VIDEO_ERROR = "video_error"
    SOURCE_FALLBACK = "video_source_fallback"
    SOURCES_EXHAUSTED = "video_sources_exhausted"
    QUESTION_SHOWN = "video_question_shown"
    QUESTION_ANSWERED = "video_question_answered"
    QUESTION_TIMEOUT = "video_question_timeout"
    QUESTION_CLOSED = "video_question_closed"


class AnalyticsSink(Protocol):
    def track(self, event: str, payload: dict[str, Any]) -> None: ...


class LoggingAnalyticsSink:
    """Default sink: writes each event to the structured log."""

    def __init__(self, **context: Any) -> None:
        self._log = logger.bind(**context)

    def track(self, event: str, payload: dict[str, Any]) -> None:
        self._log.info("analytics_event", analytics_event=event, **payload)


class NullAnalyticsSink:
    def track(self, event: str, payload: dict[str, Any]) -> None:
        return None


def safe_track(sink: AnalyticsSink, event: str, payload: dict[str, Any]) -> None:
    """Deliver ``event`` to ``sink``; sink failures are logged, never raised."""
    try:
        sink.track(event, payload)
    except Exception as exc:
        logger.warning("analytics_sink_failed", analytics_event=event, error=str(exc))

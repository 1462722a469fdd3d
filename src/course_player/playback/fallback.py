"""FallbackController -- walks the ranked source list on engine errors.

State machine::

    ACTIVE(0) -> RETRYING(1) -> ACTIVE(1) -> ... -> ACTIVE(n-1) -> EXHAUSTED

Error filtering:
1. Errors that name a source other than the current one are stale.
2. Errors without a source URI that repeat the code which caused the
   last switch are duplicates while the cool-down window is open. The
   window opens on each switch and is never extended by duplicates.
3. Errors arriving while RETRYING are held and replayed once the new
   source is ACTIVE.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import structlog

from course_player.analytics import (
    AnalyticsEvent,
    AnalyticsSink,
    NullAnalyticsSink,
    safe_track,
)
from course_player.errors import SourcesExhaustedError
from course_player.models.video import VideoSource
from course_player.playback.engine import EngineFailed, PlaybackEngineAdapter

logger = structlog.get_logger()

Clock = Callable[[], float]

LOAD_FAILED = "load_failed"


class FallbackPhase(StrEnum):
    ACTIVE = "active"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class FallbackState:
    phase: FallbackPhase
    source_index: int | None = None

    def __str__(self) -> str:
        if self.source_index is None:
            return self.phase.value.upper()
        return f"{self.phase.value.upper()}({self.source_index})"


EXHAUSTED = FallbackState(FallbackPhase.EXHAUSTED)


class FallbackController:
    """Owns the candidate sources for one playback session."""

    def __init__(
        self,
        sources: Sequence[VideoSource],
        adapter: PlaybackEngineAdapter,
        *,
        analytics: AnalyticsSink | None = None,
        cooldown_sec: float = 2.0,
        clock: Clock = time.monotonic,
        video_id: str = "",
    ) -> None:
        if not sources:
            raise ValueError("FallbackController needs at least one source")
        self._sources = tuple(sources)
        self._adapter = adapter
        self._analytics = analytics or NullAnalyticsSink()
        self._cooldown_sec = cooldown_sec
        self._clock = clock
        self._video_id = video_id
        self._log = logger.bind(video_id=video_id, total_sources=len(self._sources))

        self.state = FallbackState(FallbackPhase.ACTIVE, 0)
        self.history: list[FallbackState] = []
        self.terminal_error: SourcesExhaustedError | None = None
        self._cooldown_until = 0.0
        self._last_code: str | None = None
        self._pending: EngineFailed | None = None
        self._started = False

    @property
    def sources(self) -> tuple[VideoSource, ...]:
        return self._sources

    @property
    def current_source(self) -> VideoSource | None:
        if self.state.source_index is None:
            return None
        return self._sources[self.state.source_index]

    @property
    def exhausted(self) -> bool:
        return self.state.phase is FallbackPhase.EXHAUSTED

    async def start(self) -> bool:
        """Bind the primary source; a refused load counts as its error."""
        if self._started:
            raise RuntimeError("FallbackController.start() called twice")
        self._started = True
        self._enter(FallbackState(FallbackPhase.ACTIVE, 0), error_code=None)
        primary = self._sources[0]
        if await self._adapter.initialize(primary):
            return True
        await self._advance(EngineFailed(code=LOAD_FAILED, source_uri=primary.uri))
        return not self.exhausted

    async def handle_error(self, event: EngineFailed) -> bool:
        """Error handler registered on the engine adapter.

        Returns False when the error is dismissed as stale or duplicate.
        """
        phase = self.state.phase
        if phase is FallbackPhase.EXHAUSTED:
            self._log.debug("error_after_exhaustion_ignored", code=event.code)
            return False

        if phase is FallbackPhase.RETRYING:
            retrying = self.current_source
            if event.source_uri is None or (
                retrying is not None and event.source_uri == retrying.uri
            ):
                self._pending = event
                return True
            return False

        current = self._sources[self.state.source_index or 0]
        if event.source_uri is not None:
            if event.source_uri != current.uri:
                self._log.debug(
                    "stale_error_ignored",
                    code=event.code,
                    uri=event.source_uri,
                )
                return False
        elif self._clock() < self._cooldown_until and event.code == self._last_code:
            self._log.debug("duplicate_error_ignored", code=event.code)
            return False

        await self._advance(event)
        return True

    # -- internal ------------------------------------------------------------

    async def _advance(self, event: EngineFailed) -> None:
        failed_index = self.state.source_index or 0
        next_index = failed_index + 1
        self._log.warning(
            "source_failed",
            source_index=failed_index,
            code=event.code,
            message=event.message,
        )

        if next_index >= len(self._sources):
            self._exhaust(event)
            return

        source = self._sources[next_index]
        self._enter(FallbackState(FallbackPhase.RETRYING, next_index), event.code)
        ok = await self._adapter.replace_source(source, same_video=True)

        if not self._adapter.active:
            return
        self._enter(FallbackState(FallbackPhase.ACTIVE, next_index), event.code)
        self._cooldown_until = self._clock() + self._cooldown_sec
        self._last_code = event.code

        pending, self._pending = self._pending, None
        if not ok:
            await self._advance(EngineFailed(code=LOAD_FAILED, source_uri=source.uri))
        elif pending is not None:
            await self.handle_error(pending)

    def _exhaust(self, event: EngineFailed) -> None:
        self.terminal_error = SourcesExhaustedError(
            total_sources=len(self._sources),
            last_error=event.message or event.code,
        )
        self._enter(EXHAUSTED, event.code)
        self._log.error("sources_exhausted", last_code=event.code)

    def _enter(self, state: FallbackState, error_code: str | None) -> None:
        self.state = state
        self.history.append(state)
        source = self.current_source
        url = source.uri if source is not None else self._sources[-1].uri
        self._log.info(
            "fallback_transition",
            state=str(state),
            source_index=state.source_index,
        )
        event = (
            AnalyticsEvent.SOURCES_EXHAUSTED
            if state.phase is FallbackPhase.EXHAUSTED
            else AnalyticsEvent.SOURCE_FALLBACK
        )
        safe_track(
            self._analytics,
            event,
            {
                "video_id": self._video_id,
                "state": state.phase.value,
                "source_index": state.source_index,
                "total_sources": len(self._sources),
                "url": url,
                "error_code": error_code,
            },
        )

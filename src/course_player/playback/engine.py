"""Playback engine adapter over a native media player.

The adapter exclusively owns one :class:`MediaEngine` per mounted
screen. Commands record the desired state first (last write wins) and
then issue the asynchronous engine call; engine callbacks enter through
:meth:`PlaybackEngineAdapter.dispatch`.

Every source bind bumps a generation counter. Async work that resumes
after a newer bind (or after unmount) compares generations and drops
its result.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, assert_never

import structlog

from course_player.analytics import (
    AnalyticsEvent,
    AnalyticsSink,
    NullAnalyticsSink,
    safe_track,
)
from course_player.models.video import (
    SUPPORTED_SPEEDS,
    BufferHints,
    BufferState,
    PlaybackState,
    VideoSource,
)

logger = structlog.get_logger()


class MediaEngine(Protocol):
    """Native player contract the adapter drives.

    Implementations report progress and failures by calling the
    adapter's ``dispatch`` with engine events; command methods may
    return before the engine has actually changed state.
    """

    @property
    def playing(self) -> bool: ...

    async def load(self, source: VideoSource) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def seek(self, position_ms: int) -> None: ...

    def set_volume(self, volume: float) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def configure_buffer(self, hints: BufferHints) -> None: ...

    async def release(self) -> None: ...


EngineFactory = Callable[[], MediaEngine]
"""Builds the native engine; may raise if the platform player is unavailable."""


class EngineStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


# -- engine events ------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceLoaded:
    duration_ms: int


@dataclass(frozen=True, slots=True)
class StatusChanged:
    status: EngineStatus


@dataclass(frozen=True, slots=True)
class TimeUpdated:
    position_ms: int
    duration_ms: int | None = None


@dataclass(frozen=True, slots=True)
class EngineFailed:
    """Engine error. ``source_uri`` names the failing source when known."""

    code: str
    message: str = ""
    source_uri: str | None = None


EngineEvent = SourceLoaded | StatusChanged | TimeUpdated | EngineFailed


@dataclass(frozen=True, slots=True)
class PositionChanged:
    """Position report handed to listeners (question gate, progress)."""

    previous_ms: int
    position_ms: int
    duration_ms: int
    seeked: bool = False
    user_initiated: bool = False

    @property
    def is_backward(self) -> bool:
        return self.position_ms < self.previous_ms


PositionListener = Callable[[PositionChanged], Awaitable[None]]
ErrorHandler = Callable[[EngineFailed], Awaitable[bool]]
SeekGuard = Callable[[], bool]
Sleep = Callable[[float], Awaitable[None]]


def _always_allowed() -> bool:
    return True


class PlaybackEngineAdapter:
    """Owns the native engine and the live :class:`PlaybackState`."""

    def __init__(
        self,
        engine_factory: EngineFactory,
        *,
        seek_guard: SeekGuard | None = None,
        analytics: AnalyticsSink | None = None,
        play_confirm_attempts: int = 3,
        play_confirm_interval_sec: float = 0.5,
        sleep: Sleep = asyncio.sleep,
        video_id: str = "",
    ) -> None:
        self.state = PlaybackState()
        self._engine_factory = engine_factory
        self._engine: MediaEngine | None = None
        self._source: VideoSource | None = None
        self._seek_guard = seek_guard or _always_allowed
        self._analytics = analytics or NullAnalyticsSink()
        self._confirm_attempts = play_confirm_attempts
        self._confirm_interval = play_confirm_interval_sec
        self._sleep = sleep
        self._video_id = video_id
        self._log = logger.bind(video_id=video_id)

        self._generation = 0
        self._want_playing = False
        self._active = True
        self._reloading = False
        self._seek_in_flight = False
        self._confirm_task: asyncio.Task[None] | None = None
        self._position_listeners: list[PositionListener] = []
        self._error_handler: ErrorHandler | None = None

    # -- wiring -----------------------------------------------------------

    @property
    def source(self) -> VideoSource | None:
        return self._source

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active(self) -> bool:
        return self._active

    def add_position_listener(self, listener: PositionListener) -> None:
        self._position_listeners.append(listener)

    def set_error_handler(self, handler: ErrorHandler) -> None:
        """``handler`` returns False when it dismisses the error as stale."""
        self._error_handler = handler

    def set_seek_guard(self, guard: SeekGuard) -> None:
        self._seek_guard = guard

    # -- source binding -----------------------------------------------------

    async def initialize(self, source: VideoSource) -> bool:
        """Bind the engine to ``source``.

        Returns ``False`` when the engine cannot be built or refuses the
        source; the failure is recorded as ``BufferState.ERRORED`` and
        logged, never raised.
        """
        if not self._active:
            self._log.debug("initialize_after_unmount_ignored", uri=source.uri)
            return False
        self._generation += 1
        generation = self._generation
        self._source = source
        self.state.buffer_state = BufferState.BUFFERING
        self.state.last_error = None
        log = self._log.bind(uri=source.uri, format=source.format.value)

        if self._engine is None:
            try:
                self._engine = self._engine_factory()
            except Exception as exc:
                log.error("engine_construction_failed", error=str(exc))
                self._mark_errored(str(exc))
                return False

        try:
            self._engine.set_volume(self.state.volume)
            self._engine.set_rate(self.state.speed)
            self._engine.configure_buffer(source.buffer_hints)
            await self._engine.load(source)
        except Exception as exc:
            if generation == self._generation:
                log.warning("engine_load_failed", error=str(exc))
                self._mark_errored(str(exc))
            return False

        if not self._is_current(generation):
            log.debug("stale_source_load_discarded", generation=generation)
            return False

        log.info("engine_source_bound", label=source.label, generation=generation)
        return True

    async def replace_source(
        self,
        source: VideoSource,
        *,
        same_video: bool = True,
    ) -> bool:
        """Swap the media source, keeping volume and speed.

        For the same video the position is restored after the load; a
        different video starts from zero.
        """
        resume_ms = self.state.position_ms if same_video else 0
        if not same_video:
            self.state.position_ms = 0
            self.state.duration_ms = 0

        self._cancel_confirmation()
        self._reloading = True
        try:
            ok = await self.initialize(source)
            generation = self._generation
            if ok and resume_ms > 0 and self._engine is not None:
                try:
                    await self._engine.seek(resume_ms)
                except Exception as exc:
                    self._log.warning("resume_seek_failed", error=str(exc))
            if not self._is_current(generation):
                return False
        finally:
            self._reloading = False

        if ok and self._want_playing:
            await self.set_playing(True)
        return ok

    # -- commands -----------------------------------------------------------

    async def set_playing(self, playing: bool) -> None:
        """Request play or pause; the newest request always wins."""
        self._want_playing = playing
        self.state.is_playing = playing
        self._cancel_confirmation()

        engine = self._engine
        if engine is None or self.state.buffer_state is BufferState.ERRORED:
            self._log.debug("play_intent_recorded", playing=playing)
            return

        try:
            if playing:
                await engine.play()
            else:
                await engine.pause()
        except Exception as exc:
            self._log.warning("engine_command_failed", playing=playing, error=str(exc))
            return

        if playing and self._want_playing and self._active:
            self._confirm_task = asyncio.create_task(
                self._confirm_playing(self._generation)
            )

    async def seek(self, time_ms: int) -> bool:
        """User seek; ignored when the seek guard forbids it."""
        if not self._seek_guard():
            self._log.info("seek_blocked", target_ms=time_ms)
            safe_track(
                self._analytics,
                AnalyticsEvent.VIDEO_SEEK_BLOCKED,
                {"video_id": self._video_id, "target_ms": time_ms},
            )
            return False
        return await self._seek(time_ms, user_initiated=True)

    async def seek_to(self, time_ms: int) -> bool:
        """System seek (resume, replay, rewind); bypasses the seek guard."""
        return await self._seek(time_ms, user_initiated=False)

    def set_volume(self, volume: float) -> None:
        if not 0.0 <= volume <= 1.0:
            raise ValueError(f"volume must be within [0, 1], got {volume}")
        self.state.volume = volume
        if self._engine is not None:
            self._engine.set_volume(volume)

    def set_speed(self, speed: float) -> None:
        if speed not in SUPPORTED_SPEEDS:
            raise ValueError(f"unsupported playback speed {speed}")
        self.state.speed = speed
        if self._engine is not None:
            self._engine.set_rate(speed)

    async def wait_for_confirmation(self) -> None:
        """Wait until the pending play confirmation (if any) settles."""
        task = self._confirm_task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def unmount(self) -> None:
        """Release the engine; later events and stale results are dropped."""
        self._active = False
        self._generation += 1
        self._cancel_confirmation()
        engine, self._engine = self._engine, None
        if engine is None:
            return
        try:
            await engine.release()
        except Exception as exc:
            self._log.warning("engine_release_failed", error=str(exc))
        self._log.info("engine_released")

    # -- engine events ------------------------------------------------------

    async def dispatch(self, event: EngineEvent) -> None:
        """Single entry point for native engine callbacks."""
        if not self._active:
            return
        if isinstance(event, TimeUpdated):
            await self._on_time_updated(event)
        elif isinstance(event, SourceLoaded):
            await self._on_source_loaded(event)
        elif isinstance(event, StatusChanged):
            await self._on_status_changed(event)
        elif isinstance(event, EngineFailed):
            await self._on_failed(event)
        else:
            assert_never(event)

    async def _on_time_updated(self, event: TimeUpdated) -> None:
        if self._reloading:
            return
        if event.duration_ms and event.duration_ms > 0:
            self.state.duration_ms = event.duration_ms

        previous = self.state.position_ms
        position = max(0, event.position_ms)
        if self.state.duration_ms > 0:
            position = min(position, self.state.duration_ms)
        if position < previous and self.state.is_playing and not self._seek_in_flight:
            # Position only moves back through a seek while playing.
            return

        self.state.position_ms = position
        await self._notify(
            PositionChanged(
                previous_ms=previous,
                position_ms=position,
                duration_ms=self.state.duration_ms,
            )
        )

    async def _on_source_loaded(self, event: SourceLoaded) -> None:
        if event.duration_ms > 0:
            self.state.duration_ms = event.duration_ms
        self.state.buffer_state = BufferState.READY
        self._log.debug("source_loaded", duration_ms=event.duration_ms)
        await self._start_if_wanted("source_loaded")

    async def _on_status_changed(self, event: StatusChanged) -> None:
        status = event.status
        if status is EngineStatus.READY:
            self.state.buffer_state = BufferState.READY
            await self._start_if_wanted("ready")
        elif status is EngineStatus.LOADING:
            self.state.buffer_state = BufferState.BUFFERING
        elif status is EngineStatus.ERROR:
            self.state.buffer_state = BufferState.ERRORED
        elif status is EngineStatus.IDLE:
            self.state.buffer_state = BufferState.IDLE
        else:
            assert_never(status)

    async def _on_failed(self, event: EngineFailed) -> None:
        previous_state = self.state.buffer_state
        previous_error = self.state.last_error
        generation = self._generation
        self._mark_errored(event.message or event.code)
        self._log.warning(
            "engine_error",
            code=event.code,
            message=event.message,
            uri=event.source_uri or (self._source.uri if self._source else None),
        )
        safe_track(
            self._analytics,
            AnalyticsEvent.VIDEO_ERROR,
            {"video_id": self._video_id, "error_code": event.code},
        )
        if self._error_handler is None:
            self._log.error("engine_error_unhandled", code=event.code)
            return
        accepted = await self._error_handler(event)
        if not accepted and self._is_current(generation):
            self.state.buffer_state = previous_state
            self.state.last_error = previous_error
            self._log.debug("engine_error_dismissed", code=event.code)

    # -- internals ----------------------------------------------------------

    async def _seek(self, time_ms: int, *, user_initiated: bool) -> bool:
        engine = self._engine
        if engine is None:
            return False
        target = max(0, time_ms)
        if self.state.duration_ms > 0:
            target = min(target, self.state.duration_ms)

        generation = self._generation
        previous = self.state.position_ms
        self._seek_in_flight = True
        try:
            await engine.seek(target)
        except Exception as exc:
            self._log.warning("seek_failed", target_ms=target, error=str(exc))
            return False
        finally:
            self._seek_in_flight = False

        if not self._is_current(generation):
            return False

        self.state.position_ms = target
        if user_initiated:
            safe_track(
                self._analytics,
                AnalyticsEvent.VIDEO_SEEKED,
                {
                    "video_id": self._video_id,
                    "from_ms": previous,
                    "to_ms": target,
                    "seek_distance_ms": target - previous,
                },
            )
        await self._notify(
            PositionChanged(
                previous_ms=previous,
                position_ms=target,
                duration_ms=self.state.duration_ms,
                seeked=True,
                user_initiated=user_initiated,
            )
        )
        return True

    async def _start_if_wanted(self, reason: str) -> None:
        engine = self._engine
        if engine is None or not self._want_playing or engine.playing:
            return
        self._log.debug("auto_start", reason=reason)
        await self.set_playing(True)

    async def _confirm_playing(self, generation: int) -> None:
        """Poll until the engine reports playing, re-issuing play() each miss."""
        for attempt in range(1, self._confirm_attempts + 1):
            await self._sleep(self._confirm_interval)
            engine = self._engine
            if engine is None or not self._want_playing:
                return
            if not self._is_current(generation):
                return
            if engine.playing:
                self._log.debug("play_confirmed", attempt=attempt)
                return
            if attempt == self._confirm_attempts:
                break
            self._log.info("play_reissued", attempt=attempt)
            try:
                await engine.play()
            except Exception as exc:
                self._log.warning(
                    "play_reissue_failed", attempt=attempt, error=str(exc)
                )
        self._log.warning("play_not_confirmed", attempts=self._confirm_attempts)

    def _cancel_confirmation(self) -> None:
        task = self._confirm_task
        self._confirm_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _is_current(self, generation: int) -> bool:
        return self._active and generation == self._generation

    def _mark_errored(self, message: str) -> None:
        self.state.buffer_state = BufferState.ERRORED
        self.state.last_error = message

    async def _notify(self, change: PositionChanged) -> None:
        for listener in list(self._position_listeners):
            await listener(change)

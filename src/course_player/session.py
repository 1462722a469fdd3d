"""VideoSession -- per-screen container wiring the playback subsystem.

Quick start::

    from course_player.config import get_settings
    from course_player.logging_config import setup_logging
    from course_player.session import VideoInfo, build_http_client, create_session

    settings = get_settings()
    setup_logging(settings)
    async with build_http_client(settings) as http:
        session = create_session(settings, video, engine_factory=factory, http=http)
        await session.mount()
        await session.play()

Wiring::

    engine events -> PlaybackEngineAdapter.dispatch
        position  -> QuestionGate, then milestones / end detection
        errors    -> FallbackController (may swap sources)
    QuestionGate answers -> ProgressSyncClient.push
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum

import httpx
import structlog

from course_player.analytics import (
    AnalyticsEvent,
    AnalyticsSink,
    LoggingAnalyticsSink,
    safe_track,
)
from course_player.api.client import ApiClient
from course_player.api.tokens import TokenManager
from course_player.config import Settings
from course_player.errors import ApiError, InvalidInputError
from course_player.models.progress import ProgressSnapshot, QuestionSession
from course_player.models.question import DEFAULT_TIME_LIMIT_SEC
from course_player.models.video import (
    PlaybackState,
    VideoFormat,
    VideoSource,
    VideoType,
)
from course_player.playback.engine import (
    EngineFactory,
    EngineFailed,
    PlaybackEngineAdapter,
    PositionChanged,
)
from course_player.playback.fallback import FallbackController
from course_player.playback.manifest import parse_manifest
from course_player.playback.sources import make_source, resolve
from course_player.quiz.batch import QuestionBatch
from course_player.quiz.gate import (
    END_TOLERANCE_MS,
    AnswerChanged,
    CloseQuestion,
    NextItem,
    PreviousItem,
    QuestionGate,
    Replay,
    Submit,
    is_ended,
)
from course_player.quiz.scoring import Answer
from course_player.storage.kv_store import JsonFileStore, KeyValueStore
from course_player.storage.preferences import (
    VideoQuality,
    load_video_quality,
    save_video_quality,
    select_variant,
)
from course_player.sync.milestones import DEFAULT_MILESTONES, MilestoneTracker
from course_player.sync.progress import ProgressSyncClient, PushResult

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class SessionStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    CONTENT_UNAVAILABLE = "content_unavailable"
    FAILED = "failed"
    UNMOUNTED = "unmounted"


@dataclass(frozen=True, slots=True)
class VideoInfo:
    video_id: str
    url: str
    video_type: VideoType
    course_id: str
    chapter_id: str
    title: str = ""


class VideoSession:
    """One mounted video screen. Nothing here is shared between screens."""

    def __init__(
        self,
        video: VideoInfo,
        *,
        engine_factory: EngineFactory,
        sync: ProgressSyncClient,
        analytics: AnalyticsSink | None = None,
        store: KeyValueStore | None = None,
        http: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
        milestones: Iterable[int] = DEFAULT_MILESTONES,
        fallback_cooldown_sec: float = 2.0,
        play_confirm_attempts: int = 3,
        play_confirm_interval_sec: float = 0.5,
        default_time_limit_sec: int = DEFAULT_TIME_LIMIT_SEC,
        end_tolerance_ms: int = END_TOLERANCE_MS,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.video = video
        self._sync = sync
        self._analytics = analytics or LoggingAnalyticsSink(video_id=video.video_id)
        self._store = store
        self._http = http
        self._headers = headers
        self._cooldown_sec = fallback_cooldown_sec
        self._default_limit = default_time_limit_sec
        self._end_tolerance_ms = end_tolerance_ms
        self._sleep = sleep
        self._clock = clock
        self._log = logger.bind(video_id=video.video_id)

        self.status = SessionStatus.IDLE
        self.error: str | None = None
        self.quality = VideoQuality.AUTO
        self.record = sync.record_for(video.video_id)
        self.milestones = MilestoneTracker(milestones)
        self.adapter = PlaybackEngineAdapter(
            engine_factory,
            analytics=self._analytics,
            play_confirm_attempts=play_confirm_attempts,
            play_confirm_interval_sec=play_confirm_interval_sec,
            sleep=sleep,
            video_id=video.video_id,
        )
        self.gate: QuestionGate | None = None
        self.fallback: FallbackController | None = None
        self._ended_reported = False

    # -- read side ------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self.adapter.state

    @property
    def can_seek(self) -> bool:
        return self.gate is not None and self.gate.seek_allowed()

    @property
    def active_batch(self) -> QuestionBatch | None:
        return self.gate.batch if self.gate is not None else None

    def resume_position(self) -> int:
        """Where playback starts: the checkpoint for unfinished gated videos."""
        record = self.record
        if self.video.video_type.gated and not record.is_completed:
            position = record.last_correct_checkpoint_ms
        else:
            position = record.current_duration_ms
        if is_ended(position, record.total_duration_ms, self._end_tolerance_ms):
            return 0
        return max(0, position)

    def snapshot(self) -> ProgressSnapshot:
        state = self.adapter.state
        return ProgressSnapshot(
            position_ms=state.position_ms,
            duration_ms=state.duration_ms or self.record.total_duration_ms,
            completed=self.record.is_completed,
            video_type=self.video.video_type,
            answered_question_ids=set(self.record.answered_question_ids),
            submission_log=list(self.record.submission_log),
            last_correct_checkpoint_ms=(
                self.record.last_correct_checkpoint_ms
                if self.video.video_type.gated
                else None
            ),
        )

    # -- lifecycle --------------------------------------------------------------

    async def mount(self) -> SessionStatus:
        """Load questions and progress, then bind the first working source."""
        if self.status is not SessionStatus.IDLE:
            raise RuntimeError(f"cannot mount a session in state {self.status}")
        self.status = SessionStatus.LOADING
        video = self.video

        try:
            sources = resolve(video.url, self._headers)
            questions = await self._sync.fetch_questions(video.video_id)
        except InvalidInputError as exc:
            return self._content_unavailable(exc)
        except ApiError as exc:
            self._log.warning("questions_unavailable", error=exc.message)
            questions = []

        await self._sync.fetch(video.video_id)
        sources = await self._apply_quality(sources)

        gate = QuestionGate(
            questions,
            self.adapter,
            self.record,
            video_type=video.video_type,
            on_answered=self._on_answered,
            analytics=self._analytics,
            default_time_limit_sec=self._default_limit,
            sleep=self._sleep,
            clock=self._clock,
        )
        self.gate = gate
        self.adapter.set_seek_guard(gate.seek_allowed)
        self.adapter.add_position_listener(gate.on_position)
        self.adapter.add_position_listener(self._on_position)

        self.fallback = FallbackController(
            sources,
            self.adapter,
            analytics=self._analytics,
            cooldown_sec=self._cooldown_sec,
            clock=self._clock,
            video_id=video.video_id,
        )
        self.adapter.set_error_handler(self._on_engine_error)

        await self.fallback.start()
        if self.fallback.exhausted:
            self._mark_failed()
            return self.status

        resume_ms = self.resume_position()
        if resume_ms > 0:
            # Milestones behind the resume point were reached in an earlier session.
            self.milestones.update(resume_ms, self.record.total_duration_ms)
            await self.adapter.seek_to(resume_ms)

        self.status = SessionStatus.READY
        self._log.info(
            "session_mounted",
            video_type=video.video_type.value,
            sources=len(sources),
            questions=len(questions),
            resume_ms=resume_ms,
        )
        return self.status

    async def unmount(self) -> None:
        if self.status is SessionStatus.UNMOUNTED:
            return
        if self.gate is not None:
            await self.gate.close()
        await self.adapter.unmount()
        self.status = SessionStatus.UNMOUNTED
        self._log.info("session_unmounted")

    # -- playback commands ------------------------------------------------------

    async def play(self) -> None:
        if not self._ready():
            return
        await self.adapter.set_playing(True)
        safe_track(
            self._analytics,
            AnalyticsEvent.VIDEO_STARTED,
            {"video_id": self.video.video_id, "position_ms": self.state.position_ms},
        )

    async def pause(self) -> PushResult | None:
        if not self._ready():
            return None
        await self.adapter.set_playing(False)
        safe_track(
            self._analytics,
            AnalyticsEvent.VIDEO_PAUSED,
            {"video_id": self.video.video_id, "position_ms": self.state.position_ms},
        )
        return await self._push()

    async def toggle(self) -> None:
        if self.state.is_playing:
            await self.pause()
        else:
            await self.play()

    async def seek(self, time_ms: int) -> bool:
        if not self._ready():
            return False
        return await self.adapter.seek(time_ms)

    async def replay(self) -> None:
        if not self._ready() or self.gate is None:
            return
        self._ended_reported = False
        await self.gate.dispatch(Replay())

    def set_volume(self, volume: float) -> None:
        self.adapter.set_volume(volume)

    def set_speed(self, speed: float) -> None:
        self.adapter.set_speed(speed)

    async def set_quality(self, quality: VideoQuality) -> None:
        """Persist the preference; it applies from the next mount."""
        self.quality = quality
        if self._store is not None:
            await save_video_quality(self._store, quality)

    # -- question commands -----------------------------------------------------

    async def answer(
        self,
        answer: Answer,
        *,
        explanation: str | None = None,
        index: int | None = None,
    ) -> None:
        if self.gate is not None:
            await self.gate.dispatch(
                AnswerChanged(answer, explanation=explanation, index=index)
            )

    async def next_question(self) -> None:
        if self.gate is not None:
            await self.gate.dispatch(NextItem())

    async def previous_question(self) -> None:
        if self.gate is not None:
            await self.gate.dispatch(PreviousItem())

    async def submit(self) -> None:
        if self.gate is not None:
            await self.gate.dispatch(Submit())

    async def close_question(self) -> None:
        if self.gate is not None:
            await self.gate.dispatch(CloseQuestion())

    # -- listeners ---------------------------------------------------------------

    async def _on_position(self, change: PositionChanged) -> None:
        if self.status is not SessionStatus.READY:
            return
        reached = self.milestones.update(change.position_ms, change.duration_ms)
        for milestone in reached:
            safe_track(
                self._analytics,
                AnalyticsEvent.VIDEO_MILESTONE,
                {"video_id": self.video.video_id, "milestone": milestone},
            )
            self._log.info("milestone_reached", milestone=milestone)

        ended = is_ended(change.position_ms, change.duration_ms, self._end_tolerance_ms)
        if ended and not self._ended_reported:
            self._ended_reported = True
            await self._on_video_end()
            return
        if not ended and change.is_backward:
            self._ended_reported = False
        if reached:
            await self._push()

    async def _on_video_end(self) -> None:
        newly_completed = not self.record.is_completed
        self.record.is_completed = True
        safe_track(
            self._analytics,
            AnalyticsEvent.VIDEO_COMPLETED,
            {"video_id": self.video.video_id, "first_completion": newly_completed},
        )
        self._log.info("video_ended", first_completion=newly_completed)
        await self._push()

    async def _on_answered(self, sessions: list[QuestionSession]) -> None:
        await self._push()

    async def _on_engine_error(self, event: EngineFailed) -> bool:
        if self.fallback is None:
            return True
        accepted = await self.fallback.handle_error(event)
        if self.fallback.exhausted and self.status is SessionStatus.READY:
            self._mark_failed()
        return accepted

    # -- internals ------------------------------------------------------------

    async def _push(self) -> PushResult:
        return await self._sync.push(self.video.video_id, self.snapshot())

    async def _apply_quality(self, sources: list[VideoSource]) -> list[VideoSource]:
        """Put the preferred HLS rendition in front of the source list."""
        if self._store is not None:
            self.quality = await load_video_quality(self._store)
        primary = sources[0]
        if (
            self.quality is VideoQuality.AUTO
            or self._http is None
            or primary.format is not VideoFormat.HLS
        ):
            return sources
        manifest = await parse_manifest(primary.uri, self._http)
        variant = select_variant(manifest, self.quality)
        if variant is None:
            return sources
        preferred = make_source(
            variant.uri,
            VideoFormat.HLS,
            label=f"variant_{self.quality.value}",
            headers=self._headers,
        )
        self._log.info(
            "quality_variant_selected",
            quality=self.quality.value,
            bandwidth=variant.bandwidth,
        )
        return [preferred, *[s for s in sources if s.uri != preferred.uri]]

    def _ready(self) -> bool:
        return self.status is SessionStatus.READY

    def _content_unavailable(self, exc: InvalidInputError) -> SessionStatus:
        self.status = SessionStatus.CONTENT_UNAVAILABLE
        self.error = str(exc)
        self._log.warning("content_unavailable", error=str(exc))
        return self.status

    def _mark_failed(self) -> None:
        self.status = SessionStatus.FAILED
        terminal = self.fallback.terminal_error if self.fallback else None
        self.error = str(terminal) if terminal else "playback failed"
        self._log.error("session_failed", error=self.error)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """HTTP client for the backend API and manifest diagnostics."""
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.api_timeout_sec,
    )


def create_session(
    settings: Settings,
    video: VideoInfo,
    *,
    engine_factory: EngineFactory,
    http: httpx.AsyncClient,
    store: KeyValueStore | None = None,
    analytics: AnalyticsSink | None = None,
) -> VideoSession:
    """Assemble a VideoSession and its collaborators from settings."""
    store = store or JsonFileStore(settings.storage_path)
    tokens = TokenManager(store, http, refresh_path=settings.auth_refresh_path)
    api = ApiClient(
        http,
        tokens,
        max_attempts=settings.api_max_attempts,
        retry_delay_sec=settings.api_retry_delay_sec,
    )
    sync = ProgressSyncClient(
        api, course_id=video.course_id, chapter_id=video.chapter_id
    )
    return VideoSession(
        video,
        engine_factory=engine_factory,
        sync=sync,
        analytics=analytics,
        store=store,
        http=http,
        milestones=settings.progress_milestones,
        fallback_cooldown_sec=settings.fallback_cooldown_sec,
        play_confirm_attempts=settings.play_confirm_attempts,
        play_confirm_interval_sec=settings.play_confirm_interval_sec,
        default_time_limit_sec=settings.default_question_time_limit_sec,
        end_tolerance_ms=settings.end_tolerance_ms,
    )

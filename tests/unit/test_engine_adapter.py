"""Tests for PlaybackEngineAdapter."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from course_player.analytics import AnalyticsEvent
from course_player.models.video import BufferState, VideoFormat, VideoSource
from course_player.playback.engine import (
    EngineFailed,
    EngineStatus,
    PlaybackEngineAdapter,
    PositionChanged,
    SourceLoaded,
    StatusChanged,
    TimeUpdated,
)
from course_player.playback.sources import make_source
from tests.doubles import FakeEngine, ManualSleep, RecordingSink, instant_sleep

PRIMARY = make_source("https://cdn.example.com/v/clip.mp4", VideoFormat.PROGRESSIVE)
BACKUP = make_source("https://cdn.example.com/v/clip.m3u8", VideoFormat.HLS)


def _adapter(
    engine: FakeEngine,
    sink: RecordingSink | None = None,
    **kwargs: object,
) -> PlaybackEngineAdapter:
    kwargs.setdefault("sleep", instant_sleep)
    return PlaybackEngineAdapter(
        lambda: engine,
        analytics=sink,
        video_id="v1",
        **kwargs,  # type: ignore[arg-type]
    )


class _Listener:
    def __init__(self) -> None:
        self.changes: list[PositionChanged] = []

    async def __call__(self, change: PositionChanged) -> None:
        self.changes.append(change)


class _SlowEngine(FakeEngine):
    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def load(self, source: VideoSource) -> None:
        await self.gate.wait()
        await super().load(source)


class TestInitialize:
    async def test_binds_source(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        assert await adapter.initialize(PRIMARY) is True
        assert engine.loaded == [PRIMARY.uri]
        assert engine.hints == PRIMARY.buffer_hints
        assert engine.volume == 1.0
        assert engine.rate == 1.0
        assert adapter.source == PRIMARY
        assert adapter.generation == 1
        assert adapter.state.buffer_state is BufferState.BUFFERING

    async def test_engine_construction_failure(self) -> None:
        def broken() -> FakeEngine:
            raise RuntimeError("no native player")

        adapter = PlaybackEngineAdapter(broken)
        assert await adapter.initialize(PRIMARY) is False
        assert adapter.state.buffer_state is BufferState.ERRORED
        assert adapter.state.last_error == "no native player"

    async def test_load_failure(self) -> None:
        engine = FakeEngine(fail_load={PRIMARY.uri})
        adapter = _adapter(engine)
        assert await adapter.initialize(PRIMARY) is False
        assert adapter.state.buffer_state is BufferState.ERRORED

    async def test_load_finishing_after_unmount_is_discarded(self) -> None:
        """A load that completes after unmount does not touch state."""
        engine = _SlowEngine()
        adapter = _adapter(engine)
        task = asyncio.create_task(adapter.initialize(PRIMARY))
        await asyncio.sleep(0)
        await adapter.unmount()
        engine.gate.set()
        assert await task is False
        assert engine.released is True


class TestPlayIntent:
    async def test_play_confirmed(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.set_playing(True)
        await adapter.wait_for_confirmation()
        assert engine.playing is True
        assert engine.count("play") == 1
        assert adapter.state.is_playing is True

    async def test_play_reissued_until_attempts_run_out(self) -> None:
        """play() is retried a bounded number of times."""
        engine = FakeEngine(auto_play=False)
        adapter = _adapter(engine, play_confirm_attempts=3)
        await adapter.initialize(PRIMARY)
        await adapter.set_playing(True)
        await adapter.wait_for_confirmation()
        assert engine.count("play") == 3

    async def test_late_start_is_picked_up(self) -> None:
        engine = FakeEngine(auto_play=False)
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.set_playing(True)
        engine.auto_play = True
        await adapter.wait_for_confirmation()
        assert engine.count("play") == 2
        assert engine.playing is True

    async def test_pause_wins_over_pending_play(self, engine: FakeEngine) -> None:
        """The latest play/pause command wins."""
        sleep = ManualSleep()
        adapter = _adapter(engine, sleep=sleep)
        await adapter.initialize(PRIMARY)
        await adapter.set_playing(True)
        await adapter.set_playing(False)
        sleep.release()
        await adapter.wait_for_confirmation()
        assert engine.calls[-1] == ("pause",)
        assert adapter.state.is_playing is False

    async def test_intent_recorded_before_bind(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.set_playing(True)
        assert engine.calls == []
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(SourceLoaded(duration_ms=10_000))
        await adapter.wait_for_confirmation()
        assert engine.count("play") == 1
        assert adapter.state.buffer_state is BufferState.READY
        assert adapter.state.duration_ms == 10_000

    async def test_ready_without_intent_does_not_start(
        self, engine: FakeEngine
    ) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(StatusChanged(EngineStatus.READY))
        assert engine.count("play") == 0


class TestSeek:
    async def test_user_seek_clamped_and_reported(
        self, engine: FakeEngine, sink: RecordingSink
    ) -> None:
        adapter = _adapter(engine, sink)
        listener = _Listener()
        adapter.add_position_listener(listener)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(SourceLoaded(duration_ms=10_000))

        assert await adapter.seek(25_000) is True
        assert ("seek", 10_000) in engine.calls
        assert adapter.state.position_ms == 10_000
        change = listener.changes[-1]
        assert change.seeked is True
        assert change.user_initiated is True
        assert sink.payloads(AnalyticsEvent.VIDEO_SEEKED)[0]["to_ms"] == 10_000

    async def test_negative_target_clamped_to_zero(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.seek(-500)
        assert engine.calls[-1] == ("seek", 0)

    async def test_guard_blocks_user_seek(
        self, engine: FakeEngine, sink: RecordingSink
    ) -> None:
        """A refusing seek guard stops the engine call."""
        adapter = _adapter(engine, sink, seek_guard=lambda: False)
        await adapter.initialize(PRIMARY)
        assert await adapter.seek(5000) is False
        assert engine.count("seek") == 0
        assert sink.names() == [AnalyticsEvent.VIDEO_SEEK_BLOCKED]

    async def test_system_seek_bypasses_guard(
        self, engine: FakeEngine, sink: RecordingSink
    ) -> None:
        adapter = _adapter(engine, sink, seek_guard=lambda: False)
        listener = _Listener()
        adapter.add_position_listener(listener)
        await adapter.initialize(PRIMARY)
        assert await adapter.seek_to(5000) is True
        assert listener.changes[-1].user_initiated is False
        assert AnalyticsEvent.VIDEO_SEEKED not in sink.names()

    async def test_seek_without_engine(self, engine: FakeEngine) -> None:
        assert await _adapter(engine).seek(1000) is False


class TestTimeUpdates:
    async def test_forwarded_to_listeners(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        listener = _Listener()
        adapter.add_position_listener(listener)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(TimeUpdated(position_ms=1500, duration_ms=9000))
        assert adapter.state.duration_ms == 9000
        assert listener.changes == [
            PositionChanged(previous_ms=0, position_ms=1500, duration_ms=9000)
        ]

    async def test_clamped_to_duration(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(TimeUpdated(position_ms=12_000, duration_ms=9000))
        assert adapter.state.position_ms == 9000

    async def test_backward_jitter_while_playing_ignored(
        self, engine: FakeEngine
    ) -> None:
        """Backward time updates during playback without a seek are dropped."""
        adapter = _adapter(engine)
        listener = _Listener()
        adapter.add_position_listener(listener)
        await adapter.initialize(PRIMARY)
        await adapter.set_playing(True)
        await adapter.dispatch(TimeUpdated(position_ms=3000))
        await adapter.dispatch(TimeUpdated(position_ms=2800))
        assert adapter.state.position_ms == 3000
        assert len(listener.changes) == 1
        await adapter.wait_for_confirmation()

    async def test_backward_while_paused_accepted(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(TimeUpdated(position_ms=3000))
        await adapter.dispatch(TimeUpdated(position_ms=1000))
        assert adapter.state.position_ms == 1000


class TestReplaceSource:
    async def test_keeps_position_volume_and_speed(self, engine: FakeEngine) -> None:
        """Switching sources for the same video keeps its settings."""
        adapter = _adapter(engine)
        adapter.set_volume(0.4)
        adapter.set_speed(1.5)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(TimeUpdated(position_ms=12_000, duration_ms=60_000))

        assert await adapter.replace_source(BACKUP) is True
        assert engine.loaded == [PRIMARY.uri, BACKUP.uri]
        assert engine.calls[-1] == ("seek", 12_000)
        assert engine.volume == 0.4
        assert engine.rate == 1.5
        assert adapter.generation == 2
        assert adapter.source == BACKUP

    async def test_resumes_play_intent(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.set_playing(True)
        await adapter.wait_for_confirmation()
        await adapter.replace_source(BACKUP)
        await adapter.wait_for_confirmation()
        assert engine.count("play") == 2
        assert engine.playing is True

    async def test_different_video_starts_from_zero(
        self, engine: FakeEngine
    ) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(TimeUpdated(position_ms=12_000, duration_ms=60_000))
        await adapter.replace_source(BACKUP, same_video=False)
        assert adapter.state.position_ms == 0
        assert engine.count("seek") == 0

    async def test_failed_replacement(self) -> None:
        engine = FakeEngine(fail_load={BACKUP.uri})
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        assert await adapter.replace_source(BACKUP) is False
        assert adapter.state.buffer_state is BufferState.ERRORED


class TestEngineEvents:
    async def test_failure_goes_to_handler(
        self, engine: FakeEngine, sink: RecordingSink
    ) -> None:
        """Engine failures are forwarded verbatim to the error handler."""
        adapter = _adapter(engine, sink)
        handler = AsyncMock(return_value=True)
        adapter.set_error_handler(handler)
        await adapter.initialize(PRIMARY)
        event = EngineFailed("decoder", "bad frame", source_uri=PRIMARY.uri)
        await adapter.dispatch(event)
        handler.assert_awaited_once_with(event)
        assert adapter.state.buffer_state is BufferState.ERRORED
        assert adapter.state.last_error == "bad frame"
        assert sink.payloads(AnalyticsEvent.VIDEO_ERROR) == [
            {"video_id": "v1", "error_code": "decoder"}
        ]

    async def test_dismissed_failure_keeps_adapter_usable(
        self, engine: FakeEngine
    ) -> None:
        """An error the handler dismisses leaves state and commands intact."""
        adapter = _adapter(engine)
        adapter.set_error_handler(AsyncMock(return_value=False))
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(SourceLoaded(duration_ms=10_000))
        await adapter.dispatch(EngineFailed("network", source_uri="stale"))
        assert adapter.state.buffer_state is BufferState.READY
        assert adapter.state.last_error is None

        await adapter.set_playing(False)
        assert engine.calls[-1] == ("pause",)

    async def test_failure_without_handler(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(EngineFailed("network"))
        assert adapter.state.last_error == "network"

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (EngineStatus.LOADING, BufferState.BUFFERING),
            (EngineStatus.READY, BufferState.READY),
            (EngineStatus.ERROR, BufferState.ERRORED),
            (EngineStatus.IDLE, BufferState.IDLE),
        ],
    )
    async def test_status_mapping(
        self, engine: FakeEngine, status: EngineStatus, expected: BufferState
    ) -> None:
        adapter = _adapter(engine)
        await adapter.initialize(PRIMARY)
        await adapter.dispatch(StatusChanged(status))
        assert adapter.state.buffer_state is expected


class TestSettingsAndUnmount:
    def test_volume_range(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        with pytest.raises(ValueError):
            adapter.set_volume(1.5)

    def test_unsupported_speed(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        with pytest.raises(ValueError):
            adapter.set_speed(3.0)

    async def test_unmount(self, engine: FakeEngine) -> None:
        adapter = _adapter(engine)
        listener = _Listener()
        adapter.add_position_listener(listener)
        await adapter.initialize(PRIMARY)
        await adapter.unmount()

        assert engine.released is True
        assert adapter.active is False
        await adapter.dispatch(TimeUpdated(position_ms=5000))
        assert listener.changes == []
        assert await adapter.seek_to(1000) is False

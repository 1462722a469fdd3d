"""Test doubles for the engine, timers, analytics sink and questions."""

from __future__ import annotations

import asyncio
from typing import Any

from course_player.models.question import (
    FillBlankQuestion,
    FreeTextQuestion,
    MultiChoiceQuestion,
    QuestionOption,
    SingleChoiceQuestion,
)
from course_player.models.video import BufferHints, PlaybackState, VideoSource


class FakeEngine:
    """In-memory MediaEngine that records every command."""

    def __init__(
        self,
        *,
        auto_play: bool = True,
        fail_load: set[str] | None = None,
    ) -> None:
        self.playing = False
        self.auto_play = auto_play
        self.fail_load = fail_load or set()
        self.calls: list[tuple[Any, ...]] = []
        self.loaded: list[str] = []
        self.volume: float | None = None
        self.rate: float | None = None
        self.hints: BufferHints | None = None
        self.position_ms = 0
        self.released = False

    async def load(self, source: VideoSource) -> None:
        self.calls.append(("load", source.uri))
        if source.uri in self.fail_load:
            raise RuntimeError(f"cannot open {source.uri}")
        self.loaded.append(source.uri)
        self.playing = False

    async def play(self) -> None:
        self.calls.append(("play",))
        if self.auto_play:
            self.playing = True

    async def pause(self) -> None:
        self.calls.append(("pause",))
        self.playing = False

    async def seek(self, position_ms: int) -> None:
        self.calls.append(("seek", position_ms))
        self.position_ms = position_ms

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def set_rate(self, rate: float) -> None:
        self.rate = rate

    def configure_buffer(self, hints: BufferHints) -> None:
        self.hints = hints

    async def release(self) -> None:
        self.released = True

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualSleep:
    """Sleep that blocks until released; records requested durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []
        self._release = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await self._release.wait()

    def release(self) -> None:
        self._release.set()


async def instant_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


class RecordingSink:
    """Analytics sink that keeps every event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def track(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class FakePlayback:
    """PlaybackControl double for driving the question gate directly."""

    def __init__(self, duration_ms: int = 60_000) -> None:
        self.state = PlaybackState(duration_ms=duration_ms)
        self.calls: list[tuple[Any, ...]] = []

    async def set_playing(self, playing: bool) -> None:
        self.calls.append(("set_playing", playing))
        self.state.is_playing = playing

    async def seek_to(self, time_ms: int) -> bool:
        self.calls.append(("seek_to", time_ms))
        self.state.position_ms = time_ms
        return True


# -- question factories -----------------------------------------------------


def single_choice(
    qid: str,
    trigger_ms: int,
    *,
    correct: str = "A",
    options: tuple[str, ...] = ("A", "B", "C"),
    closeable: bool = False,
    time_limit_sec: int | None = None,
) -> SingleChoiceQuestion:
    return SingleChoiceQuestion(
        id=qid,
        trigger_time_ms=trigger_ms,
        options=tuple(QuestionOption(text=o) for o in options),
        correct_answers=frozenset({correct}),
        closeable=closeable,
        time_limit_sec=time_limit_sec,
    )


def multi_choice(
    qid: str,
    trigger_ms: int,
    *,
    correct: frozenset[str] = frozenset({"A", "C"}),
    options: tuple[str, ...] = ("A", "B", "C"),
) -> MultiChoiceQuestion:
    return MultiChoiceQuestion(
        id=qid,
        trigger_time_ms=trigger_ms,
        options=tuple(QuestionOption(text=o) for o in options),
        correct_answers=correct,
    )


def free_text(
    qid: str,
    trigger_ms: int,
    *,
    closeable: bool = False,
    time_limit_sec: int | None = None,
) -> FreeTextQuestion:
    return FreeTextQuestion(
        id=qid,
        trigger_time_ms=trigger_ms,
        closeable=closeable,
        time_limit_sec=time_limit_sec,
    )


def fill_blank(
    qid: str,
    trigger_ms: int,
    *,
    blanks: tuple[str, ...] = ("capital",),
) -> FillBlankQuestion:
    return FillBlankQuestion(id=qid, trigger_time_ms=trigger_ms, blanks=blanks)

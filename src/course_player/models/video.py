"""Video source and playback state models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class VideoFormat(StrEnum):
    """Container / streaming format of a media URL."""

    PROGRESSIVE = "progressive"
    HLS = "hls"
    DASH = "dash"
    UNKNOWN = "unknown"


class VideoType(StrEnum):
    """Course video flavours. Every type except BASIC gates seeking."""

    BASIC = "basic"
    TRACKABLE = "trackable"
    TRACKABLE_RANDOM = "trackableRandom"
    INTERACTIVE = "interactive"

    @property
    def gated(self) -> bool:
        return self is not VideoType.BASIC


class BufferState(StrEnum):
    IDLE = "idle"
    BUFFERING = "buffering"
    READY = "ready"
    ERRORED = "errored"


SUPPORTED_SPEEDS: tuple[float, ...] = (0.5, 1.0, 1.25, 1.5, 2.0)


@dataclass(frozen=True, slots=True)
class BufferHints:
    """Per-format buffering hints passed to the native engine."""

    min_buffer_ms: int
    max_buffer_ms: int
    buffer_for_playback_ms: int
    buffer_for_playback_after_rebuffer_ms: int


@dataclass(frozen=True, slots=True)
class VideoSource:
    """One playback candidate. Immutable once constructed.

    ``label`` records which rule produced the candidate
    (``primary``, ``typo_fix``, ``as_hls`` ...) for diagnostics.
    """

    uri: str
    format: VideoFormat
    buffer_hints: BufferHints
    headers: tuple[tuple[str, str], ...] = ()
    should_cache: bool = True
    label: str = "primary"

    @property
    def header_dict(self) -> dict[str, str]:
        return dict(self.headers)


@dataclass
class PlaybackState:
    """Live playback state, mutated only by the engine adapter."""

    position_ms: int = 0
    duration_ms: int = 0
    is_playing: bool = False
    volume: float = 1.0
    speed: float = 1.0
    buffer_state: BufferState = BufferState.IDLE
    last_error: str | None = field(default=None)

    @property
    def progress(self) -> float:
        """Fraction watched in ``[0, 1]``; 0 while the duration is unknown."""
        if self.duration_ms <= 0:
            return 0.0
        return min(1.0, self.position_ms / self.duration_ms)

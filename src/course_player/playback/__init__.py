"""Playback: source resolution, engine adapter, source fallback.

Quick start::

    from course_player.playback import (
        FallbackController,
        PlaybackEngineAdapter,
        resolve,
    )

    adapter = PlaybackEngineAdapter(engine_factory)
    fallback = FallbackController(resolve(url), adapter)
    adapter.set_error_handler(fallback.handle_error)
    await fallback.start()
"""

from course_player.playback.engine import (
    EngineFailed,
    EngineStatus,
    MediaEngine,
    PlaybackEngineAdapter,
    PositionChanged,
    SourceLoaded,
    StatusChanged,
    TimeUpdated,
)
from course_player.playback.fallback import (
    FallbackController,
    FallbackPhase,
    FallbackState,
)
from course_player.playback.sources import detect_format, resolve, validate_url

__all__ = [
    "EngineFailed",
    "EngineStatus",
    "FallbackController",
    "FallbackPhase",
    "FallbackState",
    "MediaEngine",
    "PlaybackEngineAdapter",
    "PositionChanged",
    "SourceLoaded",
    "StatusChanged",
    "TimeUpdated",
    "detect_format",
    "resolve",
    "validate_url",
]

"""Persisted playback preferences."""

from __future__ import annotations

from enum import StrEnum

import structlog

from course_player.playback.manifest import Manifest, Variant
from course_player.storage.kv_store import KeyValueStore

logger = structlog.get_logger()

VIDEO_QUALITY_KEY = "@player/video_quality"


class VideoQuality(StrEnum):
    """Quality preference; applies to every video until changed."""

    AUTO = "auto"
    HIGH = "high"
    DATA_SAVER = "data_saver"


async def load_video_quality(store: KeyValueStore) -> VideoQuality:
    """Stored preference, ``AUTO`` when missing or unrecognized."""
    raw = await store.get(VIDEO_QUALITY_KEY)
    if raw is None:
        return VideoQuality.AUTO
    try:
        return VideoQuality(raw)
    except ValueError:
        logger.warning("unknown_video_quality_ignored", value=raw)
        return VideoQuality.AUTO


async def save_video_quality(store: KeyValueStore, quality: VideoQuality) -> None:
    await store.set(VIDEO_QUALITY_KEY, quality.value)
    logger.info("video_quality_saved", quality=quality.value)


def select_variant(manifest: Manifest, quality: VideoQuality) -> Variant | None:
    """Pick an HLS rendition for ``quality``.

    ``AUTO`` leaves the choice to the engine's adaptive logic (None);
    ``HIGH`` takes the highest bandwidth, ``DATA_SAVER`` the lowest.
    """
    if quality is VideoQuality.AUTO or not manifest.variants:
        return None
    ranked = sorted(manifest.variants, key=lambda v: v.bandwidth)
    return ranked[-1] if quality is VideoQuality.HIGH else ranked[0]

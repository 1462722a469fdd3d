"""Local key-value storage for tokens and preferences."""

from course_player.storage.kv_store import JsonFileStore, KeyValueStore, MemoryStore
from course_player.storage.preferences import (
    VideoQuality,
    load_video_quality,
    save_video_quality,
    select_variant,
)

__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "VideoQuality",
    "load_video_quality",
    "save_video_quality",
    "select_variant",
]

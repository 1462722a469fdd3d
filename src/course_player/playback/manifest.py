"""HLS stream diagnostics: manifest validation and variant listing.

Used only for UI badges and troubleshooting. Every failure is logged
and returned as an invalid/empty result; nothing here may block
playback.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx
import structlog

from course_player.models.video import VideoFormat
from course_player.playback.sources import detect_format

logger = structlog.get_logger()

_PLAYLIST_HEADER = "#EXTM3U"
_STREAM_INF = "#EXT-X-STREAM-INF:"
_SEGMENT_INF = "#EXTINF:"
_ATTRIBUTE_RE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')


@dataclass(frozen=True, slots=True)
class StreamValidation:
    is_valid: bool
    message: str


@dataclass(frozen=True, slots=True)
class Variant:
    """One rendition advertised by a master playlist."""

    uri: str
    bandwidth: int
    resolution: str | None = None
    codecs: str | None = None

    @property
    def height(self) -> int | None:
        if not self.resolution or "x" not in self.resolution:
            return None
        try:
            return int(self.resolution.split("x", 1)[1])
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class Manifest:
    variants: list[Variant] = field(default_factory=list)
    segment_count: int = 0

    @property
    def is_master(self) -> bool:
        return bool(self.variants)


def _parse_attributes(raw: str) -> dict[str, str]:
    return {key: value.strip('"') for key, value in _ATTRIBUTE_RE.findall(raw)}


def parse_playlist(text: str, base_url: str) -> Manifest:
    """Parse an m3u8 body; variant URIs are resolved against ``base_url``.

    Variants are ordered by bandwidth, highest first.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or lines[0] != _PLAYLIST_HEADER:
        return Manifest()

    variants: list[Variant] = []
    segments = 0
    pending: dict[str, str] | None = None
    for line in lines[1:]:
        if line.startswith(_STREAM_INF):
            pending = _parse_attributes(line[len(_STREAM_INF) :])
            continue
        if line.startswith(_SEGMENT_INF):
            segments += 1
            continue
        if line.startswith("#"):
            continue
        if pending is not None:
            try:
                bandwidth = int(pending.get("BANDWIDTH", "0"))
            except ValueError:
                bandwidth = 0
            variants.append(
                Variant(
                    uri=urljoin(base_url, line),
                    bandwidth=bandwidth,
                    resolution=pending.get("RESOLUTION"),
                    codecs=pending.get("CODECS"),
                )
            )
            pending = None

    variants.sort(key=lambda v: v.bandwidth, reverse=True)
    return Manifest(variants=variants, segment_count=segments)


async def _fetch(url: str, client: httpx.AsyncClient) -> httpx.Response:
    return await client.get(
        url,
        headers={"Accept": "application/vnd.apple.mpegurl, application/x-mpegURL"},
        follow_redirects=True,
    )


async def validate_stream(url: str, client: httpx.AsyncClient) -> StreamValidation:
    """Check that ``url`` serves an HLS playlist."""
    log = logger.bind(url=url)
    if detect_format(url) is not VideoFormat.HLS:
        return StreamValidation(is_valid=False, message="Not an HLS stream URL")

    try:
        response = await _fetch(url, client)
    except httpx.HTTPError as exc:
        log.warning("stream_validation_failed", error=str(exc))
        return StreamValidation(is_valid=False, message=f"Request failed: {exc}")

    if response.status_code != 200:
        log.warning("stream_validation_failed", status_code=response.status_code)
        return StreamValidation(
            is_valid=False,
            message=f"Manifest returned HTTP {response.status_code}",
        )

    if not response.text.lstrip().startswith(_PLAYLIST_HEADER):
        log.warning("stream_validation_failed", error="missing playlist header")
        return StreamValidation(is_valid=False, message="Missing #EXTM3U header")

    log.debug("stream_validation_ok")
    return StreamValidation(is_valid=True, message="Valid HLS Stream detected")


async def parse_manifest(url: str, client: httpx.AsyncClient) -> Manifest:
    """Fetch ``url`` and list its variants; empty on any failure."""
    try:
        response = await _fetch(url, client)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("manifest_fetch_failed", url=url, error=str(exc))
        return Manifest()

    manifest = parse_playlist(response.text, str(response.url))
    logger.debug(
        "manifest_parsed",
        url=url,
        variants=len(manifest.variants),
        segments=manifest.segment_count,
    )
    return manifest

"""Source resolver: media URL -> ranked playback candidates.

The first candidate is always the URL as given. Fallbacks are derived
deterministically from the path extension:

    Primary              Fallbacks (in order)
    .3mu8 / .m3u typo    .m3u8, then the HLS row
    .m3u8 (HLS)          .mp4, .mpd
    .mpd  (DASH)         .m3u8, .mp4
    .mp4                 .m3u8, .mpd
    other progressive    .mp4, .m3u8, .mpd
    no extension         none

Host, query and fragment are preserved; duplicates are dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit, urlunsplit

from course_player.errors import InvalidUrlError
from course_player.models.video import BufferHints, VideoFormat, VideoSource

_ALLOWED_SCHEMES = frozenset({"http", "https"})

_STREAMING_HINTS = BufferHints(
    min_buffer_ms=15000,
    max_buffer_ms=50000,
    buffer_for_playback_ms=2500,
    buffer_for_playback_after_rebuffer_ms=5000,
)
_PROGRESSIVE_HINTS = BufferHints(
    min_buffer_ms=5000,
    max_buffer_ms=30000,
    buffer_for_playback_ms=1000,
    buffer_for_playback_after_rebuffer_ms=2000,
)

_ACCEPT_HEADERS: dict[VideoFormat, str] = {
    VideoFormat.HLS: "application/vnd.apple.mpegurl, application/x-mpegURL, "
    "application/octet-stream",
    VideoFormat.DASH: "application/dash+xml, video/mp4, application/octet-stream",
    VideoFormat.PROGRESSIVE: "video/*, application/octet-stream",
    VideoFormat.UNKNOWN: "video/*, application/octet-stream",
}

_HLS_EXT = ".m3u8"
_DASH_EXT = ".mpd"
_MP4_EXT = ".mp4"
_HLS_TYPOS = frozenset({".3mu8", ".m3u"})
_PROGRESSIVE_EXTS = frozenset({".mp4", ".m4v", ".webm", ".mov", ".mkv", ".avi"})

# (label, extension) pairs tried after the primary, keyed by primary format.
_COERCIONS: dict[str, tuple[tuple[str, str], ...]] = {
    _HLS_EXT: (("as_progressive", _MP4_EXT), ("as_dash", _DASH_EXT)),
    _DASH_EXT: (("as_hls", _HLS_EXT), ("as_progressive", _MP4_EXT)),
    _MP4_EXT: (("as_hls", _HLS_EXT), ("as_dash", _DASH_EXT)),
    "progressive": (
        ("as_progressive", _MP4_EXT),
        ("as_hls", _HLS_EXT),
        ("as_dash", _DASH_EXT),
    ),
}

_DISPLAY_NAMES: dict[VideoFormat, str] = {
    VideoFormat.HLS: "HLS Stream",
    VideoFormat.DASH: "DASH Stream",
    VideoFormat.PROGRESSIVE: "Progressive Video",
    VideoFormat.UNKNOWN: "Unknown Format",
}


@dataclass(frozen=True, slots=True)
class UrlValidation:
    """Non-raising URL check used for badges and diagnostics."""

    is_valid: bool
    format: VideoFormat
    message: str


def _split(raw_url: str) -> SplitResult:
    if not raw_url or not raw_url.strip():
        raise InvalidUrlError(raw_url, "URL is empty")
    try:
        parts = urlsplit(raw_url.strip())
    except ValueError as exc:
        raise InvalidUrlError(raw_url, f"URL does not parse: {exc}") from exc
    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        raise InvalidUrlError(raw_url, f"unsupported scheme {parts.scheme!r}")
    if not parts.netloc:
        raise InvalidUrlError(raw_url, "URL has no host")
    return parts


def _suffix(name: str) -> str:
    stem, dot, ext = name.rpartition(".")
    return dot + ext if stem and ext else ""


def _extension(parts: SplitResult) -> str:
    """Suffix of the last path segment; empty for a trailing slash."""
    return _suffix(parts.path.rpartition("/")[2]).lower()


def _format_of(parts: SplitResult) -> VideoFormat:
    ext = _extension(parts)
    if ext == _HLS_EXT:
        return VideoFormat.HLS
    if ext == _DASH_EXT:
        return VideoFormat.DASH
    if ext in _PROGRESSIVE_EXTS:
        return VideoFormat.PROGRESSIVE
    segments = {s.lower() for s in parts.path.split("/") if s}
    if "hls" in segments:
        return VideoFormat.HLS
    if "dash" in segments:
        return VideoFormat.DASH
    return VideoFormat.PROGRESSIVE


def _with_extension(parts: SplitResult, ext: str) -> SplitResult:
    # only the final segment changes; empty segments stay as sent
    head, sep, name = parts.path.rpartition("/")
    stem = name[: len(name) - len(_suffix(name))]
    return parts._replace(path=f"{head}{sep}{stem}{ext}")


def detect_format(url: str) -> VideoFormat:
    """Format of ``url``; UNKNOWN when it is not a valid http(s) URL."""
    try:
        return _format_of(_split(url))
    except InvalidUrlError:
        return VideoFormat.UNKNOWN


def is_streaming(fmt: VideoFormat) -> bool:
    return fmt in (VideoFormat.HLS, VideoFormat.DASH)


def buffer_hints_for(fmt: VideoFormat) -> BufferHints:
    return _STREAMING_HINTS if is_streaming(fmt) else _PROGRESSIVE_HINTS


def format_display_name(fmt: VideoFormat) -> str:
    return _DISPLAY_NAMES[fmt]


def make_source(
    uri: str,
    fmt: VideoFormat,
    *,
    label: str = "primary",
    headers: dict[str, str] | None = None,
) -> VideoSource:
    """Build a VideoSource with the buffering and header profile of ``fmt``."""
    merged = {"Accept": _ACCEPT_HEADERS[fmt], **(headers or {})}
    return VideoSource(
        uri=uri,
        format=fmt,
        buffer_hints=buffer_hints_for(fmt),
        headers=tuple(sorted(merged.items())),
        should_cache=not is_streaming(fmt),
        label=label,
    )


def resolve(raw_url: str, headers: dict[str, str] | None = None) -> list[VideoSource]:
    """Produce the ordered candidate list for ``raw_url``.

    Raises:
        InvalidUrlError: if the URL is empty, unparseable, has no host,
            or uses a scheme other than http/https.
    """
    parts = _split(raw_url)
    primary = urlunsplit(parts)
    candidates: list[VideoSource] = [
        make_source(primary, _format_of(parts), headers=headers)
    ]

    ext = _extension(parts)
    if ext in _HLS_TYPOS:
        parts = _with_extension(parts, _HLS_EXT)
        candidates.append(
            make_source(
                urlunsplit(parts),
                VideoFormat.HLS,
                label="typo_fix",
                headers=headers,
            )
        )
        ext = _HLS_EXT

    if ext in _COERCIONS:
        rules = _COERCIONS[ext]
    elif ext in _PROGRESSIVE_EXTS:
        rules = _COERCIONS["progressive"]
    else:
        rules = ()

    for label, new_ext in rules:
        coerced = _with_extension(parts, new_ext)
        candidates.append(
            make_source(
                urlunsplit(coerced),
                _format_of(coerced),
                label=label,
                headers=headers,
            )
        )

    seen: set[str] = set()
    unique: list[VideoSource] = []
    for source in candidates:
        if source.uri in seen:
            continue
        seen.add(source.uri)
        unique.append(source)
    return unique


def validate_url(url: str) -> UrlValidation:
    """Summarize ``url`` for UI badges without raising."""
    try:
        fmt = _format_of(_split(url))
    except InvalidUrlError as exc:
        return UrlValidation(
            is_valid=False,
            format=VideoFormat.UNKNOWN,
            message=f"Invalid URL: {exc.reason}",
        )
    return UrlValidation(
        is_valid=True,
        format=fmt,
        message=f"Valid {format_display_name(fmt)} detected",
    )

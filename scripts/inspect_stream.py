"""Media URL diagnostics CLI.

Resolves the playback candidates for a URL and, for HLS, validates the
manifest and lists its variants.

Usage:
    uv run python scripts/inspect_stream.py URL           # text report
    uv run python scripts/inspect_stream.py URL --json    # JSON output

Log lines go to stderr, so the JSON report can be piped.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from course_player.config import get_settings
from course_player.errors import InvalidUrlError
from course_player.logging_config import setup_logging
from course_player.models.video import VideoFormat
from course_player.playback.manifest import parse_manifest, validate_stream
from course_player.playback.sources import format_display_name, resolve
from course_player.storage.preferences import VideoQuality, select_variant


@dataclass
class StreamReport:
    url: str
    candidates: list[dict[str, Any]] = field(default_factory=list)
    stream_valid: bool | None = None
    stream_message: str = ""
    variants: list[dict[str, Any]] = field(default_factory=list)
    selected: dict[str, str | None] = field(default_factory=dict)
    error: str | None = None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Inspect a media URL")
    parser.add_argument("url", help="Media URL to inspect")
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON instead of a text report",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (defaults to the LOG_LEVEL setting)",
    )
    return parser.parse_args(argv)


async def build_report(url: str, client: httpx.AsyncClient) -> StreamReport:
    """Resolve ``url`` and check its primary candidate."""
    report = StreamReport(url=url)
    try:
        sources = resolve(url)
    except InvalidUrlError as exc:
        report.error = exc.reason
        return report

    report.candidates = [
        {"uri": s.uri, "format": s.format.value, "label": s.label} for s in sources
    ]
    primary = sources[0]
    if primary.format is not VideoFormat.HLS:
        return report

    validation = await validate_stream(primary.uri, client)
    report.stream_valid = validation.is_valid
    report.stream_message = validation.message
    if not validation.is_valid:
        return report

    manifest = await parse_manifest(primary.uri, client)
    report.variants = [asdict(v) for v in manifest.variants]
    for quality in VideoQuality:
        variant = select_variant(manifest, quality)
        report.selected[quality.value] = variant.uri if variant else None
    return report


def format_report(report: StreamReport) -> str:
    """Format the report as text and return the string."""
    lines: list[str] = [f"=== {report.url} ==="]
    if report.error:
        lines.append(f"  Invalid URL: {report.error}")
        return "\n".join(lines)

    lines.append("  Candidates:")
    for i, c in enumerate(report.candidates):
        name = format_display_name(VideoFormat(c["format"]))
        lines.append(f"    {i}. [{c['label']:<14}] {name:<18} {c['uri']}")

    if report.stream_valid is not None:
        lines.append("")
        lines.append(f"  Stream check: {report.stream_message}")
    if report.variants:
        lines.append("")
        lines.append(f"  {'Bandwidth':>10} {'Resolution':>11}  URI")
        for v in report.variants:
            lines.append(
                f"  {v['bandwidth']:>10} {v['resolution'] or '-':>11}  {v['uri']}"
            )
        lines.append("")
        for quality, uri in report.selected.items():
            lines.append(f"  {quality:<11} -> {uri or '(adaptive)'}")
    return "\n".join(lines)


async def run(url: str) -> StreamReport:
    settings = get_settings()
    async with httpx.AsyncClient(
        timeout=settings.stream_validation_timeout_sec
    ) as client:
        return await build_report(url, client)


def main() -> None:
    """Run the stream inspection CLI."""
    args = parse_args()
    settings = get_settings()
    setup_logging(settings, log_level=args.log_level, stream=sys.stderr)
    report = asyncio.run(run(args.url))

    if args.json_output:
        print(json.dumps(asdict(report), indent=2, ensure_ascii=False))
    else:
        print(format_report(report))


if __name__ == "__main__":
    main()

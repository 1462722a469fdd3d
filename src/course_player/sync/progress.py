"""ProgressSyncClient -- pushes watch progress to the course backend.

Create-then-update: the first push for a video is a
``POST /video/progress``, later pushes are
``PATCH /video/progress/{videoId}``. The choice follows the cached
record's ``already_submitted`` flag, which :meth:`fetch` seeds from the
server and a successful POST sets.

Push failures are logged and reported in :class:`PushResult`; they are
never raised. The next natural trigger pushes the latest state again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from course_player.errors import ApiError, MalformedProgressError
from course_player.models.progress import (
    ProgressSnapshot,
    VideoProgressRecord,
    build_progress_payload,
    merge_submission_log,
    parse_progress_record,
)
from course_player.models.question import Question, parse_questions

logger = structlog.get_logger()

PROGRESS_PATH = "/video/progress"
QUESTIONS_PATH = "/questions"


class ProgressApi(Protocol):
    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any: ...

    async def post(self, path: str, json: Any = None) -> Any: ...

    async def patch(self, path: str, json: Any = None) -> Any: ...


@dataclass(frozen=True, slots=True)
class PushResult:
    ok: bool
    method: str
    error: str | None = None


class ProgressSyncClient:
    """Keeps one cached :class:`VideoProgressRecord` per video."""

    def __init__(self, api: ProgressApi, *, course_id: str, chapter_id: str) -> None:
        self._api = api
        self._course_id = course_id
        self._chapter_id = chapter_id
        self._records: dict[str, VideoProgressRecord] = {}
        self._lock = asyncio.Lock()

    def record_for(self, video_id: str) -> VideoProgressRecord:
        """The cached record for ``video_id``, created on first use."""
        record = self._records.get(video_id)
        if record is None:
            record = VideoProgressRecord(video_id=video_id)
            self._records[video_id] = record
        return record

    async def fetch(self, video_id: str) -> VideoProgressRecord | None:
        """Seed the cache from the server; None when nothing is stored.

        A missing record (404), transport failures and malformed bodies
        all yield None.
        """
        path = f"{PROGRESS_PATH}/{video_id}"
        try:
            data = await self._api.get(path)
        except ApiError as exc:
            if exc.status_code == 404:
                logger.info("progress_not_found", video_id=video_id)
            else:
                logger.warning(
                    "progress_fetch_failed",
                    video_id=video_id,
                    status_code=exc.status_code,
                    error=exc.message,
                )
            return None

        if not isinstance(data, Mapping) or not data:
            return None
        try:
            remote = parse_progress_record(video_id, data)
        except MalformedProgressError as exc:
            logger.warning(
                "progress_fetch_malformed", video_id=video_id, error=str(exc)
            )
            return None
        record = self.record_for(video_id)
        record.merge_remote(remote)
        logger.info(
            "progress_fetched",
            video_id=video_id,
            current_duration_ms=remote.current_duration_ms,
            is_completed=remote.is_completed,
        )
        return record

    async def fetch_questions(self, video_id: str) -> list[Question]:
        """Question definitions for ``video_id``, ordered by trigger time.

        Raises:
            ApiError: if the request fails.
            MalformedQuestionError: if any question cannot be parsed.
        """
        data = await self._api.get(QUESTIONS_PATH, params={"videoId": video_id})
        if isinstance(data, Mapping):
            data = data.get("questions") or []
        questions = parse_questions(data or [])
        logger.info("questions_fetched", video_id=video_id, count=len(questions))
        return questions

    async def push(self, video_id: str, snapshot: ProgressSnapshot) -> PushResult:
        """Fold ``snapshot`` into the cached record and send it."""
        async with self._lock:
            record = self.record_for(video_id)
            self._apply(record, snapshot)
            payload = build_progress_payload(
                record,
                course_id=self._course_id,
                chapter_id=self._chapter_id,
                video_type=snapshot.video_type,
            )

            method = "PATCH" if record.already_submitted else "POST"
            try:
                if method == "PATCH":
                    data = await self._api.patch(
                        f"{PROGRESS_PATH}/{video_id}", json=payload
                    )
                else:
                    data = await self._api.post(PROGRESS_PATH, json=payload)
            except ApiError as exc:
                logger.warning(
                    "progress_push_failed",
                    video_id=video_id,
                    method=method,
                    status_code=exc.status_code,
                    error=exc.message,
                )
                return PushResult(ok=False, method=method, error=exc.message)

            record.already_submitted = True
            if isinstance(data, Mapping) and data:
                try:
                    record.merge_remote(parse_progress_record(video_id, data))
                except MalformedProgressError as exc:
                    logger.warning(
                        "progress_response_malformed",
                        video_id=video_id,
                        method=method,
                        error=str(exc),
                    )
                    return PushResult(ok=False, method=method, error=str(exc))
            logger.info(
                "progress_pushed",
                video_id=video_id,
                method=method,
                position_ms=record.current_duration_ms,
                is_completed=record.is_completed,
                submissions=len(record.submission_log),
            )
            return PushResult(ok=True, method=method)

    @staticmethod
    def _apply(record: VideoProgressRecord, snapshot: ProgressSnapshot) -> None:
        record.current_duration_ms = max(0, snapshot.position_ms)
        if snapshot.duration_ms > 0:
            record.total_duration_ms = snapshot.duration_ms
        record.is_completed = record.is_completed or snapshot.completed
        record.answered_question_ids |= snapshot.answered_question_ids
        record.submission_log = merge_submission_log(
            record.submission_log, snapshot.submission_log
        )
        if snapshot.last_correct_checkpoint_ms is not None:
            record.advance_checkpoint(snapshot.last_correct_checkpoint_ms)

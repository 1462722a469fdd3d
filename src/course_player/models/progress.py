"""Watch progress and question submission schemas.

The remote service holds the authoritative progress record; the
client keeps a :class:`VideoProgressRecord` cache that is updated in
place and merged with server-confirmed state after each sync.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from course_player.errors import MalformedProgressError
from course_player.models.question import QuestionType
from course_player.models.video import VideoType


class QuestionSession(BaseModel):
    """One attempt at a question: created on trigger, finalized on submit."""

    question_id: str
    question_type: QuestionType
    answer: str = ""
    is_correct: bool = False
    attempted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    time_to_answer_sec: float = 0.0
    timed_out: bool = False
    explanation: str = ""
    trigger_time_ms: int = 0

    def to_wire(self) -> dict[str, Any]:
        status = "1" if self.is_correct else "0"
        return {
            "questionId": self.question_id,
            "answer": self.answer,
            "isCorrect": self.is_correct,
            "attemptStatus": status,
            "points": status,
            "explanation": self.explanation,
            "timestamp": self.attempted_at.isoformat(),
            "timeToAnswer": round(self.time_to_answer_sec, 3),
            "questionType": self.question_type.value,
            "timedOut": self.timed_out,
            "triggerTimeMs": self.trigger_time_ms,
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> QuestionSession:
        is_correct = data.get("isCorrect")
        if is_correct is None:
            is_correct = str(data.get("attemptStatus", "0")) == "1"
        return cls(
            question_id=str(data["questionId"]),
            question_type=QuestionType(data.get("questionType", "free-text")),
            answer=str(data.get("answer") or ""),
            is_correct=bool(is_correct),
            attempted_at=data.get("timestamp") or datetime.now(UTC),
            time_to_answer_sec=float(data.get("timeToAnswer") or 0.0),
            timed_out=bool(data.get("timedOut", False)),
            explanation=str(data.get("explanation") or ""),
            trigger_time_ms=int(data.get("triggerTimeMs") or 0),
        )


def merge_submission_log(
    log: list[QuestionSession],
    entries: list[QuestionSession],
) -> list[QuestionSession]:
    """Return ``log`` with ``entries`` applied, one entry per question id.

    A newer entry for the same question replaces the old one and moves
    to the end, so the log stays ordered by latest attempt.
    """
    merged = list(log)
    for entry in entries:
        merged = [s for s in merged if s.question_id != entry.question_id]
        merged.append(entry)
    return merged


class VideoProgressRecord(BaseModel):
    """Client-side cache of the remote progress record for one video."""

    video_id: str
    current_duration_ms: int = 0
    total_duration_ms: int = 0
    is_completed: bool = False
    last_correct_checkpoint_ms: int = 0
    answered_question_ids: set[str] = Field(default_factory=set)
    submission_log: list[QuestionSession] = Field(default_factory=list)
    already_submitted: bool = False

    def record_submission(self, session: QuestionSession) -> None:
        self.submission_log = merge_submission_log(self.submission_log, [session])
        if session.is_correct:
            self.answered_question_ids.add(session.question_id)

    def advance_checkpoint(self, position_ms: int) -> bool:
        """Move the checkpoint forward; returns False if it would go back."""
        if position_ms <= self.last_correct_checkpoint_ms:
            return False
        self.last_correct_checkpoint_ms = position_ms
        return True

    def merge_remote(self, remote: VideoProgressRecord) -> None:
        """Fold server-confirmed state into this record.

        Completion is sticky, the checkpoint only moves forward, correct
        answers accumulate, and the submission log stays deduplicated.
        """
        self.is_completed = self.is_completed or remote.is_completed
        self.advance_checkpoint(remote.last_correct_checkpoint_ms)
        self.answered_question_ids |= remote.answered_question_ids
        if remote.total_duration_ms:
            self.total_duration_ms = remote.total_duration_ms
        if remote.current_duration_ms:
            self.current_duration_ms = remote.current_duration_ms
        known = {s.question_id for s in self.submission_log}
        missing = [s for s in remote.submission_log if s.question_id not in known]
        self.submission_log = missing + self.submission_log
        self.already_submitted = True


class ProgressSnapshot(BaseModel):
    """State handed to the sync client on each push."""

    position_ms: int
    duration_ms: int
    completed: bool
    video_type: VideoType
    answered_question_ids: set[str] = Field(default_factory=set)
    submission_log: list[QuestionSession] = Field(default_factory=list)
    last_correct_checkpoint_ms: int | None = None


def build_progress_payload(
    record: VideoProgressRecord,
    *,
    course_id: str,
    chapter_id: str,
    video_type: VideoType,
    submitted_at: datetime | None = None,
) -> dict[str, Any]:
    """Wire body for ``POST /video/progress`` and ``PATCH /video/progress/{id}``."""
    meta: dict[str, Any] = {
        "submission": [s.to_wire() for s in record.submission_log],
        "videoType": video_type.value,
        "correctlyAnsweredQuestionIds": sorted(record.answered_question_ids),
        "submittedAt": (submitted_at or datetime.now(UTC)).isoformat(),
    }
    if video_type.gated:
        meta["lastCorrectCheckpointMs"] = record.last_correct_checkpoint_ms
    return {
        "videoId": record.video_id,
        "courseId": course_id,
        "chapterId": chapter_id,
        "currentDurationMs": record.current_duration_ms,
        "totalDurationMs": record.total_duration_ms,
        "isCompleted": "true" if record.is_completed else "false",
        "meta": meta,
    }


def parse_progress_record(
    video_id: str,
    data: Mapping[str, Any],
) -> VideoProgressRecord:
    """Build a record from the ``GET /video/progress/{id}`` response body.

    Raises:
        MalformedProgressError: if a field has the wrong shape.
    """
    try:
        return _parse_progress_record(video_id, data)
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        raise MalformedProgressError(str(exc)) from exc


def _parse_progress_record(
    video_id: str,
    data: Mapping[str, Any],
) -> VideoProgressRecord:
    meta = data.get("meta") or {}
    completed = data.get("isCompleted", False)
    if isinstance(completed, str):
        completed = completed.lower() == "true"
    return VideoProgressRecord(
        video_id=str(data.get("videoId") or video_id),
        current_duration_ms=int(data.get("currentDurationMs") or 0),
        total_duration_ms=int(data.get("totalDurationMs") or 0),
        is_completed=bool(completed),
        last_correct_checkpoint_ms=int(meta.get("lastCorrectCheckpointMs") or 0),
        answered_question_ids=set(meta.get("correctlyAnsweredQuestionIds") or []),
        submission_log=merge_submission_log(
            [],
            [QuestionSession.from_wire(s) for s in meta.get("submission") or []],
        ),
        already_submitted=True,
    )

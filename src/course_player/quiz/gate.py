"""QuestionGate -- question triggering and seek gating for one video.

States::

    PLAYING --(trigger crossed)--> QUESTION_ACTIVE(batch, deadline)
    QUESTION_ACTIVE --(Submit | CountdownExpired)--> SUBMITTING
    SUBMITTING --(persisted)--> QUESTION_ACTIVE(next batch) | PLAYING
    QUESTION_ACTIVE --(CloseQuestion, closeable only)--> PLAYING

Everything enters through :meth:`QuestionGate.dispatch`. Position
reports come from the engine adapter's position listener; the
countdown runs as a task that dispatches ``CountdownExpired`` back in.

Trigger rules:
- A question fires when continuous playback moves the position across
  its trigger (``previous < t <= position``). Seeks never fire.
- A question fires at most once per session. A backward user seek past
  ``t`` re-arms it only if it was closed without an answer.
- Correctly answered questions never fire again, also after Replay.
- A wrong answer in a gated video rewinds (trackable/trackableRandom
  to the start, interactive to the last correct checkpoint) and
  re-arms every question after the rewind target that is not answered
  correctly.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from itertools import groupby
from typing import Protocol, assert_never

import structlog

from course_player.analytics import (
    AnalyticsEvent,
    AnalyticsSink,
    NullAnalyticsSink,
    safe_track,
)
from course_player.models.progress import QuestionSession, VideoProgressRecord
from course_player.models.question import DEFAULT_TIME_LIMIT_SEC, Question, QuestionType
from course_player.models.video import PlaybackState, VideoType
from course_player.playback.engine import PositionChanged
from course_player.quiz.batch import QuestionBatch
from course_player.quiz.scoring import Answer, answer_text, can_seek, has_answer, score

logger = structlog.get_logger()

END_TOLERANCE_MS = 500


class PlaybackControl(Protocol):
    """The slice of the engine adapter the gate drives."""

    state: PlaybackState

    async def set_playing(self, playing: bool) -> None: ...

    async def seek_to(self, time_ms: int) -> bool: ...


AnswerCallback = Callable[[list[QuestionSession]], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class GatePhase(StrEnum):
    PLAYING = "playing"
    QUESTION_ACTIVE = "question_active"
    SUBMITTING = "submitting"


# -- gate events ----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AnswerChanged:
    answer: Answer
    explanation: str | None = None
    index: int | None = None


@dataclass(frozen=True, slots=True)
class NextItem:
    pass


@dataclass(frozen=True, slots=True)
class PreviousItem:
    pass


@dataclass(frozen=True, slots=True)
class Submit:
    pass


@dataclass(frozen=True, slots=True)
class CloseQuestion:
    pass


@dataclass(frozen=True, slots=True)
class CountdownExpired:
    """Posted by the countdown task; ``token`` ties it to one activation."""

    token: int


@dataclass(frozen=True, slots=True)
class Replay:
    pass


GateEvent = (
    PositionChanged
    | AnswerChanged
    | NextItem
    | PreviousItem
    | Submit
    | CloseQuestion
    | CountdownExpired
    | Replay
)


def is_ended(
    position_ms: int,
    duration_ms: int,
    tolerance_ms: int = END_TOLERANCE_MS,
) -> bool:
    """End of video: within ``tolerance_ms`` of a known duration."""
    return duration_ms > 0 and position_ms >= duration_ms - tolerance_ms


def rewind_target(video_type: VideoType, checkpoint_ms: int) -> int | None:
    """Where a wrong answer sends the learner; None for ungated videos."""
    if video_type is VideoType.BASIC:
        return None
    elif video_type in (VideoType.TRACKABLE, VideoType.TRACKABLE_RANDOM):
        return 0
    elif video_type is VideoType.INTERACTIVE:
        return checkpoint_ms
    else:
        assert_never(video_type)


class QuestionGate:
    """Question trigger and seek gating state machine."""

    def __init__(
        self,
        questions: Sequence[Question],
        playback: PlaybackControl,
        record: VideoProgressRecord,
        *,
        video_type: VideoType,
        on_answered: AnswerCallback | None = None,
        analytics: AnalyticsSink | None = None,
        default_time_limit_sec: int = DEFAULT_TIME_LIMIT_SEC,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self._questions = sorted(questions, key=lambda q: (q.trigger_time_ms, q.id))
        self._playback = playback
        self.record = record
        self.video_type = video_type
        self._on_answered = on_answered
        self._analytics = analytics or NullAnalyticsSink()
        self._default_limit = default_time_limit_sec
        self._sleep = sleep
        self._clock = clock
        self._log = logger.bind(video_id=record.video_id, video_type=video_type.value)

        self.phase = GatePhase.PLAYING
        self.batch: QuestionBatch | None = None
        self.deadline: float | None = None
        self._shown_at = 0.0
        self._queue: deque[QuestionBatch] = deque()
        self._fired: set[str] = set()
        self._closed: set[str] = set()
        self._countdown_token = 0
        self._countdown_task: asyncio.Task[None] | None = None

    # -- queries --------------------------------------------------------------

    @property
    def questions(self) -> list[Question]:
        return list(self._questions)

    @property
    def fired_question_ids(self) -> frozenset[str]:
        return frozenset(self._fired)

    @property
    def pending_batches(self) -> int:
        return len(self._queue)

    def seek_allowed(self) -> bool:
        """Seek guard for the engine adapter."""
        if self.phase is not GatePhase.PLAYING:
            return False
        return can_seek(self.video_type, self.record.is_completed)

    def remaining_sec(self) -> float:
        if self.deadline is None:
            return 0.0
        return max(0.0, self.deadline - self._clock())

    # -- entry point ------------------------------------------------------------

    async def dispatch(self, event: GateEvent) -> None:
        if isinstance(event, PositionChanged):
            await self._on_position(event)
        elif isinstance(event, AnswerChanged):
            self._on_answer_changed(event)
        elif isinstance(event, NextItem):
            self._navigate(forward=True)
        elif isinstance(event, PreviousItem):
            self._navigate(forward=False)
        elif isinstance(event, Submit):
            await self._on_submit()
        elif isinstance(event, CloseQuestion):
            await self._on_close()
        elif isinstance(event, CountdownExpired):
            await self._on_countdown_expired(event)
        elif isinstance(event, Replay):
            await self._on_replay()
        else:
            assert_never(event)

    async def on_position(self, change: PositionChanged) -> None:
        """Position listener registered on the engine adapter."""
        await self.dispatch(change)

    async def close(self) -> None:
        """Stop the countdown; used on unmount."""
        self._cancel_countdown()

    # -- handlers -------------------------------------------------------------

    async def _on_position(self, change: PositionChanged) -> None:
        if change.seeked:
            if change.is_backward and change.user_initiated:
                self._rearm_closed(change.position_ms, change.previous_ms)
            return
        if change.is_backward:
            return

        due = [q for q in self._questions if self._is_due(q, change)]
        if not due:
            return
        for _, group in groupby(due, key=lambda q: q.trigger_time_ms):
            batch = QuestionBatch(list(group))
            self._fired.update(batch.question_ids)
            self._queue.append(batch)
        self._log.info(
            "questions_triggered",
            question_ids=[q.id for q in due],
            position_ms=change.position_ms,
        )
        if self.phase is GatePhase.PLAYING:
            await self._activate_next()

    def _on_answer_changed(self, event: AnswerChanged) -> None:
        if self.phase is not GatePhase.QUESTION_ACTIVE or self.batch is None:
            self._log.debug("answer_ignored", phase=self.phase.value)
            return
        self.batch.set_answer(
            event.answer,
            explanation=event.explanation,
            index=event.index,
        )

    def _navigate(self, *, forward: bool) -> None:
        if self.phase is not GatePhase.QUESTION_ACTIVE or self.batch is None:
            return
        moved = self.batch.next() if forward else self.batch.previous()
        if not moved:
            self._log.debug(
                "navigation_ignored", forward=forward, index=self.batch.index
            )

    async def _on_submit(self) -> None:
        if self.phase is not GatePhase.QUESTION_ACTIVE or self.batch is None:
            self._log.debug("submit_ignored", phase=self.phase.value)
            return
        if not self.batch.is_last:
            self._log.debug("submit_before_last_item_ignored", index=self.batch.index)
            return
        await self._submit(self.batch, timed_out=False)

    async def _on_countdown_expired(self, event: CountdownExpired) -> None:
        if (
            self.phase is not GatePhase.QUESTION_ACTIVE
            or self.batch is None
            or event.token != self._countdown_token
        ):
            return
        self._log.info("question_timeout", question_ids=self.batch.question_ids)
        await self._submit(self.batch, timed_out=True)

    async def _on_close(self) -> None:
        batch = self.batch
        if self.phase is not GatePhase.QUESTION_ACTIVE or batch is None:
            return
        if not batch.closeable:
            self._log.debug(
                "close_ignored_not_closeable", question_ids=batch.question_ids
            )
            return
        self._cancel_countdown()
        self._closed.update(batch.question_ids)
        for question in batch.questions:
            safe_track(
                self._analytics,
                AnalyticsEvent.QUESTION_CLOSED,
                {"video_id": self.record.video_id, "question_id": question.id},
            )
        self._log.info("question_closed", question_ids=batch.question_ids)
        await self._finish_batch()

    async def _on_replay(self) -> None:
        if self.phase is not GatePhase.PLAYING:
            self._log.debug("replay_ignored", phase=self.phase.value)
            return
        self._queue.clear()
        self._rearm_unanswered(0)
        safe_track(
            self._analytics,
            AnalyticsEvent.VIDEO_REPLAYED,
            {"video_id": self.record.video_id},
        )
        self._log.info("video_replay")
        await self._playback.seek_to(0)
        await self._playback.set_playing(True)

    # -- internals --------------------------------------------------------------

    def _is_due(self, question: Question, change: PositionChanged) -> bool:
        if question.id in self._fired:
            return False
        if question.id in self.record.answered_question_ids:
            return False
        t = question.trigger_time_ms
        crossed = change.previous_ms < t or t == change.previous_ms == 0
        return crossed and t <= change.position_ms

    async def _activate_next(self) -> None:
        if not self._queue:
            return
        batch = self._queue.popleft()
        limit = batch.time_limit_sec(self._default_limit)

        self.phase = GatePhase.QUESTION_ACTIVE
        self.batch = batch
        self._shown_at = self._clock()
        self.deadline = self._shown_at + limit
        self._countdown_token += 1
        self._countdown_task = asyncio.create_task(
            self._run_countdown(self._countdown_token, limit)
        )
        for question in batch.questions:
            safe_track(
                self._analytics,
                AnalyticsEvent.QUESTION_SHOWN,
                {
                    "video_id": self.record.video_id,
                    "question_id": question.id,
                    "question_type": question.type,
                    "trigger_time_ms": question.trigger_time_ms,
                },
            )
        self._log.info(
            "question_shown",
            question_ids=batch.question_ids,
            time_limit_sec=limit,
        )
        await self._playback.set_playing(False)

    async def _run_countdown(self, token: int, limit_sec: int) -> None:
        await self._sleep(limit_sec)
        await self.dispatch(CountdownExpired(token))

    def _cancel_countdown(self) -> None:
        self._countdown_token += 1
        self.deadline = None
        task, self._countdown_task = self._countdown_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _submit(self, batch: QuestionBatch, *, timed_out: bool) -> None:
        self._cancel_countdown()
        self.phase = GatePhase.SUBMITTING
        elapsed = max(0.0, self._clock() - self._shown_at)
        attempted_at = datetime.now(UTC)

        event_name = (
            AnalyticsEvent.QUESTION_TIMEOUT
            if timed_out
            else AnalyticsEvent.QUESTION_ANSWERED
        )
        sessions: list[QuestionSession] = []
        for question in batch.questions:
            answer = batch.answer_for(question.id)
            answered = has_answer(answer)
            is_correct = score(question, answer)
            session = QuestionSession(
                question_id=question.id,
                question_type=QuestionType(question.type),
                answer=answer_text(question, answer) if answered else "",
                is_correct=is_correct,
                attempted_at=attempted_at,
                time_to_answer_sec=elapsed,
                timed_out=timed_out,
                explanation=batch.explanations.get(question.id, ""),
                trigger_time_ms=question.trigger_time_ms,
            )
            self.record.record_submission(session)
            sessions.append(session)
            safe_track(
                self._analytics,
                event_name,
                {
                    "video_id": self.record.video_id,
                    "question_id": question.id,
                    "is_correct": is_correct,
                    "time_to_answer_sec": round(elapsed, 3),
                },
            )

        all_correct = all(s.is_correct for s in sessions)
        target: int | None = None
        if self.video_type.gated:
            if all_correct:
                self.record.advance_checkpoint(batch.trigger_time_ms)
            else:
                target = rewind_target(
                    self.video_type, self.record.last_correct_checkpoint_ms
                )

        self._log.info(
            "questions_submitted",
            question_ids=batch.question_ids,
            all_correct=all_correct,
            timed_out=timed_out,
            rewind_to_ms=target,
        )

        if self._on_answered is not None:
            try:
                await self._on_answered(sessions)
            except Exception:
                self._log.exception(
                    "answer_persist_failed", question_ids=batch.question_ids
                )

        if target is not None:
            self._queue.clear()
            self._rearm_unanswered(target)
            await self._playback.seek_to(target)
        await self._finish_batch()

    async def _finish_batch(self) -> None:
        self.batch = None
        self.deadline = None
        if self._queue:
            await self._activate_next()
            return
        self.phase = GatePhase.PLAYING
        await self._playback.set_playing(True)

    def _rearm_closed(self, position_ms: int, previous_ms: int) -> None:
        rearmed = [
            q.id
            for q in self._questions
            if q.id in self._closed
            and q.closeable
            and position_ms < q.trigger_time_ms <= previous_ms
        ]
        for question_id in rearmed:
            self._fired.discard(question_id)
            self._closed.discard(question_id)
        if rearmed:
            self._log.debug("questions_rearmed", question_ids=rearmed)

    def _rearm_unanswered(self, target_ms: int) -> None:
        answered = self.record.answered_question_ids
        rearmed = [
            q.id
            for q in self._questions
            if q.id in self._fired
            and q.id not in answered
            and q.trigger_time_ms >= target_ms
        ]
        for question_id in rearmed:
            self._fired.discard(question_id)
            self._closed.discard(question_id)
        if rearmed:
            self._log.debug("questions_rearmed", question_ids=rearmed)

"""Questions shown together at one trigger timestamp."""

from __future__ import annotations

from collections.abc import Sequence

from course_player.models.question import DEFAULT_TIME_LIMIT_SEC, Question
from course_player.quiz.scoring import Answer


class QuestionBatch:
    """Next/Previous navigation over questions sharing a trigger.

    Answers stay editable until the batch is submitted; a single
    question is a batch of one.
    """

    def __init__(self, questions: Sequence[Question]) -> None:
        if not questions:
            raise ValueError("QuestionBatch needs at least one question")
        self.questions: tuple[Question, ...] = tuple(questions)
        self.index = 0
        self.answers: dict[str, Answer] = {}
        self.explanations: dict[str, str] = {}

    @property
    def current(self) -> Question:
        return self.questions[self.index]

    @property
    def trigger_time_ms(self) -> int:
        return self.questions[0].trigger_time_ms

    @property
    def question_ids(self) -> list[str]:
        return [q.id for q in self.questions]

    @property
    def has_previous(self) -> bool:
        return self.index > 0

    @property
    def is_last(self) -> bool:
        return self.index == len(self.questions) - 1

    @property
    def closeable(self) -> bool:
        return all(q.closeable for q in self.questions)

    def time_limit_sec(self, default: int = DEFAULT_TIME_LIMIT_SEC) -> int:
        """Countdown for the whole batch: the sum of per-question limits."""
        return sum(q.effective_time_limit(default) for q in self.questions)

    def next(self) -> bool:
        if self.is_last:
            return False
        self.index += 1
        return True

    def previous(self) -> bool:
        if not self.has_previous:
            return False
        self.index -= 1
        return True

    def set_answer(
        self,
        answer: Answer,
        *,
        explanation: str | None = None,
        index: int | None = None,
    ) -> None:
        question = self.questions[self.index if index is None else index]
        self.answers[question.id] = answer
        if explanation is not None:
            self.explanations[question.id] = explanation

    def answer_for(self, question_id: str) -> Answer:
        return self.answers.get(question_id)

    def __len__(self) -> int:
        return len(self.questions)

    def __repr__(self) -> str:
        return (
            f"QuestionBatch(trigger_time_ms={self.trigger_time_ms}, "
            f"ids={self.question_ids}, index={self.index})"
        )

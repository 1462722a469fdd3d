"""Answer scoring and seek gating rules."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, assert_never

from course_player.models.question import (
    FillBlankQuestion,
    FreeTextQuestion,
    MultiChoiceQuestion,
    Question,
    SingleChoiceQuestion,
    dump_answer,
)
from course_player.models.video import VideoType

# A submitted answer: option index, option value, a collection of either
# (choice questions), free text, or a blank -> value map (fill-blank).
Answer = int | str | Iterable[int | str] | Mapping[str, str] | None


def can_seek(video_type: VideoType, is_completed: bool) -> bool:
    """Whether the user may seek.

    ``basic`` always allows it; every gated type unlocks only after the
    video has been watched to completion once.
    """
    if video_type is VideoType.BASIC:
        return True
    return is_completed


def _selected_options(
    question: SingleChoiceQuestion | MultiChoiceQuestion,
    answer: Answer,
) -> frozenset[str] | None:
    """Map indices/values to option texts; None when an index is invalid."""
    if answer is None:
        return frozenset()
    items: Iterable[Any]
    if isinstance(answer, (int, str)):
        items = (answer,)
    elif isinstance(answer, Mapping):
        items = answer.values()
    else:
        items = answer

    selected: set[str] = set()
    for item in items:
        if isinstance(item, bool):
            return None
        if isinstance(item, int):
            try:
                selected.add(question.option_text(item))
            except IndexError:
                return None
        else:
            selected.add(str(item).strip())
    return frozenset(selected)


def score(question: Question, answer: Answer) -> bool:
    """Exact, order-independent set equality for choice questions.

    Free-text and fill-blank answers are always correct.
    """
    if isinstance(question, (SingleChoiceQuestion, MultiChoiceQuestion)):
        selected = _selected_options(question, answer)
        return selected is not None and selected == question.correct_answers
    elif isinstance(question, FreeTextQuestion):
        return True
    elif isinstance(question, FillBlankQuestion):
        return True
    else:
        assert_never(question)


def has_answer(answer: Answer) -> bool:
    """True when the user has entered something for the question."""
    if answer is None:
        return False
    if isinstance(answer, str):
        return bool(answer.strip())
    if isinstance(answer, int):
        return True
    if isinstance(answer, Mapping):
        return any(str(v).strip() for v in answer.values())
    return any(True for _ in answer)


def answer_text(question: Question, answer: Answer) -> str:
    """Wire form of ``answer``; choice indices become option values."""
    if isinstance(question, (SingleChoiceQuestion, MultiChoiceQuestion)):
        selected = _selected_options(question, answer)
        if selected is not None:
            return ",".join(sorted(selected))
    return dump_answer(answer)

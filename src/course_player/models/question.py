"""Interactive question schemas.

A question is a tagged union over its ``type``. Scoring and rendering
switch on the concrete class, so adding a type means adding a class
here and a branch wherever questions are matched exhaustively.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from course_player.errors import MalformedQuestionError

DEFAULT_TIME_LIMIT_SEC = 30


class QuestionType(StrEnum):
    SINGLE_CHOICE = "single-choice"
    MULTI_CHOICE = "multi-choice"
    FREE_TEXT = "free-text"
    FILL_BLANK = "fill-blank"


class QuestionOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    image: str | None = None


class _QuestionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    trigger_time_ms: int = Field(ge=0)
    time_limit_sec: int | None = Field(default=None, gt=0)
    closeable: bool = False
    prompt: str = ""
    image: str | None = None
    explanation_required: bool = False

    def effective_time_limit(self, default: int = DEFAULT_TIME_LIMIT_SEC) -> int:
        """Countdown length in seconds; ``default`` when unset."""
        return self.time_limit_sec or default


class _ChoiceQuestion(_QuestionBase):
    options: tuple[QuestionOption, ...] = Field(min_length=1)
    correct_answers: frozenset[str] = Field(min_length=1)

    @model_validator(mode="after")
    def _correct_answers_are_options(self) -> _ChoiceQuestion:
        texts = {option.text for option in self.options}
        unknown = self.correct_answers - texts
        if unknown:
            raise ValueError(f"correct answers not among options: {sorted(unknown)}")
        return self

    def option_text(self, index: int) -> str:
        """Option value at ``index``; raises IndexError when out of range."""
        if index < 0:
            raise IndexError(index)
        return self.options[index].text


class SingleChoiceQuestion(_ChoiceQuestion):
    type: Literal["single-choice"] = "single-choice"

    @model_validator(mode="after")
    def _exactly_one_correct(self) -> SingleChoiceQuestion:
        if len(self.correct_answers) != 1:
            raise ValueError("single-choice question needs exactly one correct answer")
        return self


class MultiChoiceQuestion(_ChoiceQuestion):
    type: Literal["multi-choice"] = "multi-choice"


class FreeTextQuestion(_QuestionBase):
    type: Literal["free-text"] = "free-text"


class FillBlankQuestion(_QuestionBase):
    type: Literal["fill-blank"] = "fill-blank"
    blanks: tuple[str, ...] = ()
    multiple: bool = False


Question = Annotated[
    SingleChoiceQuestion | MultiChoiceQuestion | FreeTextQuestion | FillBlankQuestion,
    Field(discriminator="type"),
]

question_adapter: TypeAdapter[Question] = TypeAdapter(Question)

# Backend question type codes -> union tags.
_WIRE_TYPES: dict[str, QuestionType] = {
    "scq": QuestionType.SINGLE_CHOICE,
    "mcq": QuestionType.MULTI_CHOICE,
    "text": QuestionType.FREE_TEXT,
    "fillInTheBlanks": QuestionType.FILL_BLANK,
}

_TRUTHY = frozenset({"1", "true", "yes", "y"})


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _seconds_to_ms(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(round(float(value) * 1000))


def parse_question(raw: Mapping[str, Any]) -> Question:
    """Map a backend question payload into the tagged union.

    Backend shape: ``_id``, ``questionType`` (scq|mcq|text|fillInTheBlanks),
    ``meta.timeToShowQuestion`` (seconds), ``meta.timeToCompleteQuestion``,
    ``question.text``, ``options[].text``, ``answer`` (comma separated
    for mcq), ``closeable``, ``askForExplaination``, ``fill``.

    Raises:
        MalformedQuestionError: if the payload cannot be interpreted.
    """
    if not isinstance(raw, Mapping):
        raise MalformedQuestionError(f"question entry is not an object: {raw!r}")
    question_id = raw.get("_id") or raw.get("id")
    wire_type = raw.get("questionType")
    if not isinstance(wire_type, str) or wire_type not in _WIRE_TYPES:
        raise MalformedQuestionError(
            f"question {question_id!r}: unknown questionType {wire_type!r}"
        )

    meta = raw.get("meta") or {}
    if not isinstance(meta, Mapping):
        raise MalformedQuestionError(f"question {question_id!r}: meta is not an object")
    body = raw.get("question") or {}
    question_type = _WIRE_TYPES[wire_type]
    try:
        data: dict[str, Any] = {
            "type": question_type.value,
            "id": str(question_id or ""),
            "trigger_time_ms": _seconds_to_ms(meta.get("timeToShowQuestion")),
            "time_limit_sec": int(meta.get("timeToCompleteQuestion") or 0) or None,
            "closeable": _as_bool(raw.get("closeable", False)),
            "prompt": body.get("text", "") if isinstance(body, Mapping) else str(body),
            "image": body.get("image") if isinstance(body, Mapping) else None,
            "explanation_required": _as_bool(raw.get("askForExplaination", False)),
        }
    except (TypeError, ValueError) as exc:
        raise MalformedQuestionError(f"question {question_id!r}: {exc}") from exc

    if question_type in (QuestionType.SINGLE_CHOICE, QuestionType.MULTI_CHOICE):
        data["options"] = raw.get("options") or []
        answer = str(raw.get("answer") or "")
        if question_type is QuestionType.MULTI_CHOICE:
            data["correct_answers"] = [
                a.strip() for a in answer.split(",") if a.strip()
            ]
        else:
            data["correct_answers"] = [answer.strip()] if answer.strip() else []
    elif question_type is QuestionType.FILL_BLANK:
        fill = raw.get("fill") or {}
        if not isinstance(fill, Mapping):
            raise MalformedQuestionError(
                f"question {question_id!r}: fill is not an object"
            )
        box = str(fill.get("box") or "")
        data["blanks"] = [b.strip() for b in box.split(",") if b.strip()]
        data["multiple"] = fill.get("type") == "multiple"

    try:
        return question_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedQuestionError(f"question {question_id!r}: {exc}") from exc


def parse_questions(raw_items: Iterable[Mapping[str, Any]]) -> list[Question]:
    """Parse a list of backend questions, ordered by trigger time.

    Any malformed entry rejects the whole set.
    """
    if isinstance(raw_items, (str, Mapping)) or not isinstance(raw_items, Iterable):
        raise MalformedQuestionError(f"questions are not a list: {raw_items!r}")
    questions = [parse_question(item) for item in raw_items]
    ids = [q.id for q in questions]
    if len(ids) != len(set(ids)):
        raise MalformedQuestionError(f"duplicate question ids in {ids}")
    return sorted(questions, key=lambda q: (q.trigger_time_ms, q.id))


def dump_answer(answer: Any) -> str:
    """Serialize a submitted answer into its wire string.

    Choice answers are comma-joined, fill-blank maps are JSON objects.
    """
    if answer is None:
        return ""
    if isinstance(answer, str):
        return answer
    if isinstance(answer, Mapping):
        return json.dumps(dict(answer), sort_keys=True, ensure_ascii=False)
    if isinstance(answer, Iterable):
        return ",".join(str(item) for item in answer)
    return str(answer)

"""Pydantic schemas and value objects for course-player domain models."""

from course_player.models.progress import (
    ProgressSnapshot,
    QuestionSession,
    VideoProgressRecord,
)
from course_player.models.question import (
    FillBlankQuestion,
    FreeTextQuestion,
    MultiChoiceQuestion,
    Question,
    QuestionOption,
    QuestionType,
    SingleChoiceQuestion,
    parse_question,
    parse_questions,
)
from course_player.models.video import (
    BufferHints,
    BufferState,
    PlaybackState,
    VideoFormat,
    VideoSource,
    VideoType,
)

__all__ = [
    "BufferHints",
    "BufferState",
    "FillBlankQuestion",
    "FreeTextQuestion",
    "MultiChoiceQuestion",
    "PlaybackState",
    "ProgressSnapshot",
    "Question",
    "QuestionOption",
    "QuestionSession",
    "QuestionType",
    "SingleChoiceQuestion",
    "VideoFormat",
    "VideoProgressRecord",
    "VideoSource",
    "VideoType",
    "parse_question",
    "parse_questions",
]

"""Interactive questions: scoring, seek gating, trigger state machine."""

from course_player.quiz.batch import QuestionBatch
from course_player.quiz.gate import (
    AnswerChanged,
    CloseQuestion,
    CountdownExpired,
    GatePhase,
    NextItem,
    PreviousItem,
    QuestionGate,
    Replay,
    Submit,
    is_ended,
)
from course_player.quiz.scoring import can_seek, score

__all__ = [
    "AnswerChanged",
    "CloseQuestion",
    "CountdownExpired",
    "GatePhase",
    "NextItem",
    "PreviousItem",
    "QuestionBatch",
    "QuestionGate",
    "Replay",
    "Submit",
    "can_seek",
    "is_ended",
    "score",
]

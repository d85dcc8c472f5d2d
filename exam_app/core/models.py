"""Domain models for the exam service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union


class QuestionType(str, Enum):
    MCQ = "mcq"
    TRUE_FALSE = "tf"
    ESSAY = "essay"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class McqQuestion:
    """Multiple-choice question with a single correct choice."""

    question_type: ClassVar[QuestionType] = QuestionType.MCQ

    id: str
    text: str
    points: int
    choices: tuple[str, ...]
    correct_choice_index: int


@dataclass(frozen=True, slots=True)
class TrueFalseQuestion:
    question_type: ClassVar[QuestionType] = QuestionType.TRUE_FALSE

    id: str
    text: str
    points: int
    correct_answer: bool


@dataclass(frozen=True, slots=True)
class EssayQuestion:
    """Free-text question graded against one or more model answers."""

    question_type: ClassVar[QuestionType] = QuestionType.ESSAY

    id: str
    text: str
    points: int
    model_answers: tuple[str, ...]


Question = Union[McqQuestion, TrueFalseQuestion, EssayQuestion]


@dataclass(frozen=True, slots=True)
class ExamTest:
    """A shareable test definition. Never mutated once stored."""

    id: int
    creator_id: int
    title: str
    duration_minutes: int
    questions: tuple[Question, ...]
    share_code: str
    created_at: datetime
    description: str | None = None

    @property
    def total_points(self) -> int:
        return sum(question.points for question in self.questions)

    def find_question(self, question_id: str) -> Question | None:
        return next((q for q in self.questions if q.id == question_id), None)


@dataclass(frozen=True, slots=True)
class Answer:
    """One taker answer. ``None`` in every answer field means unanswered."""

    question_id: str
    choice_index: int | None = None
    boolean_answer: bool | None = None
    essay_text: str | None = None
    is_correct: bool | None = None
    points_awarded: int | None = None
    review_requested: bool = False


@dataclass(slots=True)
class Submission:
    """Persisted, scored result of one completed session."""

    id: int
    test_id: int
    taker_id: int
    answers: tuple[Answer, ...]
    start_time: datetime
    end_time: datetime
    score: int
    total_points: int
    has_review_request: bool = False

    def find_answer(self, question_id: str) -> Answer | None:
        return next((a for a in self.answers if a.question_id == question_id), None)


@dataclass(slots=True)
class ReviewRequest:
    """A taker's dispute against the automated score of one essay answer."""

    id: int
    submission_id: int
    question_id: str
    status: ReviewStatus
    created_at: datetime
    request_message: str | None = None


@dataclass(frozen=True, slots=True)
class Creator:
    id: int
    name: str
    username: str
    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class Taker:
    id: int
    name: str
    user_id: str | None = None


@dataclass(slots=True)
class StoreSnapshot:
    """Serializable content of the persistence store."""

    creators: list[Creator] = field(default_factory=list)
    tests: list[ExamTest] = field(default_factory=list)
    takers: list[Taker] = field(default_factory=list)
    submissions: list[Submission] = field(default_factory=list)
    review_requests: list[ReviewRequest] = field(default_factory=list)

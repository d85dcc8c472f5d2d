"""Service for managing test definitions and resolving share codes."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Sequence

from exam_app.constants.exam_constants import (
    MIN_DURATION_MINUTES,
    MIN_MCQ_CHOICES,
    MIN_QUESTION_POINTS,
    SHARE_CODE_MAX_ATTEMPTS,
)
from exam_app.core.errors import NotFoundError, TransientIOError, ValidationError
from exam_app.core.models import (
    EssayQuestion,
    ExamTest,
    McqQuestion,
    Question,
    TrueFalseQuestion,
)
from exam_app.core.services.exam_store import ExamStore
from exam_app.core.share_codes import ShareCodeGenerator
from exam_app.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)


class ExamCatalog:
    """Creates, validates and looks up tests. Stored tests are never mutated in place."""

    def __init__(
        self,
        store: ExamStore,
        share_codes: ShareCodeGenerator | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._share_codes = share_codes or ShareCodeGenerator()
        self._clock = clock

    def create_test(
        self,
        creator_id: int,
        title: str,
        duration_minutes: int,
        questions: Sequence[Question],
        description: str | None = None,
    ) -> ExamTest:
        if self._store.get_creator(creator_id) is None:
            raise ValidationError(f"Creator {creator_id} does not exist.")
        test = ExamTest(
            id=0,  # allocated by the store
            creator_id=creator_id,
            title=self._clean_title(title),
            description=self._clean_description(description),
            duration_minutes=self._validate_duration(duration_minutes),
            questions=self._validate_questions(questions),
            share_code=self._allocate_share_code(),
            created_at=self._clock(),
        )
        stored = self._store.create_test(test)
        logger.info("Created test %s '%s' with share code %s", stored.id, stored.title, stored.share_code)
        return stored

    def get_test(self, test_id: int) -> ExamTest:
        test = self._store.get_test(test_id)
        if test is None:
            raise NotFoundError(f"Test {test_id} not found.")
        return test

    def get_test_by_share_code(self, share_code: str) -> ExamTest:
        test = self._store.get_test_by_share_code(share_code.strip())
        if test is None:
            raise NotFoundError(f"No test matches share code '{share_code}'.")
        return test

    def list_tests_by_creator(self, creator_id: int) -> list[ExamTest]:
        return sorted(self._store.list_tests_by_creator(creator_id), key=lambda t: t.id)

    def update_test(
        self,
        test_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        duration_minutes: int | None = None,
        questions: Sequence[Question] | None = None,
    ) -> ExamTest:
        """Replace editable fields. Sessions already running keep their own copy."""
        existing = self.get_test(test_id)
        updated = replace(
            existing,
            title=existing.title if title is None else self._clean_title(title),
            description=existing.description if description is None else self._clean_description(description),
            duration_minutes=(
                existing.duration_minutes
                if duration_minutes is None
                else self._validate_duration(duration_minutes)
            ),
            questions=existing.questions if questions is None else self._validate_questions(questions),
        )
        return self._store.replace_test(updated)

    def delete_test(self, test_id: int) -> None:
        if not self._store.delete_test(test_id):
            raise NotFoundError(f"Test {test_id} not found.")
        logger.info("Deleted test %s", test_id)

    def _allocate_share_code(self) -> str:
        for _ in range(SHARE_CODE_MAX_ATTEMPTS):
            code = self._share_codes.next_code()
            if not self._store.share_code_exists(code):
                return code
        raise TransientIOError("Could not allocate a unique share code.")

    @staticmethod
    def _clean_title(title: str) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Test title must not be empty.")
        return cleaned

    @staticmethod
    def _clean_description(description: str | None) -> str | None:
        if description is None:
            return None
        cleaned = description.strip()
        return cleaned or None

    @staticmethod
    def _validate_duration(duration_minutes: int) -> int:
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError("Duration must be an integer number of minutes.")
        if duration_minutes < MIN_DURATION_MINUTES:
            raise ValidationError(f"Duration must be at least {MIN_DURATION_MINUTES} minute(s).")
        return duration_minutes

    def _validate_questions(self, questions: Sequence[Question]) -> tuple[Question, ...]:
        if not questions:
            raise ValidationError("A test must contain at least one question.")
        seen: set[str] = set()
        prepared: list[Question] = []
        for question in questions:
            if question.id in seen:
                raise ValidationError(f"Duplicate question id '{question.id}'.")
            seen.add(question.id)
            prepared.append(self._prepare_question(question))
        return tuple(prepared)

    @staticmethod
    def _prepare_question(question: Question) -> Question:
        """Validate and normalize a question before storage."""
        if not question.id or not question.id.strip():
            raise ValidationError("Question id must not be empty.")
        text = question.text.strip()
        if not text:
            raise ValidationError(f"Question '{question.id}' has no text.")
        if isinstance(question.points, bool) or not isinstance(question.points, int):
            raise ValidationError(f"Question '{question.id}' points must be an integer.")
        if question.points < MIN_QUESTION_POINTS:
            raise ValidationError(f"Question '{question.id}' must be worth at least {MIN_QUESTION_POINTS} point.")

        if isinstance(question, McqQuestion):
            choices = tuple(choice.strip() for choice in question.choices)
            if len(choices) < MIN_MCQ_CHOICES:
                raise ValidationError(f"Question '{question.id}' needs at least {MIN_MCQ_CHOICES} choices.")
            if any(not choice for choice in choices):
                raise ValidationError(f"Question '{question.id}' has an empty choice.")
            if not 0 <= question.correct_choice_index < len(choices):
                raise ValidationError(f"Question '{question.id}' correct choice index is out of range.")
            return replace(question, text=text, choices=choices)
        if isinstance(question, TrueFalseQuestion):
            return replace(question, text=text)
        if isinstance(question, EssayQuestion):
            models = tuple(model.strip() for model in question.model_answers)
            if not models or any(not model for model in models):
                raise ValidationError(f"Question '{question.id}' needs non-empty model answers.")
            return replace(question, text=text, model_answers=models)
        raise ValidationError(f"Unsupported question type {type(question).__name__}.")

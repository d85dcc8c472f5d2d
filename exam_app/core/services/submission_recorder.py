"""Turns a scored answer set into a persisted submission."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Sequence

from exam_app.constants.exam_constants import SUBMISSION_CLOCK_SKEW_SECONDS
from exam_app.core.errors import ValidationError
from exam_app.core.models import (
    Answer,
    EssayQuestion,
    ExamTest,
    McqQuestion,
    Question,
    Submission,
    TrueFalseQuestion,
)
from exam_app.core.scoring import score_answers
from exam_app.core.services.exam_store import ExamStore
from exam_app.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)


class SubmissionRecorder:
    """Validates and persists submissions.

    The recorder creates exactly one submission per successful ``record`` call.
    Guarding against a second call for the same session is the session's job.
    Failures of the store propagate unchanged; nothing is retried here.
    """

    def __init__(self, store: ExamStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        scored_answers: Sequence[Answer],
        total_score: int,
        total_points: int,
        start_time: datetime,
        end_time: datetime,
        test_id: int,
        taker_id: int,
    ) -> Submission:
        test = self._store.get_test(test_id)
        if test is None:
            raise ValidationError(f"Test {test_id} does not exist.")
        if self._store.get_taker(taker_id) is None:
            raise ValidationError(f"Taker {taker_id} does not exist.")

        start_time = _as_utc(start_time)
        end_time = self._validate_times(start_time, _as_utc(end_time))
        answers = tuple(scored_answers)
        self._validate_answers(test, answers)
        self._validate_totals(test, answers, total_score, total_points)

        submission = self._store.create_submission(
            Submission(
                id=0,  # allocated by the store
                test_id=test.id,
                taker_id=taker_id,
                answers=answers,
                start_time=start_time,
                end_time=end_time,
                score=total_score,
                total_points=total_points,
                has_review_request=False,
            )
        )
        logger.info(
            "Recorded submission %s for test %s by taker %s: %s/%s",
            submission.id,
            test.id,
            taker_id,
            submission.score,
            submission.total_points,
        )
        return submission

    def _validate_times(self, start_time: datetime, end_time: datetime) -> datetime:
        if end_time < start_time:
            raise ValidationError("End time must not precede start time.")
        latest_allowed = self._clock() + timedelta(seconds=SUBMISSION_CLOCK_SKEW_SECONDS)
        if end_time > _as_utc(latest_allowed):
            raise ValidationError("End time lies in the future.")
        return end_time

    @staticmethod
    def _validate_answers(test: ExamTest, answers: tuple[Answer, ...]) -> None:
        if len(answers) != len(test.questions):
            raise ValidationError(
                f"Expected {len(test.questions)} answers, received {len(answers)}."
            )
        for question, answer in zip(test.questions, answers):
            if answer.question_id != question.id:
                raise ValidationError("Answers must follow the question order of the test.")
            _validate_answer_shape(question, answer)

    @staticmethod
    def _validate_totals(
        test: ExamTest,
        answers: tuple[Answer, ...],
        total_score: int,
        total_points: int,
    ) -> None:
        expected = score_answers(test, answers)
        if total_points != expected.total_points:
            raise ValidationError("Total points do not match the test.")
        for submitted, rescored in zip(answers, expected.answers):
            if (submitted.is_correct, submitted.points_awarded) != (
                rescored.is_correct,
                rescored.points_awarded,
            ):
                raise ValidationError(
                    f"Answer for question '{submitted.question_id}' is not scored correctly."
                )
        if total_score != expected.score:
            raise ValidationError("Score does not equal the sum of awarded points.")
        if not 0 <= total_score <= total_points:
            raise ValidationError("Score must lie between 0 and the total points.")


def _validate_answer_shape(question: Question, answer: Answer) -> None:
    populated = {
        "choiceIndex": answer.choice_index is not None,
        "booleanAnswer": answer.boolean_answer is not None,
        "essayText": answer.essay_text is not None,
    }
    if isinstance(question, McqQuestion):
        allowed = "choiceIndex"
    elif isinstance(question, TrueFalseQuestion):
        allowed = "booleanAnswer"
    elif isinstance(question, EssayQuestion):
        allowed = "essayText"
    else:
        raise ValidationError(f"Unsupported question type {type(question).__name__}.")
    extra = [name for name, is_set in populated.items() if is_set and name != allowed]
    if extra:
        raise ValidationError(
            f"Answer for question '{question.id}' sets {', '.join(extra)}, expected only {allowed}."
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

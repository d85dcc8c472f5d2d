"""Scoring of a taker's answer set against a test.

Everything here is pure: no I/O, no clock, no mutation of the inputs.

Essay questions are scored with a deliberately coarse heuristic: the answer is
correct when its text contains any model answer, ignoring case. It accepts
partial and garbled matches, which is why takers can contest essay scores
through review requests. Keep it as is; the review workflow depends on it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Sequence

from exam_app.core.errors import ProgrammingContractViolation
from exam_app.core.models import (
    Answer,
    EssayQuestion,
    ExamTest,
    McqQuestion,
    Question,
    TrueFalseQuestion,
)


@dataclass(frozen=True, slots=True)
class ScoredAnswers:
    """Answers with correctness filled in, plus the aggregate score."""

    answers: tuple[Answer, ...]
    score: int
    total_points: int


def score_answers(test: ExamTest, answers: Sequence[Answer]) -> ScoredAnswers:
    """Score one answer per question, in test order."""
    if len(answers) != len(test.questions):
        raise ProgrammingContractViolation(
            f"Expected {len(test.questions)} answers for test {test.id}, got {len(answers)}."
        )

    scored: list[Answer] = []
    for question, answer in zip(test.questions, answers):
        if answer.question_id != question.id:
            raise ProgrammingContractViolation(
                f"Answer for question {answer.question_id!r} does not line up with "
                f"question {question.id!r}."
            )
        is_correct = is_answer_correct(question, answer)
        scored.append(
            replace(
                answer,
                is_correct=is_correct,
                points_awarded=question.points if is_correct else 0,
            )
        )

    return ScoredAnswers(
        answers=tuple(scored),
        score=sum(answer.points_awarded or 0 for answer in scored),
        total_points=total_points(test),
    )


def total_points(test: ExamTest) -> int:
    """Maximum attainable score; independent of any answers."""
    return sum(question.points for question in test.questions)


def is_answer_correct(question: Question, answer: Answer) -> bool:
    if isinstance(question, McqQuestion):
        return answer.choice_index is not None and answer.choice_index == question.correct_choice_index
    if isinstance(question, TrueFalseQuestion):
        return answer.boolean_answer is not None and answer.boolean_answer == question.correct_answer
    if isinstance(question, EssayQuestion):
        return essay_matches(answer.essay_text, question.model_answers)
    raise ProgrammingContractViolation(
        f"Cannot score question of unsupported type {type(question).__name__}."
    )


def essay_matches(essay_text: str | None, model_answers: Sequence[str]) -> bool:
    """Case-insensitive containment of any model answer in the essay text."""
    if essay_text is None or not essay_text.strip():
        return False
    haystack = essay_text.lower()
    return any(model.lower() in haystack for model in model_answers if model)

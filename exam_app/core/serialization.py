"""Conversion between domain models and JSON-ready dictionaries.

The wire format uses the camelCase field names of the public API. The same
dictionaries are written to the store snapshot file, so every ``*_from_dict``
helper must accept what the matching ``*_to_dict`` helper produces.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from exam_app.core.models import (
    Answer,
    Creator,
    EssayQuestion,
    ExamTest,
    McqQuestion,
    Question,
    QuestionType,
    ReviewRequest,
    ReviewStatus,
    StoreSnapshot,
    Submission,
    Taker,
    TrueFalseQuestion,
)


def question_to_dict(question: Question, include_answer_key: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": question.id,
        "type": question.question_type.value,
        "text": question.text,
        "points": question.points,
    }
    if isinstance(question, McqQuestion):
        payload["choices"] = list(question.choices)
        if include_answer_key:
            payload["correctChoiceIndex"] = question.correct_choice_index
    elif isinstance(question, TrueFalseQuestion):
        if include_answer_key:
            payload["correctAnswer"] = question.correct_answer
    elif isinstance(question, EssayQuestion):
        if include_answer_key:
            payload["modelAnswers"] = list(question.model_answers)
    return payload


def question_from_dict(data: dict[str, Any]) -> Question:
    """Rebuild a question written by ``question_to_dict``."""
    question_type = QuestionType(data["type"])
    if question_type is QuestionType.MCQ:
        return McqQuestion(
            id=data["id"],
            text=data["text"],
            points=data["points"],
            choices=tuple(data["choices"]),
            correct_choice_index=data["correctChoiceIndex"],
        )
    if question_type is QuestionType.TRUE_FALSE:
        return TrueFalseQuestion(
            id=data["id"],
            text=data["text"],
            points=data["points"],
            correct_answer=data["correctAnswer"],
        )
    return EssayQuestion(
        id=data["id"],
        text=data["text"],
        points=data["points"],
        model_answers=tuple(data["modelAnswers"]),
    )



def exam_to_dict(test: ExamTest, include_answer_key: bool = True) -> dict[str, Any]:
    return {
        "id": test.id,
        "creatorId": test.creator_id,
        "title": test.title,
        "description": test.description,
        "durationMinutes": test.duration_minutes,
        "questions": [question_to_dict(q, include_answer_key) for q in test.questions],
        "shareCode": test.share_code,
        "createdAt": _format_datetime(test.created_at),
        "totalPoints": test.total_points,
    }


def exam_from_dict(data: dict[str, Any]) -> ExamTest:
    return ExamTest(
        id=data["id"],
        creator_id=data["creatorId"],
        title=data["title"],
        description=data.get("description"),
        duration_minutes=data["durationMinutes"],
        questions=tuple(question_from_dict(q) for q in data["questions"]),
        share_code=data["shareCode"],
        created_at=_parse_datetime(data["createdAt"]),
    )


def answer_to_dict(answer: Answer) -> dict[str, Any]:
    return {
        "questionId": answer.question_id,
        "choiceIndex": answer.choice_index,
        "booleanAnswer": answer.boolean_answer,
        "essayText": answer.essay_text,
        "isCorrect": answer.is_correct,
        "pointsAwarded": answer.points_awarded,
        "reviewRequested": answer.review_requested,
    }


def answer_from_dict(data: dict[str, Any]) -> Answer:
    return Answer(
        question_id=data["questionId"],
        choice_index=data.get("choiceIndex"),
        boolean_answer=data.get("booleanAnswer"),
        essay_text=data.get("essayText"),
        is_correct=data.get("isCorrect"),
        points_awarded=data.get("pointsAwarded"),
        review_requested=bool(data.get("reviewRequested", False)),
    )


def submission_to_dict(submission: Submission) -> dict[str, Any]:
    return {
        "id": submission.id,
        "testId": submission.test_id,
        "takerId": submission.taker_id,
        "answers": [answer_to_dict(a) for a in submission.answers],
        "startTime": _format_datetime(submission.start_time),
        "endTime": _format_datetime(submission.end_time),
        "score": submission.score,
        "totalPoints": submission.total_points,
        "hasReviewRequest": submission.has_review_request,
    }


def submission_from_dict(data: dict[str, Any]) -> Submission:
    return Submission(
        id=data["id"],
        test_id=data["testId"],
        taker_id=data["takerId"],
        answers=tuple(answer_from_dict(a) for a in data["answers"]),
        start_time=_parse_datetime(data["startTime"]),
        end_time=_parse_datetime(data["endTime"]),
        score=data["score"],
        total_points=data["totalPoints"],
        has_review_request=bool(data.get("hasReviewRequest", False)),
    )


def review_request_to_dict(request: ReviewRequest) -> dict[str, Any]:
    return {
        "id": request.id,
        "submissionId": request.submission_id,
        "questionId": request.question_id,
        "requestMessage": request.request_message,
        "status": request.status.value,
        "createdAt": _format_datetime(request.created_at),
    }


def review_request_from_dict(data: dict[str, Any]) -> ReviewRequest:
    return ReviewRequest(
        id=data["id"],
        submission_id=data["submissionId"],
        question_id=data["questionId"],
        request_message=data.get("requestMessage"),
        status=ReviewStatus(data["status"]),
        created_at=_parse_datetime(data["createdAt"]),
    )


def creator_to_dict(creator: Creator) -> dict[str, Any]:
    return {
        "id": creator.id,
        "name": creator.name,
        "username": creator.username,
        "userId": creator.user_id,
    }


def creator_from_dict(data: dict[str, Any]) -> Creator:
    return Creator(
        id=data["id"],
        name=data["name"],
        username=data["username"],
        user_id=data.get("userId"),
    )


def taker_to_dict(taker: Taker) -> dict[str, Any]:
    return {"id": taker.id, "name": taker.name, "userId": taker.user_id}


def taker_from_dict(data: dict[str, Any]) -> Taker:
    return Taker(id=data["id"], name=data["name"], user_id=data.get("userId"))


def snapshot_to_dict(snapshot: StoreSnapshot) -> dict[str, Any]:
    return {
        "creators": [creator_to_dict(c) for c in snapshot.creators],
        "tests": [exam_to_dict(t) for t in snapshot.tests],
        "takers": [taker_to_dict(t) for t in snapshot.takers],
        "submissions": [submission_to_dict(s) for s in snapshot.submissions],
        "reviewRequests": [review_request_to_dict(r) for r in snapshot.review_requests],
    }


def snapshot_from_dict(data: dict[str, Any]) -> StoreSnapshot:
    return StoreSnapshot(
        creators=[creator_from_dict(c) for c in data.get("creators", [])],
        tests=[exam_from_dict(t) for t in data.get("tests", [])],
        takers=[taker_from_dict(t) for t in data.get("takers", [])],
        submissions=[submission_from_dict(s) for s in data.get("submissions", [])],
        review_requests=[review_request_from_dict(r) for r in data.get("reviewRequests", [])],
    )


def _format_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)

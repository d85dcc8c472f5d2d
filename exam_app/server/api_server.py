"""FastAPI server that exposes the catalog, submission, review and session endpoints."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Annotated, Any, Iterator, Literal, Union

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr
from pydantic.alias_generators import to_camel
import uvicorn

from exam_app.constants.about import APP_NAME, APP_VERSION
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_app.core.errors import (
    NotFoundError,
    ProgrammingContractViolation,
    TransientIOError,
    ValidationError,
)
from exam_app.core.exam_manager import ExamManager
from exam_app.core.markdown_math_renderer import renderer
from exam_app.core.models import Answer, EssayQuestion, McqQuestion, Question, TrueFalseQuestion
from exam_app.core.serialization import (
    answer_to_dict,
    creator_to_dict,
    exam_to_dict,
    question_to_dict,
    review_request_to_dict,
    submission_to_dict,
    taker_to_dict,
)
from exam_app.core.services.exam_session import ExamSession, SessionSnapshot
from exam_app.utils.time_utils import format_countdown

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreatorPayload(_CamelModel):
    name: StrictStr
    username: StrictStr
    user_id: StrictStr | None = None


class TakerPayload(_CamelModel):
    name: StrictStr
    user_id: StrictStr | None = None


class McqQuestionPayload(_CamelModel):
    type: Literal["mcq"]
    id: StrictStr
    text: StrictStr
    points: StrictInt
    choices: list[StrictStr]
    correct_choice_index: StrictInt

    def to_question(self) -> McqQuestion:
        return McqQuestion(
            id=self.id,
            text=self.text,
            points=self.points,
            choices=tuple(self.choices),
            correct_choice_index=self.correct_choice_index,
        )


class TfQuestionPayload(_CamelModel):
    type: Literal["tf"]
    id: StrictStr
    text: StrictStr
    points: StrictInt
    correct_answer: StrictBool

    def to_question(self) -> TrueFalseQuestion:
        return TrueFalseQuestion(id=self.id, text=self.text, points=self.points, correct_answer=self.correct_answer)


class EssayQuestionPayload(_CamelModel):
    type: Literal["essay"]
    id: StrictStr
    text: StrictStr
    points: StrictInt
    model_answers: list[StrictStr]

    def to_question(self) -> EssayQuestion:
        return EssayQuestion(id=self.id, text=self.text, points=self.points, model_answers=tuple(self.model_answers))


QuestionPayload = Annotated[
    Union[McqQuestionPayload, TfQuestionPayload, EssayQuestionPayload],
    Field(discriminator="type"),
]


class ExamPayload(_CamelModel):
    creator_id: StrictInt
    title: StrictStr
    duration_minutes: StrictInt
    questions: list[QuestionPayload]
    description: StrictStr | None = None


class ExamUpdatePayload(_CamelModel):
    title: StrictStr | None = None
    description: StrictStr | None = None
    duration_minutes: StrictInt | None = None
    questions: list[QuestionPayload] | None = None


class AnswerPayload(_CamelModel):
    question_id: StrictStr
    choice_index: StrictInt | None = None
    boolean_answer: StrictBool | None = None
    essay_text: StrictStr | None = None
    is_correct: StrictBool | None = None
    points_awarded: StrictInt | None = None

    def to_answer(self) -> Answer:
        return Answer(
            question_id=self.question_id,
            choice_index=self.choice_index,
            boolean_answer=self.boolean_answer,
            essay_text=self.essay_text,
            is_correct=self.is_correct,
            points_awarded=self.points_awarded,
        )


class SubmissionPayload(_CamelModel):
    test_id: StrictInt
    taker_id: StrictInt
    answers: list[AnswerPayload]
    score: StrictInt
    total_points: StrictInt
    start_time: datetime
    end_time: datetime


class ReviewRequestPayload(_CamelModel):
    submission_id: StrictInt
    question_id: StrictStr
    request_message: StrictStr | None = None


class ReviewStatusPayload(_CamelModel):
    status: StrictStr


class SessionStartPayload(_CamelModel):
    share_code: StrictStr
    taker_id: StrictInt


class QuestionIndexPayload(_CamelModel):
    index: StrictInt


class SessionAnswerPayload(_CamelModel):
    choice_index: StrictInt | None = None
    boolean_answer: StrictBool | None = None
    essay_text: StrictStr | None = None


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP responses."""
    try:
        yield
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TransientIOError as exc:
        logger.warning("Transient failure: %s", exc)
        raise HTTPException(status_code=503, detail=TransientIOError.user_message) from exc
    except ProgrammingContractViolation:
        raise
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _to_questions(payloads: list[QuestionPayload]) -> list[Question]:
    return [payload.to_question() for payload in payloads]


def _render_question(question: Question) -> dict[str, Any]:
    payload = question_to_dict(question, include_answer_key=False)
    payload["html"] = renderer.render_fragment(question.text)
    if isinstance(question, McqQuestion):
        payload["choicesHtml"] = [renderer.render_inline(choice) for choice in question.choices]
    return payload


def _session_view(snapshot: SessionSnapshot) -> dict[str, Any]:
    """Taker-facing view of a session. Answer keys are never included."""
    test = snapshot.test
    view: dict[str, Any] = {
        "sessionId": snapshot.session_id,
        "takerId": snapshot.taker_id,
        "state": snapshot.state.value,
        "currentIndex": snapshot.current_index,
        "remainingSeconds": snapshot.remaining_seconds,
        "remainingTime": format_countdown(snapshot.remaining_seconds),
        "answers": [answer_to_dict(answer) for answer in snapshot.answers],
        "flaggedIndices": sorted(snapshot.flagged_indices),
        "questionStatuses": [status.value for status in snapshot.question_statuses],
        "submissionId": snapshot.submission_id,
        "errorMessage": snapshot.error_message,
        "test": None,
        "currentQuestion": None,
    }
    if test is not None:
        view["test"] = {
            "id": test.id,
            "title": test.title,
            "description": test.description,
            "durationMinutes": test.duration_minutes,
            "totalPoints": test.total_points,
            "questionCount": len(test.questions),
        }
        view["currentQuestion"] = _render_question(test.questions[snapshot.current_index])
    return view


def _get_exam_manager_dependency(exam_manager: ExamManager):
    def _dependency() -> ExamManager:
        return exam_manager

    return _dependency


def create_api_app(exam_manager: ExamManager) -> FastAPI:
    """Create a FastAPI application wired to the provided exam manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    manager_dep = _get_exam_manager_dependency(exam_manager)

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.get("/health")
    def health() -> dict[str, object]:
        return {"status": "ok", "version": APP_VERSION}

    # --- Creators and takers ---

    @app.post("/creators", status_code=201)
    def create_creator(
        payload: CreatorPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            creator = manager.register_creator(payload.name, payload.username, payload.user_id)
        return creator_to_dict(creator)

    @app.get("/creators/{username}")
    def get_creator(username: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            creator = manager.get_creator_by_username(username)
        return creator_to_dict(creator)

    @app.get("/creators/{creator_id}/tests")
    def list_creator_tests(creator_id: int, manager: ExamManager = Depends(manager_dep)) -> list[dict[str, object]]:
        with _domain_errors():
            tests = manager.list_tests_by_creator(creator_id)
        return [exam_to_dict(test) for test in tests]

    @app.post("/takers", status_code=201)
    def create_taker(payload: TakerPayload, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            taker = manager.register_taker(payload.name, payload.user_id)
        return taker_to_dict(taker)

    # --- Tests ---

    @app.post("/tests", status_code=201)
    def create_test(payload: ExamPayload, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            test = manager.create_test(
                payload.creator_id,
                payload.title,
                payload.duration_minutes,
                _to_questions(payload.questions),
                payload.description,
            )
        return exam_to_dict(test)

    @app.get("/tests/share/{share_code}")
    def get_test_by_share_code(share_code: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            test = manager.get_test_by_share_code(share_code)
        return exam_to_dict(test)

    @app.get("/tests/{test_id}")
    def get_test(test_id: int, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            test = manager.get_test(test_id)
        return exam_to_dict(test)

    @app.put("/tests/{test_id}")
    def update_test(
        test_id: int,
        payload: ExamUpdatePayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            questions = _to_questions(payload.questions) if payload.questions is not None else None
            test = manager.update_test(
                test_id,
                title=payload.title,
                description=payload.description,
                duration_minutes=payload.duration_minutes,
                questions=questions,
            )
        return exam_to_dict(test)

    @app.delete("/tests/{test_id}", status_code=204)
    def delete_test(test_id: int, manager: ExamManager = Depends(manager_dep)) -> Response:
        with _domain_errors():
            manager.delete_test(test_id)
        return Response(status_code=204)

    @app.get("/tests/{test_id}/submissions")
    def list_test_submissions(test_id: int, manager: ExamManager = Depends(manager_dep)) -> list[dict[str, object]]:
        with _domain_errors():
            submissions = manager.list_submissions_for_test(test_id)
        return [submission_to_dict(submission) for submission in submissions]

    # --- Submissions and reviews ---

    @app.post("/submissions", status_code=201)
    def create_submission(
        payload: SubmissionPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            submission = manager.record_submission(
                [answer.to_answer() for answer in payload.answers],
                payload.score,
                payload.total_points,
                payload.start_time,
                payload.end_time,
                payload.test_id,
                payload.taker_id,
            )
        return submission_to_dict(submission)

    @app.get("/submissions/{submission_id}")
    def get_submission(submission_id: int, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            submission = manager.get_submission(submission_id)
        return submission_to_dict(submission)

    @app.get("/submissions/{submission_id}/review-requests")
    def list_review_requests(
        submission_id: int,
        manager: ExamManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        with _domain_errors():
            requests = manager.list_review_requests(submission_id)
        return [review_request_to_dict(request) for request in requests]

    @app.post("/review-requests", status_code=201)
    def create_review_request(
        payload: ReviewRequestPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            request = manager.request_review(payload.submission_id, payload.question_id, payload.request_message)
        return review_request_to_dict(request)

    @app.get("/review-requests/{request_id}")
    def get_review_request(request_id: int, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            request = manager.get_review_request(request_id)
        return review_request_to_dict(request)

    @app.put("/review-requests/{request_id}")
    def resolve_review_request(
        request_id: int,
        payload: ReviewStatusPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        with _domain_errors():
            request = manager.resolve_review(request_id, payload.status)
        return review_request_to_dict(request)

    # --- Live sessions ---

    def _session(session_id: str, manager: ExamManager) -> ExamSession:
        with _domain_errors():
            return manager.get_session(session_id)

    @app.post("/sessions", status_code=201)
    def start_session(payload: SessionStartPayload, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        with _domain_errors():
            session = manager.start_session(payload.share_code, payload.taker_id)
        return _session_view(session.snapshot())

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        return _session_view(_session(session_id, manager).snapshot())

    @app.post("/sessions/{session_id}/select")
    def select_question(
        session_id: str,
        payload: QuestionIndexPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        session = _session(session_id, manager)
        session.select_question(payload.index)
        return _session_view(session.snapshot())

    @app.put("/sessions/{session_id}/answer")
    def update_answer(
        session_id: str,
        payload: SessionAnswerPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        session = _session(session_id, manager)
        with _domain_errors():
            session.update_answer(
                choice_index=payload.choice_index,
                boolean_answer=payload.boolean_answer,
                essay_text=payload.essay_text,
            )
        return _session_view(session.snapshot())

    @app.delete("/sessions/{session_id}/answer")
    def clear_answer(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        session = _session(session_id, manager)
        with _domain_errors():
            session.clear_answer()
        return _session_view(session.snapshot())

    @app.post("/sessions/{session_id}/flag")
    def toggle_flag(
        session_id: str,
        payload: QuestionIndexPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        session = _session(session_id, manager)
        session.toggle_flag(payload.index)
        return _session_view(session.snapshot())

    @app.post("/sessions/{session_id}/submit")
    def submit_session(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        session = _session(session_id, manager)
        with _domain_errors():
            session.submit()
        return _session_view(session.snapshot())

    @app.post("/sessions/{session_id}/retry")
    def retry_session(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        session = _session(session_id, manager)
        with _domain_errors():
            session.retry_submit()
        return _session_view(session.snapshot())

    @app.delete("/sessions/{session_id}", status_code=204)
    def close_session(session_id: str, manager: ExamManager = Depends(manager_dep)) -> Response:
        with _domain_errors():
            manager.close_session(session_id)
        return Response(status_code=204)

    return app


def run_api_server(
    exam_manager: ExamManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(exam_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()

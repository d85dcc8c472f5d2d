"""Service driving one taker through a timed test.

State machine::

    LOADING -> IN_PROGRESS -> SUBMITTING -> COMPLETED
       |                          |
       +--------> ERROR <---------+

All mutations run under one lock, so each operation completes before the next
starts. Scoring and recording happen outside the lock while the session sits
in SUBMITTING; that state is the guard against a second submission and it is
only left for COMPLETED or ERROR. The countdown is the only thing that moves
the session without an explicit call, and it is cancelled as soon as the
session leaves IN_PROGRESS or is closed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
import logging
from threading import Lock
from typing import Callable
from uuid import uuid4

from exam_app.constants.exam_constants import SECONDS_PER_MINUTE, TICK_INTERVAL_SECONDS
from exam_app.core.errors import ExamError, ProgrammingContractViolation, ValidationError
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
from exam_app.core.services.exam_catalog import ExamCatalog
from exam_app.core.services.session_timer import CountdownTicker
from exam_app.core.services.submission_recorder import SubmissionRecorder
from exam_app.utils.time_utils import Clock, format_countdown, utcnow

logger = logging.getLogger(__name__)

TickerFactory = Callable[[Callable[[], object]], CountdownTicker]


class SessionState(str, Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    ERROR = "error"


class QuestionStatus(str, Enum):
    """Progress-indicator status of one question position."""

    CURRENT = "current"
    FLAGGED = "flagged"
    ANSWERED = "answered"
    UNANSWERED = "unanswered"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of a session at one point in time."""

    session_id: str
    taker_id: int
    state: SessionState
    test: ExamTest | None
    current_index: int
    answers: tuple[Answer, ...]
    flagged_indices: frozenset[int]
    question_statuses: tuple[QuestionStatus, ...]
    remaining_seconds: int
    submission_id: int | None
    error_message: str | None


class ExamSession:
    """Owns the in-flight state of one taker's attempt at one test."""

    def __init__(
        self,
        catalog: ExamCatalog,
        recorder: SubmissionRecorder,
        taker_id: int,
        *,
        clock: Clock = utcnow,
        ticker_factory: TickerFactory | None = CountdownTicker,
        session_id: str | None = None,
    ) -> None:
        self._lock = Lock()
        self._catalog = catalog
        self._recorder = recorder
        self._clock = clock
        self._ticker_factory = ticker_factory
        self.session_id = session_id or uuid4().hex
        self.taker_id = taker_id

        self._state = SessionState.LOADING
        self._test: ExamTest | None = None
        self._answers: list[Answer] = []
        self._current_index = 0
        self._flagged: set[int] = set()
        self._remaining_seconds = 0
        self._start_time: datetime | None = None
        self._end_time: datetime | None = None
        self._submitted_answers: tuple[Answer, ...] = ()
        self._submission: Submission | None = None
        self._error: BaseException | None = None
        self._failed_while_submitting = False
        self._ticker: CountdownTicker | None = None
        self._finished_at: datetime | None = None

    # --- Loading ---

    def load(self, share_code: str) -> ExamTest:
        """Resolve the share code and start the countdown."""
        with self._lock:
            if self._state is not SessionState.LOADING:
                raise RuntimeError("Session has already been loaded.")
            try:
                test = self._catalog.get_test_by_share_code(share_code)
            except ExamError as exc:
                self._state = SessionState.ERROR
                self._error = exc
                self._finished_at = self._clock()
                logger.warning("Session %s failed to load '%s': %s", self.session_id, share_code, exc)
                raise

            self._test = test
            self._answers = [Answer(question_id=q.id) for q in test.questions]
            self._current_index = 0
            self._flagged.clear()
            self._remaining_seconds = test.duration_minutes * SECONDS_PER_MINUTE
            self._start_time = self._clock()
            self._state = SessionState.IN_PROGRESS
            if self._ticker_factory is not None:
                self._ticker = self._ticker_factory(self.tick)
                self._ticker.start()
        logger.info(
            "Session %s started test %s for taker %s (%d s)",
            self.session_id,
            test.id,
            self.taker_id,
            self._remaining_seconds,
        )
        return test

    # --- Navigation and answers ---

    def select_question(self, index: int) -> int:
        """Move to ``index``; out-of-range indices leave the position unchanged."""
        with self._lock:
            if self._state is SessionState.IN_PROGRESS and 0 <= index < len(self._answers):
                self._current_index = index
            return self._current_index

    def next_question(self) -> int:
        with self._lock:
            index = self._current_index + 1
        return self.select_question(index)

    def previous_question(self) -> int:
        with self._lock:
            index = self._current_index - 1
        return self.select_question(index)

    def update_answer(
        self,
        *,
        choice_index: int | None = None,
        boolean_answer: bool | None = None,
        essay_text: str | None = None,
    ) -> Answer:
        """Apply an answer patch to the current question only."""
        with self._lock:
            self._require_in_progress()
            question = self._current_question()
            patch = _answer_patch(question, choice_index, boolean_answer, essay_text)
            index = self._current_index
            self._answers[index] = replace(self._answers[index], **patch)
            return self._answers[index]

    def clear_answer(self) -> Answer:
        with self._lock:
            self._require_in_progress()
            index = self._current_index
            self._answers[index] = Answer(question_id=self._answers[index].question_id)
            return self._answers[index]

    def toggle_flag(self, index: int) -> frozenset[int]:
        """Flag or unflag a question for the taker's own follow-up. No scoring effect."""
        with self._lock:
            if self._state is SessionState.IN_PROGRESS and 0 <= index < len(self._answers):
                self._flagged ^= {index}
            return frozenset(self._flagged)

    # --- Countdown ---

    def tick(self) -> SessionState:
        """Advance the countdown by one tick; submits automatically at zero."""
        with self._lock:
            if self._state is not SessionState.IN_PROGRESS:
                return self._state
            self._remaining_seconds = max(0, self._remaining_seconds - TICK_INTERVAL_SECONDS)
            if self._remaining_seconds > 0:
                return self._state
            started = self._begin_submit_locked("timeout")
        if started:
            self._finish_submit(raise_on_error=False)
        return self.state

    # --- Submission ---

    def submit(self) -> Submission | None:
        """Score and record the answers; returns None if a submission is already under way."""
        with self._lock:
            started = self._begin_submit_locked("manual")
        if not started:
            return None
        return self._finish_submit(raise_on_error=True)

    def retry_submit(self) -> Submission | None:
        """Explicitly retry a submission that failed. The timer stays stopped."""
        with self._lock:
            if self._state is not SessionState.ERROR or not self._failed_while_submitting:
                raise RuntimeError("Only a failed submission can be retried.")
            self._state = SessionState.SUBMITTING
            self._error = None
            self._finished_at = None
        logger.info("Session %s retrying submission", self.session_id)
        return self._finish_submit(raise_on_error=True)

    def close(self) -> None:
        """Tear the session down; the countdown never fires afterwards."""
        with self._lock:
            self._stop_ticker_locked()
        logger.info("Session %s closed in state %s", self.session_id, self.state.value)

    # --- Queries ---

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def error(self) -> BaseException | None:
        with self._lock:
            return self._error

    @property
    def submission(self) -> Submission | None:
        with self._lock:
            return self._submission

    @property
    def test(self) -> ExamTest | None:
        with self._lock:
            return self._test

    @property
    def finished_at(self) -> datetime | None:
        """When the session reached COMPLETED or ERROR; None while it can still move."""
        with self._lock:
            return self._finished_at

    def get_answers(self) -> list[Answer]:
        with self._lock:
            return list(self._answers)

    def get_remaining_seconds(self) -> int:
        with self._lock:
            return self._remaining_seconds

    def format_remaining_time(self) -> str:
        return format_countdown(self.get_remaining_seconds())

    def is_question_answered(self, index: int) -> bool:
        with self._lock:
            return self._is_answered_locked(index)

    def has_active_timer(self) -> bool:
        with self._lock:
            return self._ticker is not None and self._ticker.is_running()

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                session_id=self.session_id,
                taker_id=self.taker_id,
                state=self._state,
                test=self._test,
                current_index=self._current_index,
                answers=tuple(self._answers),
                flagged_indices=frozenset(self._flagged),
                question_statuses=tuple(self._status_locked(i) for i in range(len(self._answers))),
                remaining_seconds=self._remaining_seconds,
                submission_id=self._submission.id if self._submission else None,
                error_message=_describe_error(self._error),
            )

    # --- Internals ---

    def _require_in_progress(self) -> None:
        if self._state is not SessionState.IN_PROGRESS:
            raise RuntimeError(f"Answers cannot be changed while the session is {self._state.value}.")

    def _current_question(self) -> Question:
        assert self._test is not None
        return self._test.questions[self._current_index]

    def _begin_submit_locked(self, reason: str) -> bool:
        if self._state is not SessionState.IN_PROGRESS:
            logger.debug("Session %s ignored %s submit in state %s", self.session_id, reason, self._state.value)
            return False
        self._state = SessionState.SUBMITTING
        self._end_time = self._clock()
        self._submitted_answers = tuple(self._answers)
        self._stop_ticker_locked()
        logger.info("Session %s submitting (%s)", self.session_id, reason)
        return True

    def _finish_submit(self, raise_on_error: bool) -> Submission | None:
        assert self._test is not None
        try:
            scored = score_answers(self._test, self._submitted_answers)
            submission = self._recorder.record(
                scored.answers,
                scored.score,
                scored.total_points,
                self._start_time,
                self._end_time,
                self._test.id,
                self.taker_id,
            )
        except ExamError as exc:
            self._fail(exc)
            if raise_on_error:
                raise
            return None
        except Exception as exc:
            self._fail(exc)
            raise

        with self._lock:
            self._submission = submission
            self._state = SessionState.COMPLETED
            self._finished_at = self._clock()
        logger.info("Session %s completed as submission %s", self.session_id, submission.id)
        return submission

    def _fail(self, exc: BaseException) -> None:
        with self._lock:
            self._state = SessionState.ERROR
            self._error = exc
            self._failed_while_submitting = True
            self._finished_at = self._clock()
        logger.warning("Session %s submission failed: %s", self.session_id, exc)

    def _stop_ticker_locked(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel(wait=False)
            self._ticker = None

    def _is_answered_locked(self, index: int) -> bool:
        if self._test is None or not 0 <= index < len(self._answers):
            return False
        question = self._test.questions[index]
        answer = self._answers[index]
        if isinstance(question, McqQuestion):
            return answer.choice_index is not None
        if isinstance(question, TrueFalseQuestion):
            return answer.boolean_answer is not None
        return answer.essay_text is not None and bool(answer.essay_text.strip())

    def _status_locked(self, index: int) -> QuestionStatus:
        if index == self._current_index:
            return QuestionStatus.CURRENT
        if index in self._flagged:
            return QuestionStatus.FLAGGED
        if self._is_answered_locked(index):
            return QuestionStatus.ANSWERED
        return QuestionStatus.UNANSWERED


def _answer_patch(
    question: Question,
    choice_index: int | None,
    boolean_answer: bool | None,
    essay_text: str | None,
) -> dict[str, object]:
    """Validate a patch against the question type and return the fields to set."""
    provided = {
        "choice_index": choice_index,
        "boolean_answer": boolean_answer,
        "essay_text": essay_text,
    }
    provided = {name: value for name, value in provided.items() if value is not None}
    if not provided:
        raise ValidationError("No answer value was provided.")

    if isinstance(question, McqQuestion):
        expected = "choice_index"
    elif isinstance(question, TrueFalseQuestion):
        expected = "boolean_answer"
    elif isinstance(question, EssayQuestion):
        expected = "essay_text"
    else:
        raise ProgrammingContractViolation(f"Unsupported question type {type(question).__name__}.")

    if set(provided) != {expected}:
        raise ValidationError(f"Question '{question.id}' only accepts {expected}.")

    value = provided[expected]
    if isinstance(question, McqQuestion):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("Choice index must be an integer.")
        if not 0 <= value < len(question.choices):
            raise ValidationError(f"Choice index {value} is out of range.")
    elif isinstance(question, TrueFalseQuestion):
        if not isinstance(value, bool):
            raise ValidationError("True/false answers must be booleans.")
    elif not isinstance(value, str):
        raise ValidationError("Essay answers must be text.")
    return {expected: value}


def _describe_error(error: BaseException | None) -> str | None:
    if error is None:
        return None
    user_message = getattr(error, "user_message", None)
    return user_message or str(error)

"""Business logic shared by the API layer and the command-line entry point."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import Sequence

from exam_app.constants.exam_constants import SESSION_RETENTION_SECONDS
from exam_app.core.errors import NotFoundError, ValidationError
from exam_app.core.exam_importer import load_exam_from_file
from exam_app.core.models import (
    Answer,
    Creator,
    ExamTest,
    Question,
    ReviewRequest,
    ReviewStatus,
    Submission,
    Taker,
)
from exam_app.core.services.exam_catalog import ExamCatalog
from exam_app.core.services.exam_session import ExamSession, SessionState
from exam_app.core.services.exam_store import ExamStore
from exam_app.core.services.participants import ParticipantRegistry
from exam_app.core.services.review_workflow import ReviewWorkflow
from exam_app.core.services.session_timer import CountdownTicker
from exam_app.core.services.submission_recorder import SubmissionRecorder
from exam_app.core.share_codes import ShareCodeGenerator
from exam_app.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)

_FINISHED_STATES = (SessionState.COMPLETED, SessionState.ERROR)


class ExamManager:
    """Facade for exam services: Catalog, Participants, Recorder, Review Workflow and live sessions."""

    def __init__(
        self,
        store: ExamStore | None = None,
        *,
        clock: Clock = utcnow,
        share_codes: ShareCodeGenerator | None = None,
        start_timers: bool = True,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._start_timers = start_timers

        # Services
        self._store = store or ExamStore()
        self._catalog = ExamCatalog(self._store, share_codes, clock=clock)
        self._participants = ParticipantRegistry(self._store)
        self._recorder = SubmissionRecorder(self._store, clock=clock)
        self._reviews = ReviewWorkflow(self._store, clock=clock)
        self._sessions: dict[str, ExamSession] = {}

    # --- Participants Delegation ---

    def register_creator(self, name: str, username: str, user_id: str | None = None) -> Creator:
        return self._participants.register_creator(name, username, user_id)

    def get_creator_by_username(self, username: str) -> Creator:
        return self._participants.get_creator_by_username(username)

    def ensure_default_creator(self) -> Creator:
        return self._participants.ensure_default_creator()

    def register_taker(self, name: str, user_id: str | None = None) -> Taker:
        return self._participants.register_taker(name, user_id)

    def get_taker(self, taker_id: int) -> Taker:
        return self._participants.get_taker(taker_id)

    # --- Catalog Delegation ---

    def create_test(
        self,
        creator_id: int,
        title: str,
        duration_minutes: int,
        questions: Sequence[Question],
        description: str | None = None,
    ) -> ExamTest:
        return self._catalog.create_test(creator_id, title, duration_minutes, questions, description)

    def import_exam_file(self, file_path: Path, creator_id: int | None = None) -> ExamTest:
        """Load a test from the text format and add it to the catalog."""
        imported = load_exam_from_file(file_path)
        owner_id = creator_id if creator_id is not None else self.ensure_default_creator().id
        test = self.create_test(
            owner_id,
            imported.title,
            imported.duration_minutes,
            imported.questions,
            imported.description,
        )
        logger.info("Imported %s as test %s (share code %s)", file_path, test.id, test.share_code)
        return test

    def get_test(self, test_id: int) -> ExamTest:
        return self._catalog.get_test(test_id)

    def get_test_by_share_code(self, share_code: str) -> ExamTest:
        return self._catalog.get_test_by_share_code(share_code)

    def list_tests_by_creator(self, creator_id: int) -> list[ExamTest]:
        return self._catalog.list_tests_by_creator(creator_id)

    def update_test(
        self,
        test_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        duration_minutes: int | None = None,
        questions: Sequence[Question] | None = None,
    ) -> ExamTest:
        with self._lock:
            self._ensure_test_unused_locked(test_id)
            return self._catalog.update_test(
                test_id,
                title=title,
                description=description,
                duration_minutes=duration_minutes,
                questions=questions,
            )

    def delete_test(self, test_id: int) -> None:
        with self._lock:
            self._ensure_test_unused_locked(test_id)
            self._catalog.delete_test(test_id)

    # --- Submissions Delegation ---

    def record_submission(
        self,
        answers: Sequence[Answer],
        score: int,
        total_points: int,
        start_time,
        end_time,
        test_id: int,
        taker_id: int,
    ) -> Submission:
        return self._recorder.record(answers, score, total_points, start_time, end_time, test_id, taker_id)

    def get_submission(self, submission_id: int) -> Submission:
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found.")
        return submission

    def list_submissions_for_test(self, test_id: int) -> list[Submission]:
        self._catalog.get_test(test_id)
        return sorted(self._store.list_submissions_by_test(test_id), key=lambda s: s.id)

    # --- Review Workflow Delegation ---

    def request_review(self, submission_id: int, question_id: str, message: str | None = None) -> ReviewRequest:
        return self._reviews.request_review(submission_id, question_id, message)

    def list_review_requests(self, submission_id: int) -> list[ReviewRequest]:
        return self._reviews.list_review_requests(submission_id)

    def get_review_request(self, request_id: int) -> ReviewRequest:
        return self._reviews.get_review_request(request_id)

    def resolve_review(self, request_id: int, status: ReviewStatus | str) -> ReviewRequest:
        return self._reviews.resolve_review(request_id, status)

    # --- Live Sessions ---

    def start_session(self, share_code: str, taker_id: int) -> ExamSession:
        """Create a session for ``taker_id`` and load the test behind ``share_code``.

        Loading and registration happen under the manager lock, so a test
        edit either lands before the session sees the test or is refused.
        """
        if self._store.get_taker(taker_id) is None:
            raise ValidationError(f"Taker {taker_id} is not registered.")
        session = ExamSession(
            self._catalog,
            self._recorder,
            taker_id,
            clock=self._clock,
            ticker_factory=CountdownTicker if self._start_timers else None,
        )
        with self._lock:
            self._evict_finished_locked()
            session.load(share_code)
            self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> ExamSession:
        with self._lock:
            self._evict_finished_locked()
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found.")
        return session

    def close_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found.")
        session.close()

    def evict_finished_sessions(self) -> int:
        """Drop sessions that finished more than SESSION_RETENTION_SECONDS ago."""
        with self._lock:
            return self._evict_finished_locked()

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def shutdown(self) -> None:
        """Close every live session so no countdown outlives the service."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def _evict_finished_locked(self) -> int:
        cutoff = self._clock() - timedelta(seconds=SESSION_RETENTION_SECONDS)
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.state in _FINISHED_STATES
            and session.finished_at is not None
            and session.finished_at <= cutoff
        ]
        for session_id in expired:
            self._sessions.pop(session_id).close()
        if expired:
            logger.info("Evicted %d finished session(s)", len(expired))
        return len(expired)

    def _ensure_test_unused_locked(self, test_id: int) -> None:
        """A test is frozen once any session has loaded it or any submission references it."""
        if self._store.list_submissions_by_test(test_id):
            raise ValidationError("The test cannot change once submissions have been recorded against it.")
        for session in self._sessions.values():
            test = session.test
            if test is not None and test.id == test_id:
                raise ValidationError("The test cannot change once a session has started against it.")

"""In-memory persistence store for tests, participants, submissions and review requests.

The store is constructed explicitly and handed to the services that need it;
there is no module-level instance. Identifiers are allocated from one
monotonic counter per record type, seeded at 1.

When a ``data_path`` is given, every mutation is flushed to a JSON snapshot
(written to a temp file, then moved into place) and the snapshot is loaded
again on start-up, so identifiers keep increasing across restarts.
"""

from __future__ import annotations

from dataclasses import replace
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Callable

from exam_app.core.errors import NotFoundError, TransientIOError, ValidationError
from exam_app.core.models import (
    Creator,
    ExamTest,
    ReviewRequest,
    ReviewStatus,
    StoreSnapshot,
    Submission,
    Taker,
)
from exam_app.core.serialization import snapshot_from_dict, snapshot_to_dict

logger = logging.getLogger(__name__)

_RECORD_KINDS = ("creator", "test", "taker", "submission", "review_request")


class ExamStore:
    """Holds every persisted record behind a single lock."""

    def __init__(self, data_path: Path | None = None) -> None:
        self._lock = Lock()
        self._data_path = data_path
        self._creators: dict[int, Creator] = {}
        self._tests: dict[int, ExamTest] = {}
        self._takers: dict[int, Taker] = {}
        self._submissions: dict[int, Submission] = {}
        self._review_requests: dict[int, ReviewRequest] = {}
        self._counters: dict[str, int] = {kind: 1 for kind in _RECORD_KINDS}
        if data_path is not None:
            self._load_snapshot(data_path)

    # --- Creators ---

    def create_creator(self, name: str, username: str, user_id: str | None = None) -> Creator:
        with self._lock:
            if any(c.username == username for c in self._creators.values()):
                raise ValidationError(f"Username '{username}' is already taken.")
            creator = Creator(id=self._next_id("creator"), name=name, username=username, user_id=user_id)
            self._creators[creator.id] = creator
            self._commit(lambda: self._creators.pop(creator.id))
            return creator

    def get_creator(self, creator_id: int) -> Creator | None:
        with self._lock:
            return self._creators.get(creator_id)

    def get_creator_by_username(self, username: str) -> Creator | None:
        with self._lock:
            return next((c for c in self._creators.values() if c.username == username), None)

    # --- Tests ---

    def create_test(self, test: ExamTest) -> ExamTest:
        """Store ``test`` under a newly allocated id; the incoming id is ignored."""
        with self._lock:
            if self._share_code_taken(test.share_code):
                raise ValidationError(f"Share code '{test.share_code}' is already in use.")
            stored = replace(test, id=self._next_id("test"))
            self._tests[stored.id] = stored
            self._commit(lambda: self._tests.pop(stored.id))
            return stored

    def replace_test(self, test: ExamTest) -> ExamTest:
        with self._lock:
            previous = self._tests.get(test.id)
            if previous is None:
                raise NotFoundError(f"Test {test.id} not found.")
            self._tests[test.id] = test
            self._commit(lambda: self._tests.__setitem__(test.id, previous))
            return test

    def delete_test(self, test_id: int) -> bool:
        with self._lock:
            removed = self._tests.pop(test_id, None)
            if removed is None:
                return False
            self._commit(lambda: self._tests.__setitem__(test_id, removed))
            return True

    def get_test(self, test_id: int) -> ExamTest | None:
        with self._lock:
            return self._tests.get(test_id)

    def get_test_by_share_code(self, share_code: str) -> ExamTest | None:
        with self._lock:
            return next((t for t in self._tests.values() if t.share_code == share_code), None)

    def share_code_exists(self, share_code: str) -> bool:
        with self._lock:
            return self._share_code_taken(share_code)

    def list_tests_by_creator(self, creator_id: int) -> list[ExamTest]:
        with self._lock:
            return [t for t in self._tests.values() if t.creator_id == creator_id]

    # --- Takers ---

    def create_taker(self, name: str, user_id: str | None = None) -> Taker:
        with self._lock:
            taker = Taker(id=self._next_id("taker"), name=name, user_id=user_id)
            self._takers[taker.id] = taker
            self._commit(lambda: self._takers.pop(taker.id))
            return taker

    def get_taker(self, taker_id: int) -> Taker | None:
        with self._lock:
            return self._takers.get(taker_id)

    # --- Submissions ---

    def create_submission(self, submission: Submission) -> Submission:
        """Store ``submission`` under a newly allocated id; the incoming id is ignored."""
        with self._lock:
            stored = replace(submission, id=self._next_id("submission"))
            self._submissions[stored.id] = stored
            self._commit(lambda: self._submissions.pop(stored.id))
            return stored

    def get_submission(self, submission_id: int) -> Submission | None:
        with self._lock:
            return self._submissions.get(submission_id)

    def list_submissions_by_test(self, test_id: int) -> list[Submission]:
        with self._lock:
            return [s for s in self._submissions.values() if s.test_id == test_id]

    def list_submissions_by_taker(self, taker_id: int) -> list[Submission]:
        with self._lock:
            return [s for s in self._submissions.values() if s.taker_id == taker_id]

    # --- Review requests ---

    def create_review_request(self, request: ReviewRequest) -> ReviewRequest:
        """Store a review request and flag its submission in one step.

        At most one request may exist per (submission, question) pair.
        """
        with self._lock:
            submission = self._submissions.get(request.submission_id)
            if submission is None:
                raise NotFoundError(f"Submission {request.submission_id} not found.")
            if any(
                r.submission_id == request.submission_id and r.question_id == request.question_id
                for r in self._review_requests.values()
            ):
                raise ValidationError("A review has already been requested for this question.")
            stored = replace(request, id=self._next_id("review_request"))
            flag_before = submission.has_review_request
            self._review_requests[stored.id] = stored
            submission.has_review_request = True

            def undo() -> None:
                self._review_requests.pop(stored.id)
                submission.has_review_request = flag_before

            self._commit(undo)
            return stored

    def get_review_request(self, request_id: int) -> ReviewRequest | None:
        with self._lock:
            return self._review_requests.get(request_id)

    def list_review_requests_by_submission(self, submission_id: int) -> list[ReviewRequest]:
        with self._lock:
            return [r for r in self._review_requests.values() if r.submission_id == submission_id]

    def update_review_status(
        self,
        request_id: int,
        status: ReviewStatus,
        expected: ReviewStatus | None = None,
    ) -> ReviewRequest:
        """Set the status; with ``expected`` the change only applies from that status."""
        with self._lock:
            request = self._review_requests.get(request_id)
            if request is None:
                raise NotFoundError(f"Review request {request_id} not found.")
            previous = request.status
            if expected is not None and previous is not expected:
                raise ValidationError(f"Review request {request_id} is already {previous.value}.")
            request.status = status

            def undo() -> None:
                request.status = previous

            self._commit(undo)
            return request

    # --- Internals ---

    def _next_id(self, kind: str) -> int:
        value = self._counters[kind]
        self._counters[kind] = value + 1
        return value

    def _share_code_taken(self, share_code: str) -> bool:
        return any(t.share_code == share_code for t in self._tests.values())

    def _commit(self, undo: Callable[[], Any]) -> None:
        """Flush the snapshot; on failure roll the in-memory change back."""
        if self._data_path is None:
            return
        try:
            self._write_snapshot(self._data_path)
        except OSError as exc:
            undo()
            logger.error("Could not write store snapshot to %s: %s", self._data_path, exc)
            raise TransientIOError("Persistence store is unavailable.") from exc

    def _write_snapshot(self, path: Path) -> None:
        snapshot = StoreSnapshot(
            creators=list(self._creators.values()),
            tests=list(self._tests.values()),
            takers=list(self._takers.values()),
            submissions=list(self._submissions.values()),
            review_requests=list(self._review_requests.values()),
        )
        payload = snapshot_to_dict(snapshot)
        payload["counters"] = dict(self._counters)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(path)

    def _load_snapshot(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise TransientIOError(f"Could not read store snapshot {path}.") from exc

        snapshot = snapshot_from_dict(payload)
        self._creators = {c.id: c for c in snapshot.creators}
        self._tests = {t.id: t for t in snapshot.tests}
        self._takers = {t.id: t for t in snapshot.takers}
        self._submissions = {s.id: s for s in snapshot.submissions}
        self._review_requests = {r.id: r for r in snapshot.review_requests}

        stored_counters = payload.get("counters", {})
        collections: dict[str, dict[int, Any]] = {
            "creator": self._creators,
            "test": self._tests,
            "taker": self._takers,
            "submission": self._submissions,
            "review_request": self._review_requests,
        }
        for kind, records in collections.items():
            next_free = max(records, default=0) + 1
            self._counters[kind] = max(int(stored_counters.get(kind, 1)), next_free)
        logger.info(
            "Loaded store snapshot from %s (%d tests, %d submissions)",
            path,
            len(self._tests),
            len(self._submissions),
        )

"""Review requests: takers contesting the automated score of an essay answer."""

from __future__ import annotations

import logging

from exam_app.core.errors import NotFoundError, ValidationError
from exam_app.core.models import EssayQuestion, ReviewRequest, ReviewStatus, Submission
from exam_app.core.services.exam_store import ExamStore
from exam_app.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)

_FINAL_STATUSES = (ReviewStatus.APPROVED, ReviewStatus.REJECTED)


class ReviewWorkflow:
    """Creates review requests and records adjudication outcomes.

    A submission is only ever touched to set ``has_review_request``; scores
    are never recomputed here.
    """

    def __init__(self, store: ExamStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    def request_review(
        self,
        submission_id: int,
        question_id: str,
        message: str | None = None,
    ) -> ReviewRequest:
        submission = self._get_submission(submission_id)
        self._check_reviewable(submission, question_id)

        cleaned_message = message.strip() if message is not None else None
        request = self._store.create_review_request(
            ReviewRequest(
                id=0,  # allocated by the store
                submission_id=submission.id,
                question_id=question_id,
                request_message=cleaned_message or None,
                status=ReviewStatus.PENDING,
                created_at=self._clock(),
            )
        )
        logger.info(
            "Review request %s opened for submission %s question %s",
            request.id,
            submission.id,
            question_id,
        )
        return request

    def get_review_request(self, request_id: int) -> ReviewRequest:
        request = self._store.get_review_request(request_id)
        if request is None:
            raise NotFoundError(f"Review request {request_id} not found.")
        return request

    def list_review_requests(self, submission_id: int) -> list[ReviewRequest]:
        self._get_submission(submission_id)
        requests = self._store.list_review_requests_by_submission(submission_id)
        return sorted(requests, key=lambda r: r.id)

    def resolve_review(self, request_id: int, status: ReviewStatus | str) -> ReviewRequest:
        """Store an adjudicator's decision on a pending request."""
        try:
            new_status = ReviewStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown review status {status!r}.") from exc
        if new_status not in _FINAL_STATUSES:
            raise ValidationError("A review can only be resolved as approved or rejected.")

        updated = self._store.update_review_status(request_id, new_status, expected=ReviewStatus.PENDING)
        logger.info("Review request %s resolved as %s", request_id, new_status.value)
        return updated

    def _get_submission(self, submission_id: int) -> Submission:
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found.")
        return submission

    def _check_reviewable(self, submission: Submission, question_id: str) -> None:
        test = self._store.get_test(submission.test_id)
        if test is None:
            raise NotFoundError(f"Test {submission.test_id} not found.")
        question = test.find_question(question_id)
        if question is None:
            raise ValidationError(f"Question '{question_id}' is not part of this submission.")
        if not isinstance(question, EssayQuestion):
            raise ValidationError("Only essay questions can be submitted for review.")
        answer = submission.find_answer(question_id)
        if answer is None or answer.essay_text is None or not answer.essay_text.strip():
            raise ValidationError("An unanswered essay question cannot be reviewed.")

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import START
from exam_app.core.errors import ValidationError
from exam_app.core.models import Answer
from exam_app.core.scoring import score_answers


def _scored(test, *answers):
    return score_answers(test, list(answers))


def test_record_persists_scored_submission(recorder, store, taker, clock, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1", choice_index=1), Answer("q2", boolean_answer=False))
    clock.advance(120)

    submission = recorder.record(
        scored.answers, scored.score, scored.total_points, START, clock(), mcq_tf_test.id, taker.id
    )

    assert submission.id == 1
    assert submission.score == 5
    assert submission.total_points == 10
    assert submission.has_review_request is False
    assert store.list_submissions_by_taker(taker.id) == [submission]


def test_each_record_call_creates_a_new_submission(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1"), Answer("q2"))
    first = recorder.record(scored.answers, 0, 10, START, START, mcq_tf_test.id, taker.id)
    second = recorder.record(scored.answers, 0, 10, START, START, mcq_tf_test.id, taker.id)
    assert second.id == first.id + 1


def test_rejects_unknown_test_or_taker(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1"), Answer("q2"))
    with pytest.raises(ValidationError):
        recorder.record(scored.answers, 0, 10, START, START, 999, taker.id)
    with pytest.raises(ValidationError):
        recorder.record(scored.answers, 0, 10, START, START, mcq_tf_test.id, 999)


def test_rejects_end_before_start_and_future_end(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1"), Answer("q2"))
    with pytest.raises(ValidationError, match="precede"):
        recorder.record(scored.answers, 0, 10, START, START - timedelta(seconds=1), mcq_tf_test.id, taker.id)
    with pytest.raises(ValidationError, match="future"):
        recorder.record(scored.answers, 0, 10, START, START + timedelta(minutes=5), mcq_tf_test.id, taker.id)


def test_naive_times_are_treated_as_utc(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1"), Answer("q2"))
    naive = START.replace(tzinfo=None)

    submission = recorder.record(scored.answers, 0, 10, naive, naive, mcq_tf_test.id, taker.id)

    assert submission.start_time == START


def test_rejects_wrong_answer_count_or_order(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1"), Answer("q2"))
    with pytest.raises(ValidationError):
        recorder.record(scored.answers[:1], 0, 10, START, START, mcq_tf_test.id, taker.id)
    with pytest.raises(ValidationError):
        recorder.record(tuple(reversed(scored.answers)), 0, 10, START, START, mcq_tf_test.id, taker.id)


def test_rejects_answer_fields_that_do_not_fit_the_question(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1", choice_index=1), Answer("q2"))
    tampered = (replace(scored.answers[0], essay_text="Mars"), scored.answers[1])
    with pytest.raises(ValidationError, match="expected only choiceIndex"):
        recorder.record(tampered, 5, 10, START, START, mcq_tf_test.id, taker.id)


def test_rejects_inconsistent_scores(recorder, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1", choice_index=1), Answer("q2", boolean_answer=False))

    with pytest.raises(ValidationError, match="sum"):
        recorder.record(scored.answers, 10, 10, START, START, mcq_tf_test.id, taker.id)
    with pytest.raises(ValidationError, match="Total points"):
        recorder.record(scored.answers, 5, 12, START, START, mcq_tf_test.id, taker.id)

    inflated = (replace(scored.answers[0]), replace(scored.answers[1], is_correct=True, points_awarded=5))
    with pytest.raises(ValidationError, match="not scored correctly"):
        recorder.record(inflated, 10, 10, START, START, mcq_tf_test.id, taker.id)


def test_failed_validation_stores_nothing(recorder, store, taker, mcq_tf_test):
    scored = _scored(mcq_tf_test, Answer("q1"), Answer("q2"))
    with pytest.raises(ValidationError):
        recorder.record(scored.answers, 3, 10, START, START, mcq_tf_test.id, taker.id)
    assert store.list_submissions_by_test(mcq_tf_test.id) == []

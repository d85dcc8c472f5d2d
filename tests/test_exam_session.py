from __future__ import annotations

from threading import Barrier, Thread

import pytest

from conftest import FakeTicker, mcq_tf_questions
from exam_app.core.errors import NotFoundError, TransientIOError, ValidationError
from exam_app.core.services.exam_session import ExamSession, QuestionStatus, SessionState


def _session(catalog, recorder, taker, clock, **kwargs) -> ExamSession:
    kwargs.setdefault("ticker_factory", FakeTicker)
    return ExamSession(catalog, recorder, taker.id, clock=clock, **kwargs)


def test_load_starts_countdown(catalog, recorder, taker, clock, mcq_tf_test, fake_tickers):
    session = _session(catalog, recorder, taker, clock)
    assert session.state is SessionState.LOADING

    session.load(mcq_tf_test.share_code)

    assert session.state is SessionState.IN_PROGRESS
    assert session.get_remaining_seconds() == 600
    assert session.format_remaining_time() == "10:00"
    assert [a.question_id for a in session.get_answers()] == ["q1", "q2"]
    assert fake_tickers[0].started
    assert session.has_active_timer()


def test_load_unknown_share_code_moves_to_error(catalog, recorder, taker, clock, fake_tickers):
    session = _session(catalog, recorder, taker, clock)

    with pytest.raises(NotFoundError):
        session.load("missing1")

    assert session.state is SessionState.ERROR
    assert not fake_tickers, "No countdown should start for a failed load"
    with pytest.raises(RuntimeError):
        session.load("missing1")


def test_update_answer_only_touches_current_question(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)

    session.update_answer(choice_index=1)
    session.next_question()
    session.update_answer(boolean_answer=False)

    answers = session.get_answers()
    assert answers[0].choice_index == 1 and answers[0].boolean_answer is None
    assert answers[1].boolean_answer is False and answers[1].choice_index is None


def test_update_answer_rejects_wrong_shape(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)

    with pytest.raises(ValidationError):
        session.update_answer(boolean_answer=True)
    with pytest.raises(ValidationError):
        session.update_answer(choice_index=4)
    with pytest.raises(ValidationError):
        session.update_answer()
    assert session.get_answers()[0].choice_index is None


def test_clear_answer(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)
    session.update_answer(choice_index=2)

    cleared = session.clear_answer()

    assert cleared.choice_index is None
    assert not session.is_question_answered(0)


def test_navigation_ignores_out_of_range(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)

    assert session.previous_question() == 0
    assert session.select_question(5) == 0
    assert session.select_question(1) == 1
    assert session.next_question() == 1


def test_flags_toggle_and_statuses(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)

    assert session.toggle_flag(1) == frozenset({1})
    snapshot = session.snapshot()
    assert snapshot.question_statuses == (QuestionStatus.CURRENT, QuestionStatus.FLAGGED)

    assert session.toggle_flag(1) == frozenset()
    session.update_answer(choice_index=0)
    session.select_question(1)
    assert session.snapshot().question_statuses == (QuestionStatus.ANSWERED, QuestionStatus.CURRENT)


def test_manual_submit_scores_and_records(catalog, recorder, store, taker, clock, mcq_tf_test, fake_tickers):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)
    session.update_answer(choice_index=1)
    session.select_question(1)
    session.update_answer(boolean_answer=False)
    clock.advance(90)

    submission = session.submit()

    assert session.state is SessionState.COMPLETED
    assert submission.score == 5
    assert submission.total_points == 10
    assert submission.has_review_request is False
    assert (submission.end_time - submission.start_time).total_seconds() == 90
    assert store.get_submission(submission.id) is submission
    assert fake_tickers[0].cancelled
    assert session.submit() is None, "A completed session ignores further submits"


def test_answers_locked_after_submission(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)
    session.submit()

    with pytest.raises(RuntimeError):
        session.update_answer(choice_index=1)
    with pytest.raises(RuntimeError):
        session.clear_answer()


def test_timeout_submits_exactly_once(catalog, recorder, store, taker, clock, creator, fake_tickers):
    test = catalog.create_test(creator.id, "One minute", 1, mcq_tf_questions())
    session = _session(catalog, recorder, taker, clock)
    session.load(test.share_code)
    ticker = fake_tickers[0]

    for _ in range(59):
        clock.advance(1)
        ticker.fire()
    assert session.state is SessionState.IN_PROGRESS
    assert session.get_remaining_seconds() == 1

    clock.advance(1)
    ticker.fire()

    assert session.state is SessionState.COMPLETED
    assert ticker.cancelled
    submissions = store.list_submissions_by_test(test.id)
    assert len(submissions) == 1
    expected_end = submissions[0].start_time.timestamp() + 60
    assert abs(submissions[0].end_time.timestamp() - expected_end) <= 1

    session.tick()
    assert session.submit() is None
    assert len(store.list_submissions_by_test(test.id)) == 1


def test_concurrent_submits_create_one_submission(catalog, recorder, store, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)
    barrier = Barrier(8)
    results = []

    def worker() -> None:
        barrier.wait()
        results.append(session.submit())
        session.tick()

    threads = [Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store.list_submissions_by_test(mcq_tf_test.id)) == 1
    assert sum(result is not None for result in results) == 1
    assert session.state is SessionState.COMPLETED


class _FlakyRecorder:
    def __init__(self, inner, failures: int) -> None:
        self._inner = inner
        self.failures = failures
        self.calls = 0

    def record(self, *args, **kwargs):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise TransientIOError("store offline")
        return self._inner.record(*args, **kwargs)


def test_failed_timeout_submit_keeps_answers_and_can_be_retried(
    catalog, recorder, store, taker, clock, creator, fake_tickers
):
    test = catalog.create_test(creator.id, "One minute", 1, mcq_tf_questions())
    flaky = _FlakyRecorder(recorder, failures=1)
    session = ExamSession(catalog, flaky, taker.id, clock=clock, ticker_factory=FakeTicker)
    session.load(test.share_code)
    session.update_answer(choice_index=1)

    clock.advance(60)
    fake_tickers[0].fire(60)

    assert session.state is SessionState.ERROR
    assert session.snapshot().error_message == TransientIOError.user_message
    assert session.get_answers()[0].choice_index == 1, "Answers survive a failed submit"
    assert flaky.calls == 1
    session.tick()
    assert flaky.calls == 1, "No automatic retry from the error state"
    with pytest.raises(RuntimeError):
        session.update_answer(choice_index=0)

    submission = session.retry_submit()

    assert session.state is SessionState.COMPLETED
    assert submission.score == 5
    assert len(store.list_submissions_by_test(test.id)) == 1


def test_manual_submit_failure_raises(catalog, recorder, taker, clock, mcq_tf_test):
    flaky = _FlakyRecorder(recorder, failures=1)
    session = ExamSession(catalog, flaky, taker.id, clock=clock, ticker_factory=None)
    session.load(mcq_tf_test.share_code)

    with pytest.raises(TransientIOError):
        session.submit()
    assert session.state is SessionState.ERROR


class _BrokenRecorder:
    def __init__(self, inner) -> None:
        self._inner = inner
        self.broken = True

    def record(self, *args, **kwargs):
        if self.broken:
            raise TypeError("Object of type set is not JSON serializable")
        return self._inner.record(*args, **kwargs)


def test_unexpected_recorder_error_moves_to_error_and_can_be_retried(catalog, recorder, taker, clock, mcq_tf_test):
    broken = _BrokenRecorder(recorder)
    session = ExamSession(catalog, broken, taker.id, clock=clock, ticker_factory=None)
    session.load(mcq_tf_test.share_code)
    session.update_answer(choice_index=1)

    with pytest.raises(TypeError):
        session.submit()

    assert session.state is SessionState.ERROR
    assert "not JSON serializable" in session.snapshot().error_message
    assert session.finished_at == clock.now

    broken.broken = False
    submission = session.retry_submit()

    assert session.state is SessionState.COMPLETED
    assert submission.score == 5


def test_unexpected_error_on_timeout_leaves_session_retryable(
    catalog, recorder, taker, clock, creator, fake_tickers
):
    test = catalog.create_test(creator.id, "One minute", 1, mcq_tf_questions())
    broken = _BrokenRecorder(recorder)
    session = ExamSession(catalog, broken, taker.id, clock=clock, ticker_factory=FakeTicker)
    session.load(test.share_code)

    with pytest.raises(TypeError):
        fake_tickers[0].fire(60)

    assert session.state is SessionState.ERROR
    broken.broken = False
    assert session.retry_submit() is not None
    assert session.state is SessionState.COMPLETED


def test_retry_only_after_failed_submit(catalog, recorder, taker, clock, mcq_tf_test):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)
    with pytest.raises(RuntimeError):
        session.retry_submit()


def test_close_stops_countdown(catalog, recorder, taker, clock, mcq_tf_test, fake_tickers):
    session = _session(catalog, recorder, taker, clock)
    session.load(mcq_tf_test.share_code)

    session.close()

    assert fake_tickers[0].cancelled
    assert not session.has_active_timer()

from __future__ import annotations

from threading import Barrier, Thread

import pytest

from conftest import FakeClock
from exam_app.constants.exam_constants import SESSION_RETENTION_SECONDS
from exam_app.core.errors import NotFoundError, ValidationError
from exam_app.core.exam_importer import ExamImportError
from exam_app.core.exam_manager import ExamManager
from exam_app.core.models import ExamTest, McqQuestion, ReviewStatus
from exam_app.core.services.exam_session import SessionState
from exam_app.core.services.exam_store import ExamStore

EXAM_FILE = """\
TITLE: Gravity
DURATION: 2

TYPE: ESSAY
Q: Who formulated the law of universal gravitation?
MODEL: Newton
"""


@pytest.fixture
def manager() -> ExamManager:
    return ExamManager(ExamStore(), clock=FakeClock(), start_timers=False)


def test_import_exam_file_uses_default_creator(manager, tmp_path):
    path = tmp_path / "gravity.txt"
    path.write_text(EXAM_FILE, encoding="utf-8")

    test = manager.import_exam_file(path)

    default_creator = manager.get_creator_by_username("default_creator")
    assert test.creator_id == default_creator.id
    assert manager.get_test_by_share_code(test.share_code).title == "Gravity"
    assert manager.ensure_default_creator() == default_creator


def test_import_errors_propagate(manager, tmp_path):
    path = tmp_path / "broken.txt"
    path.write_text("TITLE: Broken\n", encoding="utf-8")
    with pytest.raises(ExamImportError):
        manager.import_exam_file(path)


def test_sessions_are_registered_and_closed(manager, tmp_path):
    path = tmp_path / "gravity.txt"
    path.write_text(EXAM_FILE, encoding="utf-8")
    test = manager.import_exam_file(path)
    taker = manager.register_taker("Tom")

    session = manager.start_session(test.share_code, taker.id)

    assert manager.get_session(session.session_id) is session
    assert session.state is SessionState.IN_PROGRESS
    assert not session.has_active_timer(), "Timers are disabled for this manager"

    manager.close_session(session.session_id)
    with pytest.raises(NotFoundError):
        manager.get_session(session.session_id)
    with pytest.raises(NotFoundError):
        manager.close_session(session.session_id)


def test_unknown_taker_cannot_start_session(manager):
    with pytest.raises(ValidationError):
        manager.start_session("whatever", 123)


def test_submissions_for_unknown_test_are_not_found(manager):
    with pytest.raises(NotFoundError):
        manager.list_submissions_for_test(5)
    with pytest.raises(NotFoundError):
        manager.get_submission(5)


def test_shutdown_closes_every_session(tmp_path):
    manager = ExamManager(ExamStore(), clock=FakeClock(), start_timers=True)
    path = tmp_path / "gravity.txt"
    path.write_text(EXAM_FILE, encoding="utf-8")
    test = manager.import_exam_file(path)
    taker = manager.register_taker("Tom")
    session = manager.start_session(test.share_code, taker.id)
    assert session.has_active_timer()

    manager.shutdown()

    assert not session.has_active_timer()
    with pytest.raises(NotFoundError):
        manager.get_session(session.session_id)


def _import(manager: ExamManager, tmp_path) -> ExamTest:
    path = tmp_path / "gravity.txt"
    path.write_text(EXAM_FILE, encoding="utf-8")
    return manager.import_exam_file(path)


def test_test_is_frozen_once_a_session_has_loaded_it(manager, tmp_path):
    test = _import(manager, tmp_path)
    taker = manager.register_taker("Tom")
    session = manager.start_session(test.share_code, taker.id)

    with pytest.raises(ValidationError):
        manager.update_test(test.id, title="Changed")
    with pytest.raises(ValidationError):
        manager.delete_test(test.id)

    manager.close_session(session.session_id)
    assert manager.update_test(test.id, title="Changed").title == "Changed"


def test_test_is_frozen_after_a_submission(manager, tmp_path):
    test = _import(manager, tmp_path)
    taker = manager.register_taker("Tom")
    session = manager.start_session(test.share_code, taker.id)
    session.update_answer(essay_text="it was newton")
    submission = session.submit()
    manager.close_session(session.session_id)

    with pytest.raises(ValidationError):
        manager.update_test(test.id, questions=[McqQuestion("q1", "Pick", 1, ("a", "b"), 0)])
    with pytest.raises(ValidationError):
        manager.delete_test(test.id)

    request = manager.request_review(submission.id, "q1")
    assert request.status is ReviewStatus.PENDING
    assert manager.get_test(test.id).questions[0].model_answers == ("Newton",)


def test_edit_racing_session_start_never_changes_a_loaded_test(manager, tmp_path):
    test = _import(manager, tmp_path)
    taker = manager.register_taker("Tom")
    barrier = Barrier(2)
    sessions = []
    edits = []

    def start() -> None:
        barrier.wait()
        sessions.append(manager.start_session(test.share_code, taker.id))

    def edit() -> None:
        barrier.wait()
        try:
            edits.append(manager.update_test(test.id, title="Changed"))
        except ValidationError:
            pass

    threads = [Thread(target=start), Thread(target=edit)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sessions[0].test == manager.get_test(test.id)


def test_finished_sessions_are_evicted_after_retention(tmp_path):
    clock = FakeClock()
    manager = ExamManager(ExamStore(), clock=clock, start_timers=False)
    test = _import(manager, tmp_path)
    taker = manager.register_taker("Tom")
    finished = manager.start_session(test.share_code, taker.id)
    finished.submit()
    running = manager.start_session(test.share_code, taker.id)

    clock.advance(SESSION_RETENTION_SECONDS - 1)
    assert manager.evict_finished_sessions() == 0
    assert manager.get_session(finished.session_id) is finished

    clock.advance(1)
    assert manager.evict_finished_sessions() == 1
    assert manager.session_count() == 1
    with pytest.raises(NotFoundError):
        manager.get_session(finished.session_id)
    assert manager.get_session(running.session_id) is running

    running.submit()
    clock.advance(SESSION_RETENTION_SECONDS)
    with pytest.raises(NotFoundError):
        manager.get_session(running.session_id)
    assert manager.session_count() == 0

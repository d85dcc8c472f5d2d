from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from exam_app.core.models import EssayQuestion, ExamTest, McqQuestion, TrueFalseQuestion
from exam_app.core.services.exam_catalog import ExamCatalog
from exam_app.core.services.exam_store import ExamStore
from exam_app.core.services.participants import ParticipantRegistry
from exam_app.core.services.review_workflow import ReviewWorkflow
from exam_app.core.services.submission_recorder import SubmissionRecorder
from exam_app.core.share_codes import ShareCodeGenerator

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock shared by every service in a test."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTicker:
    """Stands in for CountdownTicker; tests call ``fire`` instead of waiting."""

    instances: list["FakeTicker"] = []

    def __init__(self, on_tick) -> None:
        self.on_tick = on_tick
        self.started = False
        self.cancelled = False
        FakeTicker.instances.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self, wait: bool = True) -> None:
        self.cancelled = True

    def is_running(self) -> bool:
        return self.started and not self.cancelled

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            if self.cancelled:
                return
            self.on_tick()


def mcq_tf_questions() -> list:
    return [
        McqQuestion(
            id="q1",
            text="Which planet is known as the red planet?",
            points=5,
            choices=("Venus", "Mars", "Jupiter", "Saturn"),
            correct_choice_index=1,
        ),
        TrueFalseQuestion(id="q2", text="Water boils at 100 C at sea level.", points=5, correct_answer=True),
    ]


def essay_questions() -> list:
    return [
        EssayQuestion(
            id="q1",
            text="Who formulated the law of universal gravitation?",
            points=4,
            model_answers=("Newton",),
        ),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> ExamStore:
    return ExamStore()


@pytest.fixture
def participants(store: ExamStore) -> ParticipantRegistry:
    return ParticipantRegistry(store)


@pytest.fixture
def catalog(store: ExamStore, clock: FakeClock) -> ExamCatalog:
    return ExamCatalog(store, ShareCodeGenerator(seed=7), clock=clock)


@pytest.fixture
def recorder(store: ExamStore, clock: FakeClock) -> SubmissionRecorder:
    return SubmissionRecorder(store, clock=clock)


@pytest.fixture
def reviews(store: ExamStore, clock: FakeClock) -> ReviewWorkflow:
    return ReviewWorkflow(store, clock=clock)


@pytest.fixture
def creator(participants: ParticipantRegistry):
    return participants.register_creator("Ada Author", "ada")


@pytest.fixture
def taker(participants: ParticipantRegistry):
    return participants.register_taker("Tom Taker")


@pytest.fixture
def mcq_tf_test(catalog: ExamCatalog, creator) -> ExamTest:
    return catalog.create_test(creator.id, "Science basics", 10, mcq_tf_questions())


@pytest.fixture
def essay_test(catalog: ExamCatalog, creator) -> ExamTest:
    return catalog.create_test(creator.id, "History of physics", 5, essay_questions())


@pytest.fixture
def fake_tickers():
    FakeTicker.instances = []
    yield FakeTicker.instances
    FakeTicker.instances = []

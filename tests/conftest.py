"""Shared fixtures: an in-memory database, a question set and a fake AI provider."""

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from qcm_explain.db import Base
from qcm_explain import models  # noqa: F401  (register tables)
from qcm_explain.models import SET_EXAM, Exam, Module, Question, UserStats
from qcm_explain.policy import ExplanationPolicy
from qcm_explain.schemas import Completion
from qcm_explain.services.questions import QuestionSetResolver
from qcm_explain.services.rewards import RewardEngine
from qcm_explain.services.store import ExplanationStore


class FakeGenerator:
    """Stands in for the AI provider; records every prompt it receives."""

    provider_name = "fake-ai"

    def __init__(self, reply="This is the explanation.", fail_when=None):
        self.reply = reply
        self.fail_when = fail_when
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.fail_when is not None and self.fail_when in prompt:
            raise RuntimeError("quota exceeded")
        return Completion(self.reply, self.provider_name)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_conn, _record):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, future=True)()
    yield session
    session.close()


@pytest.fixture
def policy():
    return ExplanationPolicy(batch_delay_seconds=1.0, generation_timeout_seconds=5.0)


@pytest.fixture
def resolver(db):
    return QuestionSetResolver(db)


@pytest.fixture
def store(db, policy):
    return ExplanationStore(db, RewardEngine(db, policy))


@pytest.fixture
def module(db):
    module = Module(name="Cardiology")
    db.add(module)
    db.commit()
    return module


@pytest.fixture
def make_exam(db, module):
    """Create an exam of `count` questions; option B is correct."""

    def _make(count, name="2023 session", module_id=None):
        exam = Exam(name=name, year=2023, module_id=module_id or module.id)
        db.add(exam)
        db.commit()
        questions = []
        for i in range(count):
            q = Question(
                set_kind=SET_EXAM,
                set_id=exam.id,
                text=f"{name} question {i + 1}?",
                options=[
                    {"text": "First option", "is_correct": False},
                    {"text": "Second option", "is_correct": True},
                    {"text": "Third option", "is_correct": False},
                ],
                session_label="normal",
            )
            db.add(q)
            db.commit()
            questions.append(q)
        return exam, questions

    return _make


@pytest.fixture
def set_level(db):
    def _set(user_id, level):
        stats = db.get(UserStats, user_id)
        if stats is None:
            stats = UserStats(user_id=user_id)
            db.add(stats)
        stats.overall_level = level
        db.commit()
        return stats

    return _set

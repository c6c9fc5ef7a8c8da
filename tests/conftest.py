import os
import random
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assessment.attempts import AttemptService
from assessment.blueprints import BlueprintService, QuestionBank
from assessment.events import RecordingPublisher
from assessment.schemas import (
    AssemblyRequest, BlueprintConfig, Difficulty, QuestionCreate, QuestionRecord,
)
from database import models  # noqa: F401
from database.database import Base
from database.repository import SqlAlchemyRepository

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
BANK = 1


def single_choice(correct="A", difficulty=Difficulty.MEDIUM, weight=1.0, bank_id=BANK, prompt="Pick one"):
    return QuestionCreate(
        bank_id=bank_id,
        prompt=prompt,
        weight=weight,
        difficulty=difficulty,
        answer_key={"type": "single_choice", "correct_option": correct},
        content={"options": ["A", "B", "C", "D"]},
    )


def pool_record(qid, difficulty=Difficulty.MEDIUM, active=True):
    """In-memory bank question for the pure assembler tests."""
    return QuestionRecord(
        id=qid,
        bank_id=BANK,
        type="single_choice",
        prompt=f"Question {qid}",
        weight=1.0,
        difficulty=difficulty,
        answer_key={"type": "single_choice", "correct_option": "A"},
        active=active,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return SqlAlchemyRepository(db)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def bank(repo):
    return QuestionBank(repo)


@pytest.fixture
def blueprints(repo):
    return BlueprintService(repo, rng=random.Random(7))


@pytest.fixture
def attempts(repo, publisher):
    return AttemptService(repo, publisher)


@pytest.fixture
def publish_exam(bank, blueprints):
    """
    Build a published blueprint holding every question in `questions`
    (ten single-choice questions by default) with the given config.
    """
    def _publish(questions=None, title="Quiz", **config):
        questions = questions if questions is not None else [single_choice("A") for _ in range(10)]
        for q in questions:
            bank.create(q)
        request = AssemblyRequest(count=len(questions), title=title, config=BlueprintConfig(**config))
        draft = blueprints.assemble_blueprints(BANK, request)[0]
        return blueprints.publish(draft.id)
    return _publish


def position_of(blueprint, question_id):
    return next(q.position for q in blueprint.questions if q.question_id == question_id)

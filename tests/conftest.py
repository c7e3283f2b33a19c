import os
from datetime import datetime, timedelta

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["STATS_CACHE_TTL"] = "0"
os.environ["ENABLE_MOCK_LOGIN"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from talentree.core.auth import create_token
from talentree.core.database import get_db
from talentree.main import app
from talentree.models.orm import Base, Company, ProcessStatus, QuestionType, SelectionProcess, TestType, Worker
from talentree.models.schemas import QuestionIn, TestDefinition
from talentree.services.pipeline import ApplicationPipeline
from talentree.services.question_bank import QuestionBank
from talentree.services.responses import ResponseLedger


class FakeClock:
    """Deterministic clock; each call returns the current instant, then moves one second on."""

    def __init__(self, start: datetime = datetime(2024, 3, 15, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + timedelta(seconds=1)
        return now

    def set(self, moment: datetime) -> None:
        self.current = moment


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bank(db, clock):
    return QuestionBank(db, clock=clock)


@pytest.fixture
def ledger(db, clock):
    return ResponseLedger(db, clock=clock)


@pytest.fixture
def pipeline(db, clock):
    return ApplicationPipeline(db, clock=clock)


@pytest.fixture
def company(db):
    c = Company(name="Acme Corp")
    db.add(c)
    db.commit()
    return c


@pytest.fixture
def worker(db):
    w = Worker(first_name="Ana", last_name="Pérez", email="ana@example.com")
    db.add(w)
    db.commit()
    return w


@pytest.fixture
def process(db, company, clock):
    p = SelectionProcess(
        company_id=company.id,
        name="Backend Developer",
        code="BE-001",
        status=ProcessStatus.ACTIVE,
        created_at=clock(),
        updated_at=clock(),
    )
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def application(pipeline, worker, process):
    return pipeline.apply(worker.id, process.id)


@pytest.fixture
def knowledge_test(bank):
    """Two auto-gradable questions worth 5 points each, pass mark 6."""
    return bank.create_test(
        TestDefinition(name="Python basics", type=TestType.KNOWLEDGE, passing_score=6),
        [
            QuestionIn(text="Is Python dynamically typed?", question_type=QuestionType.TRUE_FALSE,
                       options=["true", "false"], points=5, correct_answers=["true"]),
            QuestionIn(text="Pick the immutable types", question_type=QuestionType.MULTIPLE_CHOICE,
                       options=["A", "B", "C", "D"], points=5, correct_answers=["A", "C"]),
        ],
    )


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_headers():
    def _make(user_id: str, *roles: str) -> dict:
        return {"Authorization": f"Bearer {create_token(user_id, list(roles))}"}

    return _make


@pytest.fixture
def auth_headers(make_headers):
    return make_headers("admin-1", "admin")


@pytest.fixture
def worker_headers(make_headers):
    return make_headers("worker-1", "worker")

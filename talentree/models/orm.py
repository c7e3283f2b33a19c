import enum
import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from talentree.core.clock import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class TestType(str, enum.Enum):
    PSYCHOLOGICAL = "psychological"
    TECHNICAL = "technical"
    KNOWLEDGE = "knowledge"
    SKILLS = "skills"
    PERSONALITY = "personality"


class QuestionType(str, enum.Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SCALE = "scale"
    OPEN_TEXT = "open_text"


class WorkerStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROCESS = "in_process"
    APPROVED = "approved"
    REJECTED = "rejected"
    HIRED = "hired"


class ProcessStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CLOSED_PROCESS_STATUSES = (ProcessStatus.PAUSED, ProcessStatus.COMPLETED, ProcessStatus.CANCELLED)


# ========== Reference Records ==========

class Company(Base):
    __tablename__ = "companies"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Worker(Base):
    __tablename__ = "workers"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SelectionProcess(Base):
    __tablename__ = "selection_processes"
    __table_args__ = (
        Index("idx_sp_company_status", "company_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    status: Mapped[ProcessStatus] = mapped_column(SQLEnum(ProcessStatus), default=ProcessStatus.DRAFT, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @validates("status")
    def _stamp_closed_at(self, key, status):
        """Record when the process stops being active; reopening clears the stamp."""
        if status == ProcessStatus.ACTIVE:
            self.closed_at = None
        elif status in CLOSED_PROCESS_STATUSES and self.closed_at is None:
            self.closed_at = utcnow()
        return status


# ========== Question Bank ==========

class Test(Base):
    __tablename__ = "tests"
    __table_args__ = (
        Index("idx_tests_type_active", "type", "is_active"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[TestType] = mapped_column(SQLEnum(TestType), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    passing_score: Mapped[Optional[int]] = mapped_column(Integer)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    questions: Mapped[List["TestQuestion"]] = relationship(
        back_populates="test", cascade="all, delete-orphan", order_by="TestQuestion.order"
    )


class TestQuestion(Base):
    __tablename__ = "test_questions"
    __table_args__ = (
        UniqueConstraint("test_id", "order", name="uq_test_question_order"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    test_id: Mapped[str] = mapped_column(String(36), ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
    order: Mapped[int] = mapped_column("order", Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[QuestionType] = mapped_column(SQLEnum(QuestionType), default=QuestionType.SINGLE_CHOICE)
    options: Mapped[Optional[List[str]]] = mapped_column(JSON)
    points: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    correct_answers: Mapped[Optional[List[str]]] = mapped_column(JSON)

    test: Mapped["Test"] = relationship(back_populates="questions")


# ========== Application Pipeline ==========

class WorkerProcess(Base):
    __tablename__ = "worker_processes"
    __table_args__ = (
        UniqueConstraint("worker_id", "process_id", name="uq_worker_process"),
        Index("idx_wp_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    worker_id: Mapped[str] = mapped_column(String(36), ForeignKey("workers.id"), nullable=False)
    process_id: Mapped[str] = mapped_column(String(36), ForeignKey("selection_processes.id"), nullable=False)
    status: Mapped[WorkerStatus] = mapped_column(SQLEnum(WorkerStatus), default=WorkerStatus.PENDING, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    evaluated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# ========== Response Ledger ==========

class TestResponse(Base):
    __tablename__ = "test_responses"
    __table_args__ = (
        UniqueConstraint("test_id", "worker_process_id", name="uq_test_response"),
        Index("idx_tr_worker_process", "worker_process_id"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    test_id: Mapped[str] = mapped_column(String(36), ForeignKey("tests.id"), nullable=False)
    worker_process_id: Mapped[str] = mapped_column(String(36), ForeignKey("worker_processes.id"), nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    score: Mapped[Optional[int]] = mapped_column(Integer)
    max_score: Mapped[Optional[int]] = mapped_column(Integer)
    passed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    test: Mapped["Test"] = relationship()
    answers: Mapped[List["TestAnswer"]] = relationship(
        back_populates="response", cascade="all, delete-orphan", order_by="TestAnswer.created_at"
    )

    __mapper_args__ = {"version_id_col": version}


class TestAnswer(Base):
    __tablename__ = "test_answers"
    __table_args__ = (
        UniqueConstraint("test_response_id", "question_id", name="uq_test_answer"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    test_response_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("test_responses.id", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("test_questions.id"), nullable=False)
    value: Mapped[Any] = mapped_column(JSON)
    score: Mapped[Optional[int]] = mapped_column(Integer)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    evaluator_comment: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    response: Mapped["TestResponse"] = relationship(back_populates="answers")
    question: Mapped["TestQuestion"] = relationship()

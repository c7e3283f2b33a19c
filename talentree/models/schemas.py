from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from talentree.models.orm import QuestionType, TestType, WorkerStatus

AnswerPayload = Union[List[str], bool, int, float, str]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ========== Question Bank ==========

class QuestionIn(BaseModel):
    text: str
    question_type: QuestionType = QuestionType.SINGLE_CHOICE
    options: Optional[List[str]] = None
    points: int = 1
    correct_answers: Optional[List[str]] = None


class TestDefinition(BaseModel):
    name: str
    description: Optional[str] = None
    type: TestType
    is_active: bool = True
    requires_manual_review: bool = False
    passing_score: Optional[int] = None
    duration_minutes: Optional[int] = None


class TestCreate(TestDefinition):
    questions: List[QuestionIn] = []


class TestUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[TestType] = None
    is_active: Optional[bool] = None
    requires_manual_review: Optional[bool] = None
    passing_score: Optional[int] = None
    duration_minutes: Optional[int] = None
    questions: Optional[List[QuestionIn]] = None


class QuestionPublic(ORMModel):
    """Question as shown to a candidate: no answer key."""
    id: str
    order: int
    text: str
    question_type: QuestionType
    options: Optional[List[str]] = None
    points: int


class QuestionOut(QuestionPublic):
    correct_answers: Optional[List[str]] = None


class TestOut(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    type: TestType
    is_active: bool
    requires_manual_review: bool
    passing_score: Optional[int] = None
    duration_minutes: Optional[int] = None
    created_by: Optional[str] = None
    created_at: datetime
    questions: List[QuestionOut] = []


# ========== Response Ledger ==========

class StartTest(BaseModel):
    test_id: str = Field(min_length=1)
    worker_process_id: str = Field(min_length=1)


class SubmittedAnswer(BaseModel):
    question_id: str = Field(min_length=1)
    value: AnswerPayload = Field(validation_alias=AliasChoices("value", "answer"))


class SubmitTest(BaseModel):
    answers: List[SubmittedAnswer]


class EvaluateAnswer(BaseModel):
    score: int
    is_correct: bool
    evaluator_comment: Optional[str] = None


class AnswerOut(ORMModel):
    id: str
    question_id: str
    value: Optional[AnswerPayload] = None
    score: Optional[int] = None
    is_correct: bool
    evaluator_comment: Optional[str] = None


class ResponseOut(ORMModel):
    id: str
    test_id: str
    worker_process_id: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_completed: bool
    score: Optional[int] = None
    max_score: Optional[int] = None
    passed: bool
    created_at: datetime
    answers: List[AnswerOut] = []


class ResponseStats(BaseModel):
    total: int
    completed: int
    pending: int
    passed: int
    average_score: Optional[float] = None


# ========== Application Pipeline ==========

class ApplyToProcess(BaseModel):
    worker_id: str = Field(min_length=1)
    process_id: str = Field(min_length=1)
    notes: Optional[str] = None


class UpdateApplicationStatus(BaseModel):
    status: WorkerStatus
    notes: Optional[str] = None


class ApplicationOut(ORMModel):
    id: str
    worker_id: str
    process_id: str
    status: WorkerStatus
    applied_at: datetime
    evaluated_at: Optional[datetime] = None
    notes: Optional[str] = None


class ApplicationStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    by_status: Dict[str, int] = Field(alias="byStatus")


class WorkerDashboard(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    applied: int = Field(alias="aplicadas")
    in_process: int = Field(alias="enProceso")
    finalized: int = Field(alias="finalizadas")
    available: int = Field(alias="disponibles")


class DeltaMetric(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    new: int = Field(alias="nuevos")
    text: str = Field(alias="texto")


class ApprovalMetric(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    approval_rate: str = Field(alias="tasaAprobacion")


class PeriodMetric(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    text: str = Field(alias="texto")


class CompanyDashboard(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_processes: DeltaMetric = Field(alias="procesosActivos")
    candidates: DeltaMetric = Field(alias="candidatos")
    approved_candidates: ApprovalMetric = Field(alias="candidatosAprobados")
    completed_processes: PeriodMetric = Field(alias="procesosCompletados")

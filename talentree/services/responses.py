"""
Response ledger: one response per (test, application) and its answers.

A response moves NotStarted -> InProgress (`start_test`) -> Completed
(`submit_test`) and never goes back. All writes that touch response totals
take the response row lock and are retried on optimistic version conflicts.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from talentree.core.clock import Clock, utcnow
from talentree.core.errors import AlreadyCompletedError, NotFoundError, TransientError, ValidationError
from talentree.models.orm import Test, TestAnswer, TestQuestion, TestResponse, WorkerProcess
from talentree.models.schemas import ResponseStats
from talentree.services import scoring

logger = logging.getLogger(__name__)


class ResponseLedger:

    def __init__(self, db: Session, clock: Clock = utcnow, retries: int = 3):
        self.db = db
        self.now = clock
        self.retries = max(1, retries)

    # ---- lifecycle ----

    def start_test(self, test_id: str, worker_process_id: str) -> TestResponse:
        """Return the open response for the pair, creating it on first call."""
        return self.start_or_resume(test_id, worker_process_id)[0]

    def start_or_resume(self, test_id: str, worker_process_id: str) -> Tuple[TestResponse, bool]:
        """Like `start_test`, also reporting whether this call created the response."""
        if self.db.get(Test, test_id) is None:
            raise NotFoundError.for_entity("Test", test_id)
        if self.db.get(WorkerProcess, worker_process_id) is None:
            raise NotFoundError.for_entity("WorkerProcess", worker_process_id)

        existing = self._find_pair(test_id, worker_process_id)
        if existing is not None:
            return self._reuse(existing), False

        now = self.now()
        response = TestResponse(
            test_id=test_id,
            worker_process_id=worker_process_id,
            started_at=now,
            is_completed=False,
            passed=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(response)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a concurrent start for the same pair: hand back the winner.
            self.db.rollback()
            existing = self._find_pair(test_id, worker_process_id)
            if existing is None:
                raise
            logger.info(f"Concurrent start for test {test_id} / application {worker_process_id}, reusing {existing.id}")
            return self._reuse(existing), False

        logger.info(f"Started response {response.id} for test {test_id} / application {worker_process_id}")
        return response, True

    def submit_test(self, response_id: str, answers: Iterable[Tuple[str, Any]]) -> TestResponse:
        """
        Upsert answers by question identity and complete the response.

        Tests without manual review are auto-evaluated before completion. The
        answers, grades and completion flag commit together.
        """
        response = self._lock(response_id)
        if response.is_completed:
            raise AlreadyCompletedError(f"Response {response_id} is already completed")

        test = response.test
        questions = self._questions(test)
        submitted: Dict[str, Any] = {}
        for question_id, value in answers:
            if question_id not in questions:
                raise ValidationError(f"Question {question_id} does not belong to test {test.id}")
            submitted[question_id] = value

        now = self.now()
        by_question = {a.question_id: a for a in response.answers}
        for question_id, value in submitted.items():
            answer = by_question.get(question_id)
            if answer is not None:
                answer.value = value
                answer.updated_at = now
            else:
                response.answers.append(
                    TestAnswer(question_id=question_id, value=value, is_correct=False, created_at=now, updated_at=now)
                )
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise TransientError(f"Concurrent submission on response {response_id}; retry the request")

        if not test.requires_manual_review:
            self._auto_evaluate(response, questions)

        response.is_completed = True
        response.completed_at = now
        response.updated_at = now
        self.db.commit()
        logger.info(
            f"Completed response {response_id} with {len(submitted)} answers "
            f"(manual_review={test.requires_manual_review}, score={response.score})"
        )
        return response

    # ---- scoring ----

    def auto_evaluate(self, response_id: str) -> TestResponse:
        def run():
            response = self._lock(response_id)
            self._auto_evaluate(response, self._questions(response.test))
            self.db.commit()
            return response

        return self._with_version_retry(run)

    def evaluate_answer(self, answer_id: str, score: int, is_correct: bool, comment: str = None) -> TestAnswer:
        """
        Overwrite one answer's grade and recalculate its response.

        The score is taken as given, even outside [0, points].
        """
        def run():
            answer = self.db.get(TestAnswer, answer_id)
            if answer is None:
                raise NotFoundError.for_entity("TestAnswer", answer_id)
            response = self._lock(answer.test_response_id)
            answer.score = score
            answer.is_correct = is_correct
            answer.evaluator_comment = comment
            answer.updated_at = self.now()
            self._recalculate(response)
            self.db.commit()
            logger.info(f"Answer {answer_id} graded {score} (correct={is_correct}); response {response.id} now {response.score}/{response.max_score}")
            return answer

        return self._with_version_retry(run)

    def recalculate_score(self, response_id: str) -> TestResponse:
        def run():
            response = self._lock(response_id)
            self._recalculate(response)
            self.db.commit()
            return response

        return self._with_version_retry(run)

    # ---- reads ----

    def find_one(self, response_id: str) -> TestResponse:
        stmt = select(TestResponse).options(selectinload(TestResponse.answers)).where(TestResponse.id == response_id)
        response = self.db.scalar(stmt)
        if response is None:
            raise NotFoundError.for_entity("TestResponse", response_id)
        return response

    def find_by_application(self, worker_process_id: str) -> List[TestResponse]:
        stmt = (
            select(TestResponse)
            .options(selectinload(TestResponse.answers))
            .where(TestResponse.worker_process_id == worker_process_id)
            .order_by(TestResponse.created_at.desc())
        )
        return list(self.db.scalars(stmt))

    def find_by_test(self, test_id: str) -> List[TestResponse]:
        stmt = (
            select(TestResponse)
            .options(selectinload(TestResponse.answers))
            .where(TestResponse.test_id == test_id)
            .order_by(TestResponse.created_at.desc())
        )
        return list(self.db.scalars(stmt))

    def stats(self) -> ResponseStats:
        def count(*where) -> int:
            return self.db.scalar(select(func.count(TestResponse.id)).where(*where)) or 0

        total = count()
        completed = count(TestResponse.is_completed.is_(True))
        passed = count(TestResponse.passed.is_(True))
        average = self.db.scalar(select(func.avg(TestResponse.score)).where(TestResponse.score.is_not(None)))
        return ResponseStats(
            total=total,
            completed=completed,
            pending=total - completed,
            passed=passed,
            average_score=round(float(average), 2) if average is not None else None,
        )

    # ---- internals ----

    def _find_pair(self, test_id: str, worker_process_id: str):
        stmt = select(TestResponse).where(
            TestResponse.test_id == test_id, TestResponse.worker_process_id == worker_process_id
        )
        return self.db.scalar(stmt)

    @staticmethod
    def _reuse(existing: TestResponse) -> TestResponse:
        if existing.is_completed:
            raise AlreadyCompletedError(f"Test already completed in response {existing.id}")
        return existing

    def _lock(self, response_id: str) -> TestResponse:
        stmt = (
            select(TestResponse)
            .where(TestResponse.id == response_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        response = self.db.scalar(stmt)
        if response is None:
            raise NotFoundError.for_entity("TestResponse", response_id)
        return response

    def _questions(self, test: Test) -> Dict[str, TestQuestion]:
        return {q.id: q for q in test.questions}

    def _answers(self, response: TestResponse) -> List[TestAnswer]:
        self.db.flush()
        stmt = select(TestAnswer).where(TestAnswer.test_response_id == response.id).order_by(TestAnswer.created_at)
        return list(self.db.scalars(stmt))

    @staticmethod
    def _sheet_item(answer: TestAnswer, question: TestQuestion) -> scoring.SheetItem:
        return scoring.SheetItem(
            points=question.points,
            correct_answers=frozenset(question.correct_answers) if question.correct_answers else None,
            value=scoring.to_answer_value(answer.value),
            score=answer.score,
        )

    def _auto_evaluate(self, response: TestResponse, questions: Dict[str, TestQuestion]) -> None:
        answers = self._answers(response)
        items = [self._sheet_item(a, questions[a.question_id]) for a in answers]
        grades, summary = scoring.auto_evaluate(items, response.test.passing_score)
        for answer, grade in zip(answers, grades):
            if grade is not None:
                answer.is_correct = grade.is_correct
                answer.score = grade.score
        self._apply(response, summary)

    def _recalculate(self, response: TestResponse) -> None:
        questions = self._questions(response.test)
        items = [self._sheet_item(a, questions[a.question_id]) for a in self._answers(response)]
        self._apply(response, scoring.recalculate(items, response.test.passing_score))

    def _apply(self, response: TestResponse, summary: scoring.ScoreSummary) -> None:
        response.score = summary.score
        response.max_score = summary.max_score
        response.passed = summary.passed
        # Always touch the row so the version counter detects racing writers.
        response.updated_at = self.now()

    def _with_version_retry(self, fn: Callable[[], Any]) -> Any:
        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(StaleDataError),
                stop=stop_after_attempt(self.retries),
                reraise=True,
            ):
                with attempt:
                    try:
                        return fn()
                    except StaleDataError:
                        self.db.rollback()
                        logger.warning(f"Version conflict on response write (attempt {attempt.retry_state.attempt_number})")
                        raise
        except StaleDataError:
            raise TransientError("Response was modified concurrently; retry the request")

import logging
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from talentree.core.clock import Clock, utcnow
from talentree.core.errors import ConflictError, NotFoundError, ValidationError
from talentree.models.orm import Test, TestQuestion, TestResponse, TestType
from talentree.models.schemas import QuestionIn, TestDefinition, TestUpdate
from talentree.services.scoring import normalize_correct_answers

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name",
    "description",
    "type",
    "is_active",
    "requires_manual_review",
    "passing_score",
    "duration_minutes",
)


class QuestionBank:
    """Test definitions and their ordered question sets."""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.now = clock

    # ---- reads ----

    def find_one(self, test_id: str) -> Test:
        test = self.db.scalar(select(Test).options(selectinload(Test.questions)).where(Test.id == test_id))
        if test is None:
            raise NotFoundError.for_entity("Test", test_id)
        return test

    def find_all(self) -> List[Test]:
        stmt = select(Test).options(selectinload(Test.questions)).order_by(Test.created_at.desc())
        return list(self.db.scalars(stmt))

    def find_by_type(self, test_type: TestType) -> List[Test]:
        stmt = (
            select(Test)
            .options(selectinload(Test.questions))
            .where(Test.type == test_type, Test.is_active.is_(True))
            .order_by(Test.created_at.desc())
        )
        return list(self.db.scalars(stmt))

    def get_questions(self, test_id: str) -> List[TestQuestion]:
        return list(self.find_one(test_id).questions)

    # ---- writes ----

    def create_test(self, definition: TestDefinition, questions: Sequence[QuestionIn], created_by: Optional[str] = None) -> Test:
        fields = definition.model_dump(include=set(UPDATABLE_FIELDS))
        self._validate_fields(fields)
        self._validate_questions(questions)
        now = self.now()
        test = Test(**fields, created_by=created_by, created_at=now, updated_at=now)
        test.questions = self._build_questions(questions)
        self.db.add(test)
        self.db.commit()
        logger.info(f"Created test {test.id} ({test.type.value}) with {len(questions)} questions")
        return self.find_one(test.id)

    def update_test(self, test_id: str, changes: TestUpdate, questions: Optional[Sequence[QuestionIn]] = None) -> Test:
        """
        Update scalar fields named in `changes`. A given `questions` list replaces
        the whole question set; individual questions cannot be patched.
        """
        test = self.find_one(test_id)
        fields = changes.model_dump(exclude_unset=True, include=set(UPDATABLE_FIELDS))
        self._validate_fields(fields)
        if questions is not None:
            self._validate_questions(questions)
            if self._has_responses(test_id):
                raise ConflictError(f"Test {test_id} already has responses; its questions cannot be replaced")

        for key, value in fields.items():
            setattr(test, key, value)
        test.updated_at = self.now()

        if questions is not None:
            test.questions.clear()
            # Old rows must be gone before the new ones reuse their order slots.
            self.db.flush()
            test.questions.extend(self._build_questions(questions))

        self.db.commit()
        logger.info(f"Updated test {test_id}: fields={sorted(fields)} questions_replaced={questions is not None}")
        return self.find_one(test_id)

    def toggle_active(self, test_id: str) -> Test:
        test = self.find_one(test_id)
        test.is_active = not test.is_active
        test.updated_at = self.now()
        self.db.commit()
        logger.info(f"Test {test_id} is_active={test.is_active}")
        return test

    def remove(self, test_id: str) -> None:
        test = self.find_one(test_id)
        if self._has_responses(test_id):
            raise ConflictError(f"Test {test_id} has responses and cannot be deleted")
        self.db.delete(test)
        self.db.commit()
        logger.info(f"Deleted test {test_id}")

    # ---- helpers ----

    def _has_responses(self, test_id: str) -> bool:
        count = self.db.scalar(select(func.count(TestResponse.id)).where(TestResponse.test_id == test_id))
        return bool(count)

    @staticmethod
    def _validate_fields(fields: dict) -> None:
        if "name" in fields and (fields["name"] is None or not fields["name"].strip()):
            raise ValidationError("Test name must not be empty")
        if "type" in fields and fields["type"] is None:
            raise ValidationError("Test type must not be empty")
        if fields.get("passing_score") is not None and fields["passing_score"] < 0:
            raise ValidationError("passing_score must be non-negative")
        if fields.get("duration_minutes") is not None and fields["duration_minutes"] <= 0:
            raise ValidationError("duration_minutes must be positive")
        for flag in ("is_active", "requires_manual_review"):
            if flag in fields and fields[flag] is None:
                raise ValidationError(f"{flag} must not be null")

    @staticmethod
    def _validate_questions(questions: Sequence[QuestionIn]) -> None:
        for i, q in enumerate(questions):
            if q.points < 0:
                raise ValidationError(f"Question {i} has negative points ({q.points})")
            if not q.text.strip():
                raise ValidationError(f"Question {i} has no text")

    @staticmethod
    def _build_questions(questions: Sequence[QuestionIn]) -> List[TestQuestion]:
        return [
            TestQuestion(
                order=i,
                text=q.text,
                question_type=q.question_type,
                options=q.options,
                points=q.points,
                correct_answers=normalize_correct_answers(q.correct_answers),
            )
            for i, q in enumerate(questions)
        ]

from typing import List

from fastapi import APIRouter, Depends, Response, status

from talentree.api.deps import get_question_bank
from talentree.core.auth import Role, TokenData, require_roles
from talentree.models.orm import TestType
from talentree.models.schemas import QuestionPublic, TestCreate, TestOut, TestUpdate
from talentree.services.question_bank import QuestionBank

router = APIRouter()

MANAGERS = (Role.ADMIN, Role.COMPANY)
READERS = (Role.ADMIN, Role.COMPANY, Role.EVALUATOR)


@router.post("", response_model=TestOut, status_code=status.HTTP_201_CREATED)
def create_test(
    payload: TestCreate,
    user: TokenData = Depends(require_roles(*MANAGERS)),
    bank: QuestionBank = Depends(get_question_bank),
):
    test = bank.create_test(payload, payload.questions, created_by=user.sub)
    return TestOut.model_validate(test)


@router.get("", response_model=List[TestOut], dependencies=[Depends(require_roles(*READERS))])
def list_tests(bank: QuestionBank = Depends(get_question_bank)):
    return [TestOut.model_validate(t) for t in bank.find_all()]


@router.get("/type/{test_type}", response_model=List[TestOut], dependencies=[Depends(require_roles(*READERS))])
def list_tests_by_type(test_type: TestType, bank: QuestionBank = Depends(get_question_bank)):
    return [TestOut.model_validate(t) for t in bank.find_by_type(test_type)]


@router.get("/{test_id}", response_model=TestOut, dependencies=[Depends(require_roles(*READERS))])
def get_test(test_id: str, bank: QuestionBank = Depends(get_question_bank)):
    return TestOut.model_validate(bank.find_one(test_id))


@router.get(
    "/{test_id}/questions",
    response_model=List[QuestionPublic],
    dependencies=[Depends(require_roles(*READERS, Role.WORKER))],
)
def get_test_questions(test_id: str, bank: QuestionBank = Depends(get_question_bank)):
    # Candidates read this route, so the answer key is left out.
    return [QuestionPublic.model_validate(q) for q in bank.get_questions(test_id)]


@router.patch("/{test_id}", response_model=TestOut, dependencies=[Depends(require_roles(*MANAGERS))])
def update_test(test_id: str, payload: TestUpdate, bank: QuestionBank = Depends(get_question_bank)):
    return TestOut.model_validate(bank.update_test(test_id, payload, payload.questions))


@router.patch("/{test_id}/toggle-active", response_model=TestOut, dependencies=[Depends(require_roles(*MANAGERS))])
def toggle_test_active(test_id: str, bank: QuestionBank = Depends(get_question_bank)):
    return TestOut.model_validate(bank.toggle_active(test_id))


@router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_roles(Role.ADMIN))])
def delete_test(test_id: str, bank: QuestionBank = Depends(get_question_bank)):
    bank.remove(test_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

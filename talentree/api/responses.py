from typing import List

from fastapi import APIRouter, Depends, Response, status

from talentree.api.deps import get_response_ledger
from talentree.core.auth import Role, require_roles
from talentree.models.schemas import AnswerOut, EvaluateAnswer, ResponseOut, ResponseStats, StartTest, SubmitTest
from talentree.services.responses import ResponseLedger

router = APIRouter()

TAKERS = (Role.WORKER, Role.ADMIN, Role.COMPANY)
GRADERS = (Role.ADMIN, Role.COMPANY, Role.EVALUATOR)


@router.get("/stats", response_model=ResponseStats, dependencies=[Depends(require_roles(Role.ADMIN, Role.EVALUATOR))])
def response_stats(ledger: ResponseLedger = Depends(get_response_ledger)):
    return ledger.stats()


@router.post(
    "/start",
    response_model=ResponseOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(*TAKERS))],
)
def start_test(payload: StartTest, http_response: Response, ledger: ResponseLedger = Depends(get_response_ledger)):
    response, created = ledger.start_or_resume(payload.test_id, payload.worker_process_id)
    if not created:
        http_response.status_code = status.HTTP_200_OK
    return ResponseOut.model_validate(response)


@router.post("/{response_id}/submit", response_model=ResponseOut, dependencies=[Depends(require_roles(*TAKERS))])
def submit_test(response_id: str, payload: SubmitTest, ledger: ResponseLedger = Depends(get_response_ledger)):
    answers = [(a.question_id, a.value) for a in payload.answers]
    return ResponseOut.model_validate(ledger.submit_test(response_id, answers))


@router.post("/{response_id}/auto-evaluate", response_model=ResponseOut, dependencies=[Depends(require_roles(*GRADERS))])
def auto_evaluate(response_id: str, ledger: ResponseLedger = Depends(get_response_ledger)):
    return ResponseOut.model_validate(ledger.auto_evaluate(response_id))


@router.patch("/answer/{answer_id}/evaluate", response_model=AnswerOut, dependencies=[Depends(require_roles(*GRADERS))])
def evaluate_answer(answer_id: str, payload: EvaluateAnswer, ledger: ResponseLedger = Depends(get_response_ledger)):
    answer = ledger.evaluate_answer(answer_id, payload.score, payload.is_correct, payload.evaluator_comment)
    return AnswerOut.model_validate(answer)


@router.post("/{response_id}/recalculate", response_model=ResponseOut, dependencies=[Depends(require_roles(*GRADERS))])
def recalculate(response_id: str, ledger: ResponseLedger = Depends(get_response_ledger)):
    return ResponseOut.model_validate(ledger.recalculate_score(response_id))


@router.get("/{response_id}", response_model=ResponseOut, dependencies=[Depends(require_roles(*GRADERS, Role.WORKER))])
def get_response(response_id: str, ledger: ResponseLedger = Depends(get_response_ledger)):
    return ResponseOut.model_validate(ledger.find_one(response_id))


@router.get(
    "/worker-process/{worker_process_id}",
    response_model=List[ResponseOut],
    dependencies=[Depends(require_roles(*GRADERS, Role.WORKER))],
)
def responses_for_application(worker_process_id: str, ledger: ResponseLedger = Depends(get_response_ledger)):
    return [ResponseOut.model_validate(r) for r in ledger.find_by_application(worker_process_id)]


@router.get("/test/{test_id}", response_model=List[ResponseOut], dependencies=[Depends(require_roles(*GRADERS))])
def responses_for_test(test_id: str, ledger: ResponseLedger = Depends(get_response_ledger)):
    return [ResponseOut.model_validate(r) for r in ledger.find_by_test(test_id)]

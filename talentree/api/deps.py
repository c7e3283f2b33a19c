from fastapi import Depends
from sqlalchemy.orm import Session

from talentree.core.cache import get_stats_cache
from talentree.core.config import settings
from talentree.core.database import get_db
from talentree.services.pipeline import ApplicationPipeline
from talentree.services.question_bank import QuestionBank
from talentree.services.responses import ResponseLedger


def get_question_bank(db: Session = Depends(get_db)) -> QuestionBank:
    return QuestionBank(db)


def get_response_ledger(db: Session = Depends(get_db)) -> ResponseLedger:
    return ResponseLedger(db, retries=settings.SCORE_UPDATE_RETRIES)


def get_pipeline(db: Session = Depends(get_db)) -> ApplicationPipeline:
    return ApplicationPipeline(
        db,
        enforce_transitions=settings.ENFORCE_STATUS_TRANSITIONS,
        cache=get_stats_cache(),
    )

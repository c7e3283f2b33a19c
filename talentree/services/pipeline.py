"""
Application pipeline: candidate applications (WorkerProcess), their status
machine, and the aggregate counts behind the stats and dashboard endpoints.

Aggregates are built from several independent COUNT queries and are only
point-in-time consistent; concurrent writes between the counts can make the
figures disagree slightly with each other.
"""
import calendar
import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from talentree.core.cache import StatsCache
from talentree.core.clock import Clock, utcnow
from talentree.core.errors import DuplicateApplicationError, InvalidTransitionError, NotFoundError
from talentree.models.orm import CLOSED_PROCESS_STATUSES, Company, ProcessStatus, SelectionProcess, Worker, WorkerProcess, WorkerStatus
from talentree.models.schemas import (
    ApplicationStats,
    ApprovalMetric,
    CompanyDashboard,
    DeltaMetric,
    PeriodMetric,
    WorkerDashboard,
)

logger = logging.getLogger(__name__)

FINAL_STATUSES = (WorkerStatus.APPROVED, WorkerStatus.REJECTED, WorkerStatus.HIRED)

# Only consulted when transition enforcement is switched on.
ALLOWED_TRANSITIONS: Dict[WorkerStatus, FrozenSet[WorkerStatus]] = {
    WorkerStatus.PENDING: frozenset({WorkerStatus.IN_PROCESS, WorkerStatus.REJECTED}),
    WorkerStatus.IN_PROCESS: frozenset({WorkerStatus.APPROVED, WorkerStatus.REJECTED}),
    WorkerStatus.APPROVED: frozenset({WorkerStatus.HIRED, WorkerStatus.REJECTED}),
    WorkerStatus.REJECTED: frozenset(),
    WorkerStatus.HIRED: frozenset(),
}


def one_month_before(moment: datetime) -> datetime:
    """Same day and time in the previous month, clamped to that month's length."""
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def start_of_month(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def signed(n: int) -> str:
    return f"+{n}" if n > 0 else str(n)


class ApplicationPipeline:

    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        enforce_transitions: bool = False,
        cache: Optional[StatsCache] = None,
    ):
        self.db = db
        self.now = clock
        self.enforce_transitions = enforce_transitions
        self.cache = cache

    # ---- applications ----

    def apply(self, worker_id: str, process_id: str, notes: Optional[str] = None) -> WorkerProcess:
        if self.db.get(Worker, worker_id) is None:
            raise NotFoundError.for_entity("Worker", worker_id)
        if self.db.get(SelectionProcess, process_id) is None:
            raise NotFoundError.for_entity("SelectionProcess", process_id)

        if self._find_application(worker_id, process_id) is not None:
            raise DuplicateApplicationError(f"Worker {worker_id} has already applied to process {process_id}")

        now = self.now()
        application = WorkerProcess(
            worker_id=worker_id,
            process_id=process_id,
            status=WorkerStatus.PENDING,
            applied_at=now,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(application)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Concurrent application of worker {worker_id} to process {process_id} rejected")
            raise DuplicateApplicationError(f"Worker {worker_id} has already applied to process {process_id}")
        logger.info(f"Worker {worker_id} applied to process {process_id} as {application.id}")
        return application

    def update_status(self, application_id: str, status: WorkerStatus, notes: Optional[str] = None) -> WorkerProcess:
        """Set status (and notes when given) and stamp `evaluated_at`. Test responses are untouched."""
        application = self.find_one(application_id)
        previous = application.status
        if self.enforce_transitions and status != previous and status not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(f"Cannot move application {application_id} from {previous.value} to {status.value}")

        now = self.now()
        application.status = status
        if notes is not None:
            application.notes = notes
        application.evaluated_at = now
        application.updated_at = now
        self.db.commit()
        logger.info(f"Application {application_id}: {previous.value} -> {status.value}")
        return application

    def find_one(self, application_id: str) -> WorkerProcess:
        application = self.db.get(WorkerProcess, application_id)
        if application is None:
            raise NotFoundError.for_entity("WorkerProcess", application_id)
        return application

    def list_for_worker(self, worker_id: str) -> List[WorkerProcess]:
        stmt = select(WorkerProcess).where(WorkerProcess.worker_id == worker_id).order_by(WorkerProcess.created_at.desc())
        return list(self.db.scalars(stmt))

    def list_for_process(self, process_id: str) -> List[WorkerProcess]:
        stmt = select(WorkerProcess).where(WorkerProcess.process_id == process_id).order_by(WorkerProcess.created_at.desc())
        return list(self.db.scalars(stmt))

    # ---- aggregates ----

    def stats(self) -> ApplicationStats:
        total = self._count(WorkerProcess)
        by_status = {s.value: self._count(WorkerProcess, WorkerProcess.status == s) for s in WorkerStatus}
        return ApplicationStats(total=total, by_status=by_status)

    def worker_dashboard(self, worker_id: str) -> WorkerDashboard:
        if self.db.get(Worker, worker_id) is None:
            raise NotFoundError.for_entity("Worker", worker_id)
        key = StatsCache.make_key("worker", worker_id)
        cached = self._cached(key)
        if cached is not None:
            return WorkerDashboard.model_validate(cached)

        mine = WorkerProcess.worker_id == worker_id
        applied_ids = select(WorkerProcess.process_id).where(mine)
        active = SelectionProcess.status == ProcessStatus.ACTIVE
        total_active = self._count(SelectionProcess, active)
        applied_active = self._count(SelectionProcess, active, SelectionProcess.id.in_(applied_ids))

        dashboard = WorkerDashboard(
            applied=self._count(WorkerProcess, mine),
            in_process=self._count(WorkerProcess, mine, WorkerProcess.status == WorkerStatus.IN_PROCESS),
            finalized=self._count(WorkerProcess, mine, WorkerProcess.status.in_(FINAL_STATUSES)),
            available=total_active - applied_active,
        )
        self._store(key, dashboard)
        return dashboard

    def company_dashboard(self, company_id: str) -> CompanyDashboard:
        """
        Headline figures for a company. "nuevos" is the current count minus the
        count as of the cutoff and is reported signed, never floored at zero.
        """
        if self.db.get(Company, company_id) is None:
            raise NotFoundError.for_entity("Company", company_id)
        key = StatsCache.make_key("company", company_id)
        cached = self._cached(key)
        if cached is not None:
            return CompanyDashboard.model_validate(cached)

        now = self.now()
        month_ago = one_month_before(now)
        week_ago = now - timedelta(days=7)

        owned = SelectionProcess.company_id == company_id
        active_now = self._count(SelectionProcess, owned, SelectionProcess.status == ProcessStatus.ACTIVE)
        # A process that existed at the cutoff and was closed after it was still active back then.
        active_then = self._count(
            SelectionProcess,
            owned,
            SelectionProcess.created_at < month_ago,
            or_(
                SelectionProcess.status == ProcessStatus.ACTIVE,
                SelectionProcess.status.in_(CLOSED_PROCESS_STATUSES) & (SelectionProcess.closed_at >= month_ago),
            ),
        )
        process_delta = active_now - active_then
        if process_delta:
            process_text = f"{signed(process_delta)} desde el mes pasado"
        else:
            process_text = "Sin cambios este mes"

        candidates = self._company_candidates(company_id)
        candidates_then = self._company_candidates(company_id, WorkerProcess.created_at < week_ago)
        candidate_delta = candidates - candidates_then
        candidate_text = f"{signed(candidate_delta)} esta semana" if candidate_delta else "Sin nuevos esta semana"

        approved = self._company_candidates(company_id, WorkerProcess.status == WorkerStatus.APPROVED)
        rate = f"{approved / candidates * 100:.1f}" if candidates > 0 else "0.0"

        completed = self._count(
            SelectionProcess,
            owned,
            SelectionProcess.status == ProcessStatus.COMPLETED,
            SelectionProcess.updated_at > start_of_month(now),
        )

        dashboard = CompanyDashboard(
            active_processes=DeltaMetric(total=active_now, new=process_delta, text=process_text),
            candidates=DeltaMetric(total=candidates, new=candidate_delta, text=candidate_text),
            approved_candidates=ApprovalMetric(total=approved, approval_rate=f"{rate}% tasa de aprobación"),
            completed_processes=PeriodMetric(total=completed, text="Este mes"),
        )
        self._store(key, dashboard)
        return dashboard

    # ---- helpers ----

    def _find_application(self, worker_id: str, process_id: str) -> Optional[str]:
        stmt = select(WorkerProcess.id).where(WorkerProcess.worker_id == worker_id, WorkerProcess.process_id == process_id)
        return self.db.scalar(stmt)

    def _count(self, model, *where) -> int:
        return self.db.scalar(select(func.count(model.id)).where(*where)) or 0

    def _company_candidates(self, company_id: str, *where) -> int:
        stmt = (
            select(func.count(WorkerProcess.id))
            .join(SelectionProcess, SelectionProcess.id == WorkerProcess.process_id)
            .where(SelectionProcess.company_id == company_id, *where)
        )
        return self.db.scalar(stmt) or 0

    def _cached(self, key: str):
        return self.cache.get(key) if self.cache is not None else None

    def _store(self, key: str, model) -> None:
        if self.cache is not None:
            self.cache.set(key, model.model_dump(by_alias=True))

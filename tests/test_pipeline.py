from datetime import datetime, timedelta

import pytest

from talentree.core.cache import StatsCache
from talentree.core.errors import DuplicateApplicationError, InvalidTransitionError, NotFoundError
from talentree.models.orm import ProcessStatus, SelectionProcess, Worker, WorkerStatus
from talentree.services.pipeline import ApplicationPipeline, one_month_before

NOW = datetime(2024, 3, 15, 12, 0, 0)


def _process(db, company, code, status=ProcessStatus.ACTIVE, created_at=NOW, updated_at=None, closed_at=None):
    p = SelectionProcess(
        company_id=company.id,
        name=f"Process {code}",
        code=code,
        status=status,
        created_at=created_at,
        updated_at=updated_at or created_at,
    )
    if closed_at is not None:
        p.closed_at = closed_at
    db.add(p)
    db.commit()
    return p


def _worker(db, n):
    w = Worker(first_name="Worker", last_name=str(n), email=f"worker{n}@example.com")
    db.add(w)
    db.commit()
    return w


class TestApply:
    def test_new_application_is_pending(self, pipeline, worker, process):
        application = pipeline.apply(worker.id, process.id, notes="Referred")
        assert application.status == WorkerStatus.PENDING
        assert application.applied_at is not None
        assert application.notes == "Referred"

    def test_duplicate_application_is_rejected(self, db, pipeline, worker, process):
        pipeline.apply(worker.id, process.id)
        with pytest.raises(DuplicateApplicationError):
            pipeline.apply(worker.id, process.id)
        assert len(pipeline.list_for_worker(worker.id)) == 1

    def test_concurrent_duplicate_is_rejected(self, pipeline, worker, process, monkeypatch):
        pipeline.apply(worker.id, process.id)
        monkeypatch.setattr(pipeline, "_find_application", lambda worker_id, process_id: None)

        with pytest.raises(DuplicateApplicationError):
            pipeline.apply(worker.id, process.id)
        assert len(pipeline.list_for_worker(worker.id)) == 1

    def test_unknown_references(self, pipeline, worker, process):
        with pytest.raises(NotFoundError):
            pipeline.apply("missing", process.id)
        with pytest.raises(NotFoundError):
            pipeline.apply(worker.id, "missing")

    def test_lists(self, db, pipeline, worker, process, company):
        other = _process(db, company, "BE-002")
        first = pipeline.apply(worker.id, process.id)
        second = pipeline.apply(worker.id, other.id)
        assert [a.id for a in pipeline.list_for_worker(worker.id)] == [second.id, first.id]
        assert [a.id for a in pipeline.list_for_process(process.id)] == [first.id]


class TestStatus:
    def test_update_sets_evaluated_at(self, pipeline, application):
        updated = pipeline.update_status(application.id, WorkerStatus.IN_PROCESS, notes="Phone screen")
        assert updated.status == WorkerStatus.IN_PROCESS
        assert updated.evaluated_at is not None
        assert updated.notes == "Phone screen"

    def test_notes_kept_when_omitted(self, pipeline, worker, process):
        application = pipeline.apply(worker.id, process.id, notes="Original")
        updated = pipeline.update_status(application.id, WorkerStatus.REJECTED)
        assert updated.notes == "Original"

    def test_permissive_by_default(self, pipeline, application):
        pipeline.update_status(application.id, WorkerStatus.HIRED)
        assert pipeline.update_status(application.id, WorkerStatus.PENDING).status == WorkerStatus.PENDING

    def test_enforced_transitions(self, db, clock, application):
        strict = ApplicationPipeline(db, clock=clock, enforce_transitions=True)
        with pytest.raises(InvalidTransitionError):
            strict.update_status(application.id, WorkerStatus.HIRED)
        strict.update_status(application.id, WorkerStatus.IN_PROCESS)
        strict.update_status(application.id, WorkerStatus.APPROVED)
        strict.update_status(application.id, WorkerStatus.HIRED)
        with pytest.raises(InvalidTransitionError):
            strict.update_status(application.id, WorkerStatus.REJECTED)

    def test_unknown_application(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.update_status("missing", WorkerStatus.APPROVED)


class TestStats:
    def test_counts_by_status(self, db, pipeline, worker, process, company):
        a = pipeline.apply(worker.id, process.id)
        pipeline.apply(_worker(db, 2).id, process.id)
        pipeline.update_status(a.id, WorkerStatus.APPROVED)

        stats = pipeline.stats()

        assert stats.total == 2
        assert stats.by_status["pending"] == 1
        assert stats.by_status["approved"] == 1
        assert stats.by_status["hired"] == 0
        assert "byStatus" in stats.model_dump(by_alias=True)


class TestWorkerDashboard:
    def test_counts(self, db, pipeline, worker, company):
        applied = [_process(db, company, f"P{i}") for i in range(3)]
        _process(db, company, "OPEN")
        _process(db, company, "DRAFT", status=ProcessStatus.DRAFT)
        apps = [pipeline.apply(worker.id, p.id) for p in applied]
        pipeline.update_status(apps[0].id, WorkerStatus.IN_PROCESS)
        pipeline.update_status(apps[1].id, WorkerStatus.HIRED)

        dashboard = pipeline.worker_dashboard(worker.id)

        assert dashboard.model_dump(by_alias=True) == {
            "aplicadas": 3,
            "enProceso": 1,
            "finalizadas": 1,
            "disponibles": 1,
        }

    def test_unknown_worker(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.worker_dashboard("missing")


class TestCompanyDashboard:
    def _pipeline(self, db, moment=NOW):
        return ApplicationPipeline(db, clock=lambda: moment)

    def test_growth_reports_positive_delta(self, db, company):
        old = NOW - timedelta(days=60)
        for i in range(7):
            _process(db, company, f"OLD{i}", created_at=old)
        for i in range(3):
            _process(db, company, f"NEW{i}", created_at=NOW - timedelta(days=3))

        metric = self._pipeline(db).company_dashboard(company.id).active_processes

        assert (metric.total, metric.new, metric.text) == (10, 3, "+3 desde el mes pasado")

    def test_shrink_reports_negative_delta(self, db, company):
        old = NOW - timedelta(days=60)
        for i in range(7):
            _process(db, company, f"OPEN{i}", created_at=old)
        for i in range(3):
            _process(db, company, f"DONE{i}", status=ProcessStatus.COMPLETED,
                     created_at=old, closed_at=NOW - timedelta(days=5))

        metric = self._pipeline(db).company_dashboard(company.id).active_processes

        assert (metric.total, metric.new, metric.text) == (7, -3, "-3 desde el mes pasado")

    def test_edit_after_closing_does_not_revive_process(self, db, company):
        _process(db, company, "OPEN", created_at=NOW - timedelta(days=90))
        _process(db, company, "RENAMED", status=ProcessStatus.CANCELLED, created_at=NOW - timedelta(days=90),
                 updated_at=NOW - timedelta(days=2), closed_at=NOW - timedelta(days=60))

        metric = self._pipeline(db).company_dashboard(company.id).active_processes

        assert (metric.total, metric.new, metric.text) == (1, 0, "Sin cambios este mes")

    def test_closing_stamps_closed_at(self, db, company):
        p = _process(db, company, "TOGGLE")
        assert p.closed_at is None
        p.status = ProcessStatus.PAUSED
        assert p.closed_at is not None
        p.status = ProcessStatus.ACTIVE
        assert p.closed_at is None

    def test_no_change(self, db, company):
        _process(db, company, "SAME", created_at=NOW - timedelta(days=90))
        metric = self._pipeline(db).company_dashboard(company.id).active_processes
        assert (metric.new, metric.text) == (0, "Sin cambios este mes")

    def test_candidates_and_approval_rate(self, db, company, clock):
        process = _process(db, company, "HIRE")
        writer = ApplicationPipeline(db, clock=clock)
        clock.set(NOW - timedelta(days=30))
        early = [writer.apply(_worker(db, i).id, process.id) for i in range(2)]
        clock.set(NOW - timedelta(days=1))
        late = writer.apply(_worker(db, 9).id, process.id)
        writer.update_status(early[0].id, WorkerStatus.APPROVED)

        dashboard = self._pipeline(db).company_dashboard(company.id)

        assert (dashboard.candidates.total, dashboard.candidates.new) == (3, 1)
        assert dashboard.candidates.text == "+1 esta semana"
        assert dashboard.approved_candidates.total == 1
        assert dashboard.approved_candidates.approval_rate == "33.3% tasa de aprobación"
        assert late.status == WorkerStatus.PENDING

    def test_empty_company(self, db, company):
        body = self._pipeline(db).company_dashboard(company.id).model_dump(by_alias=True)
        assert body["candidatos"] == {"total": 0, "nuevos": 0, "texto": "Sin nuevos esta semana"}
        assert body["candidatosAprobados"] == {"total": 0, "tasaAprobacion": "0.0% tasa de aprobación"}
        assert body["procesosCompletados"] == {"total": 0, "texto": "Este mes"}

    def test_completed_this_month(self, db, company):
        _process(db, company, "C1", status=ProcessStatus.COMPLETED,
                 created_at=NOW - timedelta(days=90), updated_at=datetime(2024, 3, 2))
        _process(db, company, "C2", status=ProcessStatus.COMPLETED,
                 created_at=NOW - timedelta(days=90), updated_at=datetime(2024, 2, 20))
        assert self._pipeline(db).company_dashboard(company.id).completed_processes.total == 1

    def test_unknown_company(self, db):
        with pytest.raises(NotFoundError):
            self._pipeline(db).company_dashboard("missing")


class FakeRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        return True


def test_dashboard_served_from_cache(db, clock, worker, process):
    cache = StatsCache(FakeRedis(), ttl=30)
    cached = ApplicationPipeline(db, clock=clock, cache=cache)

    first = cached.worker_dashboard(worker.id)
    cached.apply(worker.id, process.id)
    second = cached.worker_dashboard(worker.id)

    assert first == second
    assert first.applied == 0
    assert "stats:worker:" + worker.id in cache.client.store


@pytest.mark.parametrize(
    "moment, expected",
    [
        (datetime(2024, 3, 31, 8), datetime(2024, 2, 29, 8)),
        (datetime(2024, 1, 15), datetime(2023, 12, 15)),
        (datetime(2023, 3, 30), datetime(2023, 2, 28)),
    ],
)
def test_one_month_before(moment, expected):
    assert one_month_before(moment) == expected

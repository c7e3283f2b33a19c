from typing import List

from fastapi import APIRouter, Depends, status

from talentree.api.deps import get_pipeline
from talentree.core.auth import Role, require_roles
from talentree.models.schemas import (
    ApplicationOut,
    ApplicationStats,
    ApplyToProcess,
    CompanyDashboard,
    UpdateApplicationStatus,
    WorkerDashboard,
)
from talentree.services.pipeline import ApplicationPipeline

router = APIRouter()
workers_router = APIRouter()
processes_router = APIRouter()
companies_router = APIRouter()

STAFF = (Role.ADMIN, Role.COMPANY, Role.EVALUATOR)


# ---- /applications ----

@router.post(
    "",
    response_model=ApplicationOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(Role.ADMIN, Role.COMPANY, Role.WORKER))],
)
def apply(payload: ApplyToProcess, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return ApplicationOut.model_validate(pipeline.apply(payload.worker_id, payload.process_id, payload.notes))


@router.get(
    "/stats",
    response_model=ApplicationStats,
    response_model_by_alias=True,
    dependencies=[Depends(require_roles(Role.ADMIN, Role.EVALUATOR))],
)
def application_stats(pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return pipeline.stats()


@router.get("/{application_id}", response_model=ApplicationOut, dependencies=[Depends(require_roles(*STAFF, Role.WORKER))])
def get_application(application_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return ApplicationOut.model_validate(pipeline.find_one(application_id))


@router.patch("/{application_id}/status", response_model=ApplicationOut, dependencies=[Depends(require_roles(*STAFF))])
def update_application_status(
    application_id: str,
    payload: UpdateApplicationStatus,
    pipeline: ApplicationPipeline = Depends(get_pipeline),
):
    return ApplicationOut.model_validate(pipeline.update_status(application_id, payload.status, payload.notes))


# ---- /workers ----

@workers_router.get(
    "/{worker_id}/applications",
    response_model=List[ApplicationOut],
    dependencies=[Depends(require_roles(*STAFF, Role.WORKER))],
)
def worker_applications(worker_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return [ApplicationOut.model_validate(a) for a in pipeline.list_for_worker(worker_id)]


@workers_router.get(
    "/{worker_id}/dashboard-stats",
    response_model=WorkerDashboard,
    response_model_by_alias=True,
    dependencies=[Depends(require_roles(*STAFF, Role.WORKER))],
)
def worker_dashboard(worker_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return pipeline.worker_dashboard(worker_id)


# ---- /processes ----

@processes_router.get(
    "/{process_id}/applications",
    response_model=List[ApplicationOut],
    dependencies=[Depends(require_roles(*STAFF, Role.GUEST))],
)
def process_applications(process_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return [ApplicationOut.model_validate(a) for a in pipeline.list_for_process(process_id)]


# ---- /companies ----

@companies_router.get(
    "/{company_id}/dashboard-stats",
    response_model=CompanyDashboard,
    response_model_by_alias=True,
    dependencies=[Depends(require_roles(*STAFF))],
)
def company_dashboard(company_id: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return pipeline.company_dashboard(company_id)

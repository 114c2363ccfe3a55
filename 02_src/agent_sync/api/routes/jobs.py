"""Job API routes."""

from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter, Query

from ...app import Application
from ...errors import NotFoundError
from ...models import DEFAULT_PRIORITY, Job, JobStatus


class JobRequest(BaseModel):
    """Request model for creating a job."""

    owner: str
    requester: str | None = None
    parent_job_id: int | None = None
    notify_list: list[str] = []
    message_id: int | None = None
    priority: int = DEFAULT_PRIORITY


class JobIdResponse(BaseModel):
    id: int


class TransitionRequest(BaseModel):
    status: JobStatus
    actor: str
    error_message: str | None = None


class CompleteRequest(BaseModel):
    actor: str | None = None
    deliverable_path: str | None = None
    deliverable_summary: str | None = None


class JobResponse(BaseModel):
    """Response model for a job."""

    id: int
    owner: str
    status: str
    priority: int
    message_id: int | None
    requester: str | None
    parent_job_id: int | None
    notify_list: list[str]
    deliverable_path: str | None
    deliverable_summary: str | None
    error_message: str | None
    created_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime | None
    children: list[int] = []

    @classmethod
    def from_job(cls, job: Job, children: list[Job] | None = None) -> "JobResponse":
        return cls(
            id=job.id,
            owner=job.owner,
            status=job.status.value,
            priority=job.priority,
            message_id=job.message_id,
            requester=job.requester,
            parent_job_id=job.parent_job_id,
            notify_list=job.notify_list,
            deliverable_path=job.deliverable_path,
            deliverable_summary=job.deliverable_summary,
            error_message=job.error_message,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            updated_at=job.updated_at,
            children=[child.id for child in children or []],
        )


def create_jobs_router(app: Application) -> APIRouter:
    """Create jobs router."""
    router = APIRouter(prefix="/api", tags=["jobs"])

    async def resolve_optional(name: str | None) -> str | None:
        return await app.identity.resolve(name) if name else name

    @router.post("/jobs", response_model=JobIdResponse, status_code=201)
    async def create_job(request: JobRequest) -> dict:
        job_id = await app.jobs.create_job(
            owner=await app.identity.resolve(request.owner),
            requester=await resolve_optional(request.requester),
            parent_job_id=request.parent_job_id,
            notify_list=[await app.identity.resolve(n) for n in request.notify_list],
            message_id=request.message_id,
            priority=request.priority,
        )
        return {"id": job_id}

    @router.get("/jobs/pending", response_model=list[JobResponse])
    async def list_pending(
        owner: str = Query(..., description="Owning agent"),
    ) -> list[JobResponse]:
        """Open jobs of owner, most urgent first."""
        jobs = await app.jobs.list_pending(await app.identity.resolve(owner))
        return [JobResponse.from_job(job) for job in jobs]

    @router.get("/jobs/{job_id}", response_model=JobResponse)
    async def get_job(job_id: int) -> JobResponse:
        job = await app.jobs.get_job(job_id)
        if job is None:
            raise NotFoundError(f"job {job_id} does not exist")
        children = await app.jobs.list_children(job_id)
        return JobResponse.from_job(job, children)

    @router.post("/jobs/{job_id}/transition", response_model=JobResponse)
    async def transition_job(job_id: int, request: TransitionRequest) -> JobResponse:
        if await app.jobs.get_job(job_id) is None:
            raise NotFoundError(f"job {job_id} does not exist")
        job = await app.jobs.transition(
            job_id,
            request.status,
            actor=await app.identity.resolve(request.actor),
            error_message=request.error_message,
        )
        return JobResponse.from_job(job)

    @router.post("/jobs/{job_id}/complete", response_model=JobResponse)
    async def complete_job(job_id: int, request: CompleteRequest) -> JobResponse:
        if await app.jobs.get_job(job_id) is None:
            raise NotFoundError(f"job {job_id} does not exist")
        job = await app.jobs.complete_job(
            job_id,
            deliverable_path=request.deliverable_path,
            deliverable_summary=request.deliverable_summary,
            actor=await resolve_optional(request.actor),
        )
        return JobResponse.from_job(job)

    return router

"""HTTP control surface for ingestion jobs and link review.

POST /jobs                    - create (and start) an ingestion job
POST /jobs/{job_id}/pause     - request a cooperative pause
POST /jobs/{job_id}/resume    - resume from the last checkpoint
GET  /jobs/{job_id}           - progress snapshot
GET  /jobs/{job_id}/suggestions - pending suggestions of a suggestion-mode job
POST /links/batch-confirm     - confirm suggestions, each item independently
DELETE /links/{link_id}       - manual unlink

Every request names its tenant in the ``X-Tenant-ID`` header.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from prodrecon.app import Services
from prodrecon.config import ConfigurationError
from prodrecon.domain.errors import (
    JobNotFoundError,
    JobStateError,
    LinkNotFoundError,
    SuggestionNotFoundError,
    TenantMismatchError,
)
from prodrecon.domain.model import IngestionPolicy, ProductDomain, TenantContext

if TYPE_CHECKING:
    from prodrecon.domain.ingest_pipeline import JobProgress
    from prodrecon.domain.model import LinkSuggestion

log = logging.getLogger(__name__)

router = APIRouter()


class JobCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1)
    policy: IngestionPolicy = IngestionPolicy.STRICT
    source_domain: ProductDomain = ProductDomain.SUPPLIER_PRODUCT
    target_domain: ProductDomain = ProductDomain.CATALOG_ANALYSIS
    origin: str | None = None
    chunk_size: int | None = Field(default=None, gt=0)
    column_mapping: dict[str, str] | None = None
    start: bool = True


class JobCountsResponse(BaseModel):
    seen: int
    matched: int
    created: int
    skipped: int
    errored: int


class JobProgressResponse(BaseModel):
    job_id: UUID
    status: str
    progress: float | None
    counts: JobCountsResponse
    source_offset: int
    total_count: int | None
    pause_requested: bool
    last_error: str | None
    error_samples: list[str]

    @classmethod
    def from_progress(cls, snapshot: JobProgress) -> JobProgressResponse:
        return cls(
            job_id=snapshot.job_id,
            status=snapshot.status.value,
            progress=snapshot.progress,
            counts=JobCountsResponse(**snapshot.counts.as_dict()),
            source_offset=snapshot.source_offset,
            total_count=snapshot.total_count,
            pause_requested=snapshot.pause_requested,
            last_error=snapshot.last_error,
            error_samples=list(snapshot.error_samples),
        )


class SuggestionResponse(BaseModel):
    suggestion_id: UUID
    left_id: UUID
    right_id: UUID
    target_id: UUID
    strategy: str
    confidence: int

    @classmethod
    def from_suggestion(cls, suggestion: LinkSuggestion) -> SuggestionResponse:
        return cls(
            suggestion_id=suggestion.id,
            left_id=suggestion.left_id,
            right_id=suggestion.right_id,
            target_id=suggestion.target_id,
            strategy=suggestion.strategy.value,
            confidence=suggestion.confidence,
        )


class BatchConfirmRequest(BaseModel):
    suggestion_ids: list[UUID] = Field(min_length=1)


class ConfirmItemResponse(BaseModel):
    suggestion_id: UUID
    succeeded: bool
    edge_id: UUID | None = None
    error: str | None = None


class BatchConfirmResponse(BaseModel):
    succeeded: int
    failed: int
    items: list[ConfirmItemResponse]


class UnlinkResponse(BaseModel):
    left_id: UUID
    right_id: UUID


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_tenant(x_tenant_id: Annotated[str | None, Header()] = None) -> TenantContext:
    if x_tenant_id is None or not x_tenant_id.strip():
        raise HTTPException(status_code=400, detail="Missing X-Tenant-ID header")
    return TenantContext(x_tenant_id.strip())


ServicesDep = Annotated[Services, Depends(get_services)]
TenantDep = Annotated[TenantContext, Depends(get_tenant)]


@router.post("/jobs", status_code=202, response_model=JobProgressResponse)
def create_job(body: JobCreateRequest, services: ServicesDep, tenant: TenantDep):
    snapshot = services.supervisor.create_job(
        tenant,
        source=body.source,
        policy=body.policy,
        source_domain=body.source_domain,
        target_domain=body.target_domain,
        origin=body.origin,
        chunk_size=body.chunk_size,
        column_mapping=body.column_mapping,
        start=body.start,
    )
    return JobProgressResponse.from_progress(snapshot)


@router.post("/jobs/{job_id}/pause", response_model=JobProgressResponse)
def pause_job(job_id: UUID, services: ServicesDep, tenant: TenantDep):
    return JobProgressResponse.from_progress(services.supervisor.request_pause(tenant, job_id))


@router.post("/jobs/{job_id}/resume", response_model=JobProgressResponse)
def resume_job(job_id: UUID, services: ServicesDep, tenant: TenantDep):
    return JobProgressResponse.from_progress(services.supervisor.request_resume(tenant, job_id))


@router.get("/jobs/{job_id}", response_model=JobProgressResponse)
def job_status(job_id: UUID, services: ServicesDep, tenant: TenantDep):
    return JobProgressResponse.from_progress(services.supervisor.snapshot(tenant, job_id))


@router.get("/jobs/{job_id}/suggestions", response_model=list[SuggestionResponse])
def job_suggestions(job_id: UUID, services: ServicesDep, tenant: TenantDep):
    services.supervisor.snapshot(tenant, job_id)
    return [
        SuggestionResponse.from_suggestion(suggestion)
        for suggestion in services.pending_suggestions(tenant, job_id=job_id)
    ]


@router.post("/links/batch-confirm", response_model=BatchConfirmResponse)
def batch_confirm(body: BatchConfirmRequest, services: ServicesDep, tenant: TenantDep):
    result = services.confirm_suggestions(tenant, body.suggestion_ids)
    return BatchConfirmResponse(
        succeeded=result.succeeded,
        failed=result.failed,
        items=[
            ConfirmItemResponse(
                suggestion_id=item.suggestion_id,
                succeeded=item.succeeded,
                edge_id=item.outcome.edge_id if item.outcome else None,
                error=item.error,
            )
            for item in result.items
        ],
    )


@router.delete("/links/{link_id}", response_model=UnlinkResponse)
def unlink(link_id: UUID, services: ServicesDep, tenant: TenantDep):
    pair = services.unlink(tenant, link_id)
    return UnlinkResponse(left_id=pair.left_id, right_id=pair.right_id)


_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (JobNotFoundError, 404),
    (SuggestionNotFoundError, 404),
    (LinkNotFoundError, 404),
    (TenantMismatchError, 404),
    (JobStateError, 409),
    (ConfigurationError, 422),
)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        log.info("%s %s -> %s: %s", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="prodrecon", version="1.0.0")
    app.state.services = services
    app.include_router(router)
    for error_type, status_code in _ERROR_STATUS:
        app.add_exception_handler(error_type, _error_handler(status_code))
    return app

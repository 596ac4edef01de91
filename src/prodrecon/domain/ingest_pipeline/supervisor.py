"""Job Supervisor: create jobs, request pause/resume and report progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from prodrecon.config.ingest import IngestConfig
from prodrecon.domain.errors import JobNotFoundError, JobStateError
from prodrecon.domain.model import (
    IngestionJob,
    IngestionPolicy,
    JobStatus,
    ProductDomain,
    utcnow,
)

from .progress import JobProgress, ProgressBroadcaster

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from prodrecon.domain.model import TenantContext
    from prodrecon.domain.ports import ReconciliationUnitOfWork, UnitOfWorkFactory

    from .progress import ProgressListener
    from .runner import JobRunner

log = logging.getLogger(__name__)

# bare paths count as attachments
ATTACHMENT_SCHEMES = frozenset({"attachment", "file", ""})


@dataclass(slots=True, kw_only=True)
class JobSupervisor:
    """Control surface over ingestion jobs.

    Pause is cooperative: ``request_pause`` only sets a flag that the runner
    observes at the next chunk boundary.
    """

    unit_of_work_factory: UnitOfWorkFactory
    runner: JobRunner | None = None
    ingest: IngestConfig = field(default_factory=IngestConfig)
    progress: ProgressBroadcaster = field(default_factory=ProgressBroadcaster)

    def create_job(
        self,
        tenant: TenantContext,
        *,
        source: str,
        policy: IngestionPolicy = IngestionPolicy.STRICT,
        source_domain: ProductDomain = ProductDomain.SUPPLIER_PRODUCT,
        target_domain: ProductDomain = ProductDomain.CATALOG_ANALYSIS,
        origin: str | None = None,
        chunk_size: int | None = None,
        column_mapping: Mapping[str, str] | None = None,
        start: bool = True,
    ) -> JobProgress:
        if source_domain == target_domain:
            raise JobStateError("Source and target domain must differ")
        job = IngestionJob(
            tenant_id=tenant.tenant_id,
            source=source,
            policy=policy,
            source_domain=source_domain,
            target_domain=target_domain,
            origin=origin,
            chunk_size=self.ingest.clamp_chunk_size(
                chunk_size, default=self.default_chunk_size(source)
            ),
            column_mapping=dict(column_mapping) if column_mapping else None,
        )
        with self.unit_of_work_factory() as uow:
            uow.repositories.jobs.add(job)
            uow.commit()
            snapshot = JobProgress.from_job(job)
        log.info(
            "Created job %s for tenant %s (source=%s, policy=%s, chunk_size=%s)",
            job.id,
            tenant.tenant_id,
            source,
            policy,
            job.chunk_size,
        )
        if start:
            self._start(job.id)
        return snapshot

    def request_pause(self, tenant: TenantContext, job_id: UUID) -> JobProgress:
        with self.unit_of_work_factory() as uow:
            job = self._owned_job(uow, tenant, job_id)
            if job.status is JobStatus.COMPLETED:
                raise JobStateError(f"Job {job_id} already completed")
            if job.status in {JobStatus.QUEUED, JobStatus.RUNNING} and not job.pause_requested:
                job.pause_requested = True
                uow.commit()
                log.info("Pause requested for job %s", job_id)
            return JobProgress.from_job(job)

    def request_resume(self, tenant: TenantContext, job_id: UUID) -> JobProgress:
        with self.unit_of_work_factory() as uow:
            job = self._owned_job(uow, tenant, job_id)
            if job.status is JobStatus.COMPLETED:
                raise JobStateError(f"Job {job_id} already completed")
            if job.pause_requested:
                job.pause_requested = False
                uow.commit()
            snapshot = JobProgress.from_job(job)
            # a running job whose runner died is restarted once its lease lapses
            restart = job.is_claimable(utcnow(), self.ingest.job_lease)
        if restart:
            log.info("Resuming job %s from offset %s", job_id, snapshot.source_offset)
            self._start(job_id)
        return snapshot

    def snapshot(self, tenant: TenantContext, job_id: UUID) -> JobProgress:
        with self.unit_of_work_factory(read_only=True) as uow:
            return JobProgress.from_job(self._owned_job(uow, tenant, job_id))

    def subscribe(self, listener: ProgressListener) -> None:
        self.progress.subscribe(listener)

    def default_chunk_size(self, source: str) -> int:
        if urlsplit(source).scheme in ATTACHMENT_SCHEMES:
            return self.ingest.attachment_chunk_size
        return self.ingest.platform_chunk_size

    def _start(self, job_id: UUID) -> None:
        if self.runner is None:
            return
        self.runner.submit(job_id)

    @staticmethod
    def _owned_job(
        uow: ReconciliationUnitOfWork, tenant: TenantContext, job_id: UUID
    ) -> IngestionJob:
        job = uow.repositories.jobs.get(job_id)
        # another tenant's job is reported exactly like a missing one
        if job is None or job.tenant_id != tenant.tenant_id:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

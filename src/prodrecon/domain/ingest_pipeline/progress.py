"""Job progress snapshots and in-process listeners."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from prodrecon.domain.model import IngestionJob, JobCounts, JobStatus

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True, kw_only=True)
class JobProgress:
    job_id: UUID
    tenant_id: str
    status: JobStatus
    progress: float | None
    counts: JobCounts
    source_offset: int
    total_count: int | None
    pause_requested: bool
    last_error: str | None
    error_samples: tuple[str, ...]

    @classmethod
    def from_job(cls, job: IngestionJob) -> JobProgress:
        return cls(
            job_id=job.id,
            tenant_id=job.tenant_id,
            status=job.status,
            progress=job.progress,
            counts=job.counts,
            source_offset=job.source_offset,
            total_count=job.total_count,
            pause_requested=job.pause_requested,
            last_error=job.last_error,
            error_samples=tuple(job.error_samples),
        )


type ProgressListener = Callable[[JobProgress], None]


@dataclass(slots=True)
class ProgressBroadcaster:
    """Fan out chunk-boundary snapshots; a failing listener never stops a job."""

    listeners: list[ProgressListener] = field(default_factory=list)

    def subscribe(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def publish(self, progress: JobProgress) -> None:
        for listener in tuple(self.listeners):
            try:
                listener(progress)
            except Exception:  # noqa: BLE001
                log.exception("Progress listener failed for job %s", progress.job_id)

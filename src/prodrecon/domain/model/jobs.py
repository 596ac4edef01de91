"""Ingestion job state machine and chunk checkpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from prodrecon.domain.errors import JobStateError
from prodrecon.domain.model.entity import Entity, utcnow
from prodrecon.domain.model.enums import IngestionPolicy, JobStatus, ProductDomain

if TYPE_CHECKING:
    from datetime import datetime, timedelta
    from uuid import UUID

MAX_ERROR_SAMPLES: Final[int] = 20

# states a runner may move into ``running`` from; a ``running`` job whose
# lease expired is claimable as well
CLAIMABLE_STATUSES: Final[frozenset[JobStatus]] = frozenset(
    {JobStatus.QUEUED, JobStatus.PAUSED, JobStatus.FAILED}
)

_TRANSITIONS: Final[dict[JobStatus, frozenset[JobStatus]]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.FAILED: frozenset({JobStatus.RUNNING}),
    JobStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class JobCounts:
    seen: int = 0
    matched: int = 0
    created: int = 0
    skipped: int = 0
    errored: int = 0

    def __add__(self, other: JobCounts) -> JobCounts:
        return JobCounts(
            seen=self.seen + other.seen,
            matched=self.matched + other.matched,
            created=self.created + other.created,
            skipped=self.skipped + other.skipped,
            errored=self.errored + other.errored,
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "seen": self.seen,
            "matched": self.matched,
            "created": self.created,
            "skipped": self.skipped,
            "errored": self.errored,
        }


@dataclass(eq=False, kw_only=True)
class IngestionJob(Entity):
    """A resumable bulk import; the row itself is the live checkpoint."""

    tenant_id: str
    source: str
    policy: IngestionPolicy
    chunk_size: int
    source_domain: ProductDomain = ProductDomain.SUPPLIER_PRODUCT
    target_domain: ProductDomain = ProductDomain.CATALOG_ANALYSIS
    origin: str | None = None
    column_mapping: dict[str, str] | None = None
    status: JobStatus = JobStatus.QUEUED
    pause_requested: bool = False
    # set by the runner holding the job; renewed with every committed chunk
    claim_token: UUID | None = None
    heartbeat_at: datetime | None = None
    source_offset: int = 0
    total_count: int | None = None
    chunks_committed: int = 0
    seen: int = 0
    matched: int = 0
    created: int = 0
    skipped: int = 0
    errored: int = 0
    last_error: str | None = None
    error_samples: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    @property
    def counts(self) -> JobCounts:
        return JobCounts(
            seen=self.seen,
            matched=self.matched,
            created=self.created,
            skipped=self.skipped,
            errored=self.errored,
        )

    @property
    def progress(self) -> float | None:
        if not self.total_count:
            return None
        return min(1.0, self.seen / self.total_count)

    def lease_expired(self, now: datetime, lease: timedelta) -> bool:
        """A ``running`` job whose runner stopped renewing its claim, e.g. after a crash."""

        if self.status is not JobStatus.RUNNING:
            return False
        return self.heartbeat_at is None or self.heartbeat_at <= now - lease

    def is_claimable(self, now: datetime, lease: timedelta) -> bool:
        return self.status in CLAIMABLE_STATUSES or self.lease_expired(now, lease)

    def transition(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise JobStateError(f"Job {self.id} cannot move from {self.status} to {status}")
        self.status = status
        now = utcnow()
        self.updated_at = now
        if status is JobStatus.RUNNING:
            self.started_at = self.started_at or now
            self.finished_at = None
        elif status is JobStatus.COMPLETED:
            self.finished_at = now
            self.pause_requested = False
        elif status is JobStatus.PAUSED:
            self.pause_requested = False
        if status is not JobStatus.RUNNING:
            self.claim_token = None
            self.heartbeat_at = None

    def fail(self, message: str) -> None:
        self.last_error = message
        self.add_error_sample(message)
        self.transition(JobStatus.FAILED)

    def add_error_sample(self, message: str) -> None:
        if len(self.error_samples) >= MAX_ERROR_SAMPLES:
            return
        # reassign so the ORM sees the change on the JSON column
        self.error_samples = [*self.error_samples, message]

    def record_chunk(self, counts: JobCounts, *, next_offset: int) -> None:
        if next_offset < self.source_offset:
            raise JobStateError("Source offset must not move backwards")
        self.source_offset = next_offset
        self.chunks_committed += 1
        self.seen += counts.seen
        self.matched += counts.matched
        self.created += counts.created
        self.skipped += counts.skipped
        self.errored += counts.errored
        self.updated_at = utcnow()
        self.heartbeat_at = self.updated_at


@dataclass(eq=False, kw_only=True)
class JobCheckpoint(Entity):
    """Append-only history of committed chunks."""

    job_id: UUID
    sequence: int
    source_offset: int
    seen: int = 0
    matched: int = 0
    created: int = 0
    skipped: int = 0
    errored: int = 0
    committed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def after_chunk(cls, job: IngestionJob) -> JobCheckpoint:
        return cls(
            job_id=job.id,
            sequence=job.chunks_committed,
            source_offset=job.source_offset,
            seen=job.seen,
            matched=job.matched,
            created=job.created,
            skipped=job.skipped,
            errored=job.errored,
        )

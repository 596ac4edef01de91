"""Chunked ingestion pipeline: fetch a page, reconcile each row, checkpoint, repeat.

The rows of a chunk are reconciled in one unit of work, so the link writes of
a chunk and the job checkpoint that records them are committed together. A
crash between chunks therefore resumes at the last committed offset without
double counting. Pages are fetched between transactions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import uuid4

from prodrecon.config.errors import FatalConfigError
from prodrecon.config.ingest import IngestConfig
from prodrecon.config.matching import MatchingConfig
from prodrecon.domain.errors import JobNotFoundError, JobStateError, TransientSourceError
from prodrecon.domain.model import (
    IngestionPolicy,
    JobCheckpoint,
    JobCounts,
    JobStatus,
    LinkOutcomeKind,
    TenantContext,
    utcnow,
)
from prodrecon.domain.reconciliation import (
    CandidateField,
    ColumnMapping,
    InMemoryCatalogView,
    LinkGraphManager,
    MatchResult,
    RepositoryCatalogView,
    RowNormalizer,
)

from .progress import JobProgress, ProgressBroadcaster

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime
    from uuid import UUID

    from prodrecon.domain.model import IngestionJob, ProductDomain, ResolvedProduct
    from prodrecon.domain.ports import (
        AlertSink,
        ReconciliationUnitOfWork,
        RowSource,
        SourceRow,
        UnitOfWorkFactory,
    )
    from prodrecon.domain.reconciliation import CandidateRecord, MatcherCascade

log = logging.getLogger(__name__)

type SourceFactory = Callable[[IngestionJob], RowSource]


class RowOutcome(StrEnum):
    MATCHED = "matched"
    CREATED = "created"
    SKIPPED = "skipped"
    # suggestion mode without a match: the row is recorded but not linked
    UNLINKED = "unlinked"


@dataclass(slots=True)
class _RunContext:
    job_id: UUID
    tenant: TenantContext
    policy: IngestionPolicy
    target_domain: ProductDomain
    normalizer: RowNormalizer
    started_at: datetime
    claim_token: UUID


@dataclass(slots=True, kw_only=True)
class _RowCounts:
    seen: int = 0
    matched: int = 0
    created: int = 0
    skipped: int = 0
    errored: int = 0
    errors: list[str] = field(default_factory=list)

    def freeze(self) -> JobCounts:
        return JobCounts(
            seen=self.seen,
            matched=self.matched,
            created=self.created,
            skipped=self.skipped,
            errored=self.errored,
        )


@dataclass(slots=True, kw_only=True)
class IngestionPipeline:
    """Drive one job from its checkpoint until it completes, pauses or fails."""

    unit_of_work_factory: UnitOfWorkFactory
    source_factory: SourceFactory
    cascade: MatcherCascade
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    alert_sink: AlertSink | None = None
    progress: ProgressBroadcaster = field(default_factory=ProgressBroadcaster)

    def run(self, job_id: UUID) -> JobStatus:
        started_at = utcnow()
        token = uuid4()
        job = self._claim(job_id, token)
        log.info(
            "Running job %s (tenant=%s, policy=%s, offset=%s, chunk_size=%s)",
            job.id,
            job.tenant_id,
            job.policy,
            job.source_offset,
            job.chunk_size,
        )
        try:
            context = self._context_for(job, started_at, token)
            source = self.source_factory(job)
        except FatalConfigError as exc:
            log.error("Job %s cannot start: %s", job_id, exc)
            return self.mark_failed(job_id, f"configuration error: {exc}", claim_token=token)

        try:
            while True:
                status = self._run_chunk(context, source)
                if status is not JobStatus.RUNNING:
                    log.info("Job %s finished run with status %s", job_id, status)
                    return status
        except (JobNotFoundError, JobStateError):
            raise
        except Exception as exc:
            log.error("Job %s stopped by unexpected error: %s", job_id, exc)
            self.mark_failed(job_id, f"unexpected error: {exc}", claim_token=token)
            raise

    # Chunk loop ---------------------------------------------------------------

    def _run_chunk(self, context: _RunContext, source: RowSource) -> JobStatus:
        position = self._chunk_position(context)
        if isinstance(position, JobProgress):
            self.progress.publish(position)
            return position.status
        offset, chunk_size = position

        # fetch outside any transaction; SQLite would hold its write lock meanwhile
        try:
            page = source.fetch_page(offset, chunk_size)
        except TransientSourceError as exc:
            log.warning("Job %s: fetch at offset %s failed: %s", context.job_id, offset, exc)
            return self.mark_failed(
                context.job_id, f"offset {offset}: {exc}", claim_token=context.claim_token
            )
        except FatalConfigError as exc:
            log.error("Job %s: source rejected fetch at offset %s: %s", context.job_id, offset, exc)
            return self.mark_failed(
                context.job_id, f"configuration error: {exc}", claim_token=context.claim_token
            )

        cascade = self._cascade_for(context, page.rows)
        manager: LinkGraphManager | None = None
        with self.unit_of_work_factory() as uow:
            job = self._require_job(uow, context.job_id)
            self._check_claim(job, context)
            if job.source_offset != offset:
                raise JobStateError(f"Job {job.id} changed while fetching offset {offset}")
            if page.total_count is not None:
                job.total_count = page.total_count
            if not page.rows:
                job.transition(JobStatus.COMPLETED)
                uow.commit()
                snapshot = JobProgress.from_job(job)
            else:
                manager = LinkGraphManager(
                    uow,
                    context.tenant,
                    price_change_threshold=Decimal(
                        str(self.matching.price_change_threshold_percent)
                    ),
                )
                counts = self._process_rows(uow, manager, cascade, context, page.rows, offset)
                next_offset = (
                    page.next_offset if page.next_offset is not None else offset + chunk_size
                )
                job.record_chunk(counts.freeze(), next_offset=next_offset)
                for message in counts.errors:
                    job.add_error_sample(message)
                uow.repositories.jobs.append_checkpoint(JobCheckpoint.after_chunk(job))
                if not page.has_more:
                    job.transition(JobStatus.COMPLETED)
                uow.commit()
                log.info(
                    "Job %s chunk %s committed: offset=%s seen=%s matched=%s created=%s "
                    "skipped=%s errored=%s",
                    job.id,
                    job.chunks_committed,
                    job.source_offset,
                    counts.seen,
                    counts.matched,
                    counts.created,
                    counts.skipped,
                    counts.errored,
                )
                snapshot = JobProgress.from_job(job)

        if self.alert_sink is not None and manager is not None:
            manager.flush_alerts(self.alert_sink)
        self.progress.publish(snapshot)
        return snapshot.status

    def _chunk_position(self, context: _RunContext) -> tuple[int, int] | JobProgress:
        """Offset and size of the next chunk, or the paused snapshot if a pause was requested."""

        with self.unit_of_work_factory() as uow:
            job = self._require_job(uow, context.job_id)
            self._check_claim(job, context)
            if not job.pause_requested:
                return job.source_offset, job.chunk_size
            job.transition(JobStatus.PAUSED)
            uow.commit()
            return JobProgress.from_job(job)

    def _cascade_for(self, context: _RunContext, rows: Sequence[SourceRow]) -> MatcherCascade:
        """The cascade for one chunk, with remote scores gathered before any write begins.

        Remote scores are computed against the catalog as committed before the
        chunk; products promoted by the chunk itself have no remote score.
        """

        if not rows or not self.cascade.is_remote:
            return self.cascade
        with self.unit_of_work_factory(read_only=True) as uow:
            catalog = RepositoryCatalogView(
                uow.repositories.products, context.tenant, context.target_domain
            )
            candidates = self._candidates(context, rows)
            pending = self.cascade.unresolved_locally(
                candidates, catalog, self.matching.lexical_threshold
            )
            if not pending:
                return self.cascade
            snapshot = InMemoryCatalogView(
                list(catalog.fuzzy_candidates(self.cascade.remote_scan_limit))
            )
        return self.cascade.with_remote_scores(pending, snapshot)

    @staticmethod
    def _candidates(context: _RunContext, rows: Sequence[SourceRow]) -> list[CandidateRecord]:
        candidates: list[CandidateRecord] = []
        for row in rows:
            try:
                candidate = context.normalizer.normalize(row)
            except Exception as exc:  # noqa: BLE001
                # reported as a row error by the write phase
                log.debug("Job %s: row not prefetched: %s", context.job_id, exc)
                continue
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def _process_rows(
        self,
        uow: ReconciliationUnitOfWork,
        manager: LinkGraphManager,
        cascade: MatcherCascade,
        context: _RunContext,
        rows: Sequence[SourceRow],
        offset: int,
    ) -> _RowCounts:
        counts = _RowCounts()
        catalog = RepositoryCatalogView(
            uow.repositories.products, context.tenant, context.target_domain
        )
        for index, row in enumerate(rows):
            counts.seen += 1
            promoted: ResolvedProduct | None = None
            try:
                with uow.savepoint():
                    outcome, promoted = self._process_row(
                        manager, cascade, catalog, context, row
                    )
            except Exception as exc:  # noqa: BLE001
                counts.errored += 1
                counts.errors.append(f"row {offset + index}: {exc}")
                log.warning("Job %s: row %s failed: %s", context.job_id, offset + index, exc)
                continue
            match outcome:
                case RowOutcome.MATCHED:
                    counts.matched += 1
                case RowOutcome.CREATED:
                    counts.created += 1
                case RowOutcome.SKIPPED:
                    counts.skipped += 1
                case RowOutcome.UNLINKED:
                    pass
            if promoted is not None:
                catalog.remember(promoted)
        return counts

    def _process_row(
        self,
        manager: LinkGraphManager,
        cascade: MatcherCascade,
        catalog: RepositoryCatalogView,
        context: _RunContext,
        row: SourceRow,
    ) -> tuple[RowOutcome, ResolvedProduct | None]:
        candidate = context.normalizer.normalize(row)
        if candidate is None:
            return RowOutcome.SKIPPED, None

        source = manager.record_source(candidate)
        resolution = cascade.resolve(candidate, catalog, self.matching.lexical_threshold)

        if isinstance(resolution, MatchResult):
            if context.policy is IngestionPolicy.STRICT:
                outcome = manager.apply(
                    resolution, candidate, source=source, run_started_at=context.started_at
                )
            else:
                outcome = manager.propose(
                    resolution,
                    candidate,
                    source=source,
                    job_id=context.job_id,
                    run_started_at=context.started_at,
                )
            if outcome.kind is LinkOutcomeKind.SKIPPED:
                return RowOutcome.SKIPPED, None
            return RowOutcome.MATCHED, None

        if context.policy is IngestionPolicy.SUGGESTION:
            return RowOutcome.UNLINKED, None
        promoted, outcome = manager.promote(
            candidate,
            source=source,
            target_domain=context.target_domain,
            run_started_at=context.started_at,
        )
        if outcome.kind is LinkOutcomeKind.SKIPPED:
            return RowOutcome.SKIPPED, promoted
        return RowOutcome.CREATED, promoted

    # Job bookkeeping ----------------------------------------------------------

    def _claim(self, job_id: UUID, token: UUID) -> IngestionJob:
        with self.unit_of_work_factory() as uow:
            jobs = uow.repositories.jobs
            job = jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            orphaned = job.status is JobStatus.RUNNING
            if not jobs.claim(job_id, token=token, lease=self.ingest.job_lease):
                raise JobStateError(f"Job {job_id} is {job.status} and cannot be claimed")
            uow.commit()
            claimed = self._require_job(uow, job_id)
        if orphaned:
            log.warning(
                "Job %s reclaimed after its lease expired; resuming at offset %s",
                job_id,
                claimed.source_offset,
            )
        return claimed

    def mark_failed(
        self, job_id: UUID, message: str, *, claim_token: UUID | None = None
    ) -> JobStatus:
        """Fail a running job; with ``claim_token``, only while that claim still holds it."""

        with self.unit_of_work_factory() as uow:
            job = self._require_job(uow, job_id)
            if job.status is not JobStatus.RUNNING:
                return job.status
            if claim_token is not None and job.claim_token != claim_token:
                log.info("Job %s not failed: it was reclaimed by another runner", job_id)
                return job.status
            job.fail(message)
            uow.commit()
            self.progress.publish(JobProgress.from_job(job))
            return job.status


    @staticmethod
    def _require_job(uow: ReconciliationUnitOfWork, job_id: UUID) -> IngestionJob:
        job = uow.repositories.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _check_claim(job: IngestionJob, context: _RunContext) -> None:
        if job.status is not JobStatus.RUNNING or job.claim_token != context.claim_token:
            raise JobStateError(f"Job {job.id} is no longer held by this run")

    @staticmethod
    def _context_for(
        job: IngestionJob, started_at: datetime, claim_token: UUID
    ) -> _RunContext:
        mapping: ColumnMapping | None = None
        if job.column_mapping:
            try:
                mapping = ColumnMapping(
                    columns={
                        header: CandidateField(value)
                        for header, value in job.column_mapping.items()
                    }
                )
            except ValueError as exc:
                raise FatalConfigError(f"Invalid column mapping: {exc}") from exc
        return _RunContext(
            job_id=job.id,
            tenant=TenantContext(job.tenant_id),
            policy=job.policy,
            target_domain=job.target_domain,
            normalizer=RowNormalizer(
                source_kind=job.source_domain, origin=job.origin, mapping=mapping
            ),
            started_at=started_at,
            claim_token=claim_token,
        )

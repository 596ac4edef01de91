"""Application wiring: build the pipeline, runner and supervisor over configured adapters."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from logging import getLogger
from typing import TYPE_CHECKING

from prodrecon.adapters.alerts import build_alert_sink
from prodrecon.adapters.semantic import build_semantic_matcher
from prodrecon.adapters.sources import build_row_source
from prodrecon.adapters.sqlalchemy import SqlAlchemyUnitOfWork, is_started, startup
from prodrecon.config import get_ingest_config, get_matching_config
from prodrecon.domain.ingest_pipeline import (
    IngestionPipeline,
    JobRunner,
    JobSupervisor,
    ProgressBroadcaster,
)
from prodrecon.domain.reconciliation import LinkGraphManager, MatcherCascade

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from prodrecon.config import IngestConfig, MatchingConfig
    from prodrecon.domain.ingest_pipeline import SourceFactory
    from prodrecon.domain.model import LinkSuggestion, TenantContext, UnlinkedPair
    from prodrecon.domain.ports import (
        AlertSink,
        ReconciliationUnitOfWork,
        SemanticMatcher,
        UnitOfWorkFactory,
    )
    from prodrecon.domain.reconciliation import BatchConfirmResult

log = getLogger(__name__)


@dataclass(slots=True, kw_only=True)
class Services:
    """Everything the CLI and the HTTP surface need, sharing one progress broadcaster."""

    unit_of_work_factory: UnitOfWorkFactory
    pipeline: IngestionPipeline
    runner: JobRunner
    supervisor: JobSupervisor
    matching: MatchingConfig
    alert_sink: AlertSink | None

    def close(self, *, wait: bool = True) -> None:
        self.runner.shutdown(wait=wait)

    def confirm_suggestions(
        self, tenant: TenantContext, suggestion_ids: Iterable[UUID]
    ) -> BatchConfirmResult:
        with self.unit_of_work_factory() as uow:
            manager = self._manager(uow, tenant)
            result = manager.confirm_suggestions(suggestion_ids)
            uow.commit()
        if self.alert_sink is not None:
            manager.flush_alerts(self.alert_sink)
        return result

    def unlink(self, tenant: TenantContext, edge_id: UUID) -> UnlinkedPair:
        with self.unit_of_work_factory() as uow:
            pair = self._manager(uow, tenant).unlink(edge_id)
            uow.commit()
        return pair

    def pending_suggestions(
        self, tenant: TenantContext, *, job_id: UUID | None = None
    ) -> list[LinkSuggestion]:
        with self.unit_of_work_factory(read_only=True) as uow:
            return list(uow.repositories.suggestions.list_pending(tenant, job_id=job_id))

    def _manager(self, uow: ReconciliationUnitOfWork, tenant: TenantContext) -> LinkGraphManager:
        return LinkGraphManager(
            uow,
            tenant,
            price_change_threshold=Decimal(str(self.matching.price_change_threshold_percent)),
        )


def build_services(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    source_factory: SourceFactory | None = None,
    semantic: SemanticMatcher | None = None,
    use_configured_semantic: bool = True,
    alert_sink: AlertSink | None = None,
    matching: MatchingConfig | None = None,
    ingest: IngestConfig | None = None,
) -> Services:
    """Assemble services from configuration; any collaborator can be overridden."""

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyUnitOfWork
    matching_config = matching or get_matching_config()
    ingest_config = ingest or get_ingest_config()
    if semantic is None and use_configured_semantic:
        semantic = build_semantic_matcher()
    sink = alert_sink or build_alert_sink()

    progress = ProgressBroadcaster()
    pipeline = IngestionPipeline(
        unit_of_work_factory=unit_of_work_factory,
        source_factory=source_factory or build_row_source,
        cascade=MatcherCascade.default(
            scan_limit=matching_config.fuzzy_scan_limit, semantic=semantic
        ),
        matching=matching_config,
        ingest=ingest_config,
        alert_sink=sink,
        progress=progress,
    )
    runner = JobRunner(pipeline, max_workers=ingest_config.worker_count)
    supervisor = JobSupervisor(
        unit_of_work_factory=unit_of_work_factory,
        runner=runner,
        ingest=ingest_config,
        progress=progress,
    )
    log.info(
        "Services ready: workers=%s, lexical_threshold=%s, semantic=%s",
        ingest_config.worker_count,
        matching_config.lexical_threshold,
        semantic is not None,
    )
    return Services(
        unit_of_work_factory=unit_of_work_factory,
        pipeline=pipeline,
        runner=runner,
        supervisor=supervisor,
        matching=matching_config,
        alert_sink=sink,
    )

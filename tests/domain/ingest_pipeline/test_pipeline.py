from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy import select

from prodrecon.adapters.sqlalchemy.mappings import link_edge_table
from prodrecon.config import FatalConfigError, MatchingConfig
from prodrecon.domain.errors import JobStateError, TransientSourceError
from prodrecon.domain.ingest_pipeline import IngestionPipeline, JobSupervisor, ProgressBroadcaster
from prodrecon.domain.model import (
    IngestionPolicy,
    JobStatus,
    LinkEdge,
    MatchStrategyKind,
    ProductDomain,
    TenantContext,
    utcnow,
)
from prodrecon.domain.reconciliation import MatcherCascade

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from uuid import UUID

    from prodrecon.adapters.sqlalchemy import SqlAlchemyUnitOfWork
    from prodrecon.domain.ingest_pipeline import JobProgress
    from prodrecon.domain.model import PriceChangeEvent, ResolvedProduct
    from prodrecon.domain.ports import RowSource, SourcePage

    UowFactory = Callable[..., SqlAlchemyUnitOfWork]

ROWS: list[Mapping[str, object]] = [
    {"reference": "W-1", "name": "Widget Pro Max", "brand": "Acme"},
    {"reference": "W-2", "name": "Garden Hose"},
    {"reference": "W-3", "name": "Lamp Shade"},
    {"reference": "W-4", "name": "Acme Widget Pro Max 2024", "brand": "Acme"},
    {"reference": "W-5", "name": "Desk"},
]


class Harness:
    def __init__(
        self,
        uow_factory: UowFactory,
        source: RowSource,
        *,
        cascade: MatcherCascade | None = None,
    ) -> None:
        self.uow_factory = uow_factory
        self.progress = ProgressBroadcaster()
        self.pipeline = IngestionPipeline(
            unit_of_work_factory=uow_factory,
            source_factory=lambda job: source,
            cascade=cascade or MatcherCascade.default(),
            matching=MatchingConfig(),
            progress=self.progress,
        )
        self.supervisor = JobSupervisor(unit_of_work_factory=uow_factory, progress=self.progress)

    def create(self, tenant: TenantContext, **options: object) -> UUID:
        options.setdefault("chunk_size", 2)
        snapshot = self.supervisor.create_job(
            tenant, source="file:///feeds/acme.csv", origin="acme", start=False, **options
        )
        return snapshot.job_id


def seed(uow_factory: UowFactory, *products: ResolvedProduct) -> None:
    with uow_factory() as uow:
        for product in products:
            uow.repositories.products.add(product)
        uow.commit()


@pytest.fixture
def widget(make_product: Callable[..., ResolvedProduct]) -> ResolvedProduct:
    return make_product("Acme Widget Pro Max 2024", brand="Acme", price="10.00")


def test_strict_job_links_promotes_and_counts(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    widget: ResolvedProduct,
    list_source: Callable[..., RowSource],
) -> None:
    seed(sqlite_unit_of_work, widget)
    rows = [
        {"reference": "W-1", "name": "Widget Pro Max", "brand": "Acme"},
        {"reference": "W-2", "name": "Garden Hose"},
        {"price": "1.00"},
        {"name": "Broken", "price": "abc"},
    ]
    source = list_source(rows)
    harness = Harness(sqlite_unit_of_work, source)
    job_id = harness.create(tenant)

    status = harness.pipeline.run(job_id)

    assert status is JobStatus.COMPLETED
    assert source.requests == [(0, 2), (2, 2)]
    snapshot = harness.supervisor.snapshot(tenant, job_id)
    assert snapshot.counts.as_dict() == {
        "seen": 4,
        "matched": 1,
        "created": 1,
        "skipped": 1,
        "errored": 1,
    }
    assert snapshot.source_offset == 4
    assert snapshot.total_count == 4
    assert snapshot.progress == 1.0
    assert len(snapshot.error_samples) == 1
    assert snapshot.error_samples[0].startswith("row 3:")

    with sqlite_unit_of_work() as uow:
        edges = uow.repositories.links.list_for(tenant, widget.id)
        promoted = uow.repositories.products.find_by_reference(
            tenant, ProductDomain.CATALOG_ANALYSIS, "W-2", "acme"
        )
        history = uow.repositories.jobs.checkpoints(job_id)
    assert len(edges) == 1
    assert len(promoted) == 1
    assert [checkpoint.source_offset for checkpoint in history] == [2, 4]


def test_resumed_job_matches_uninterrupted_run(
    sqlite_unit_of_work: UowFactory,
    make_product: Callable[..., ResolvedProduct],
    list_source: Callable[..., RowSource],
) -> None:
    steady_tenant = TenantContext("steady")
    flaky_tenant = TenantContext("flaky")
    seed(
        sqlite_unit_of_work,
        make_product("Acme Widget Pro Max 2024", brand="Acme", tenant_id="steady"),
        make_product("Acme Widget Pro Max 2024", brand="Acme", tenant_id="flaky"),
    )

    steady = Harness(sqlite_unit_of_work, list_source(ROWS))
    steady_job = steady.create(steady_tenant)
    assert steady.pipeline.run(steady_job) is JobStatus.COMPLETED

    flaky_source = list_source(ROWS, fail_at=2, error=TransientSourceError("read timed out"))
    flaky = Harness(sqlite_unit_of_work, flaky_source)
    flaky_job = flaky.create(flaky_tenant)
    assert flaky.pipeline.run(flaky_job) is JobStatus.FAILED

    failed = flaky.supervisor.snapshot(flaky_tenant, flaky_job)
    assert failed.source_offset == 2
    assert failed.last_error == "offset 2: read timed out"
    assert failed.counts.seen == 2

    flaky_source.fail_at = None
    assert flaky.pipeline.run(flaky_job) is JobStatus.COMPLETED

    expected = steady.supervisor.snapshot(steady_tenant, steady_job)
    resumed = flaky.supervisor.snapshot(flaky_tenant, flaky_job)
    assert resumed.counts == expected.counts
    assert resumed.counts.as_dict() == {
        "seen": 5,
        "matched": 2,
        "created": 3,
        "skipped": 0,
        "errored": 0,
    }
    assert flaky_source.requests == [(0, 2), (2, 2), (2, 2), (4, 2)]
    with sqlite_unit_of_work() as uow:
        history = uow.repositories.jobs.checkpoints(flaky_job)
    assert [checkpoint.source_offset for checkpoint in history] == [2, 4, 5]


def test_pause_stops_at_chunk_boundary_and_resume_continues(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    widget: ResolvedProduct,
    list_source: Callable[..., RowSource],
) -> None:
    seed(sqlite_unit_of_work, widget)
    source = list_source(ROWS)
    harness = Harness(sqlite_unit_of_work, source)
    job_id = harness.create(tenant)
    snapshots: list[JobProgress] = []

    def pause_after_first_chunk(snapshot: JobProgress) -> None:
        snapshots.append(snapshot)
        if len(snapshots) == 1:
            harness.supervisor.request_pause(tenant, job_id)

    harness.supervisor.subscribe(pause_after_first_chunk)

    assert harness.pipeline.run(job_id) is JobStatus.PAUSED
    paused = harness.supervisor.snapshot(tenant, job_id)
    assert paused.source_offset == 2
    assert paused.pause_requested is False
    assert source.requests == [(0, 2)]

    resumed = harness.supervisor.request_resume(tenant, job_id)
    assert resumed.status is JobStatus.PAUSED
    assert harness.pipeline.run(job_id) is JobStatus.COMPLETED

    final = harness.supervisor.snapshot(tenant, job_id)
    assert final.counts.seen == 5
    assert source.requests == [(0, 2), (2, 2), (4, 2)]
    offsets = [snapshot.source_offset for snapshot in snapshots]
    assert offsets == sorted(offsets)


def test_pause_requested_before_start(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    list_source: Callable[..., RowSource],
) -> None:
    source = list_source(ROWS)
    harness = Harness(sqlite_unit_of_work, source)
    job_id = harness.create(tenant)

    harness.supervisor.request_pause(tenant, job_id)

    assert harness.pipeline.run(job_id) is JobStatus.PAUSED
    assert source.requests == []


def test_suggestion_mode_queues_suggestions_without_linking(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    widget: ResolvedProduct,
    list_source: Callable[..., RowSource],
) -> None:
    seed(sqlite_unit_of_work, widget)
    harness = Harness(sqlite_unit_of_work, list_source(ROWS[:2]))
    job_id = harness.create(tenant, policy=IngestionPolicy.SUGGESTION)

    assert harness.pipeline.run(job_id) is JobStatus.COMPLETED

    snapshot = harness.supervisor.snapshot(tenant, job_id)
    assert snapshot.counts.matched == 1
    assert snapshot.counts.created == 0
    with sqlite_unit_of_work() as uow:
        pending = uow.repositories.suggestions.list_pending(tenant, job_id=job_id)
        assert uow.repositories.links.list_for(tenant, widget.id) == []
        promoted = uow.repositories.products.find_by_reference(
            tenant, ProductDomain.CATALOG_ANALYSIS, "W-2", "acme"
        )
    assert len(pending) == 1
    assert pending[0].target_id == widget.id
    assert pending[0].confidence == 79
    assert promoted == []


def test_price_alerts_are_flushed_after_commit(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    widget: ResolvedProduct,
    list_source: Callable[..., RowSource],
) -> None:
    seed(sqlite_unit_of_work, widget)
    events: list[PriceChangeEvent] = []

    class Sink:
        def emit(self, event: PriceChangeEvent) -> None:
            events.append(event)

    row = {"reference": "W-1", "name": "Widget Pro Max", "brand": "Acme", "price": "12"}
    harness = Harness(sqlite_unit_of_work, list_source([row]))
    harness.pipeline.alert_sink = Sink()
    job_id = harness.create(tenant)

    assert harness.pipeline.run(job_id) is JobStatus.COMPLETED
    assert len(events) == 1
    assert events[0].product_id == widget.id
    assert str(events[0].change_percent) == "20.00"


def test_invalid_column_mapping_fails_job(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    list_source: Callable[..., RowSource],
) -> None:
    source = list_source(ROWS)
    harness = Harness(sqlite_unit_of_work, source)
    job_id = harness.create(tenant, column_mapping={"Couleur": "colour"})

    assert harness.pipeline.run(job_id) is JobStatus.FAILED

    snapshot = harness.supervisor.snapshot(tenant, job_id)
    assert snapshot.last_error is not None
    assert snapshot.last_error.startswith("configuration error")
    assert source.requests == []


def test_unbuildable_source_fails_job(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    list_source: Callable[..., RowSource],
) -> None:
    harness = Harness(sqlite_unit_of_work, list_source(ROWS))

    def missing_credentials(job: object) -> RowSource:
        raise FatalConfigError(f"no token for {job}")

    harness.pipeline.source_factory = missing_credentials
    job_id = harness.create(tenant)

    assert harness.pipeline.run(job_id) is JobStatus.FAILED


def test_completed_job_cannot_be_claimed_again(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    list_source: Callable[..., RowSource],
) -> None:
    harness = Harness(sqlite_unit_of_work, list_source([]))
    job_id = harness.create(tenant)
    assert harness.pipeline.run(job_id) is JobStatus.COMPLETED

    with pytest.raises(JobStateError):
        harness.pipeline.run(job_id)


def test_source_rejecting_credentials_fails_job(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    list_source: Callable[..., RowSource],
) -> None:
    rejected = FatalConfigError("HTTP 401, check the platform credentials")
    harness = Harness(sqlite_unit_of_work, list_source(ROWS, fail_at=2, error=rejected))
    job_id = harness.create(tenant)

    assert harness.pipeline.run(job_id) is JobStatus.FAILED

    snapshot = harness.supervisor.snapshot(tenant, job_id)
    assert snapshot.source_offset == 2
    assert snapshot.last_error == "configuration error: HTTP 401, check the platform credentials"


# Crashes and concurrent access ------------------------------------------------


class ProcessDied(BaseException):
    """Stands in for the worker process being killed; nothing in the pipeline handles it."""


class DiesAfterEachChunk:
    """Serves one page per run and dies on the next fetch."""

    def __init__(self, inner: RowSource) -> None:
        self.inner = inner
        self.fetched = 0

    def fetch_page(self, offset: int, limit: int) -> SourcePage:
        if self.fetched:
            raise ProcessDied(f"killed before fetching offset {offset}")
        self.fetched += 1
        return self.inner.fetch_page(offset, limit)

    def restart(self) -> None:
        self.fetched = 0


def expire_lease(uow_factory: UowFactory, job_id: UUID) -> None:
    with uow_factory() as uow:
        job = uow.repositories.jobs.get(job_id)
        assert job is not None
        job.heartbeat_at = utcnow() - timedelta(hours=1)
        uow.commit()


def edge_set(
    uow_factory: UowFactory, tenant: TenantContext
) -> set[tuple[frozenset[str], MatchStrategyKind, int]]:
    """Every edge of a tenant, keyed by product labels so tenants can be compared."""

    with uow_factory() as uow:
        edges = (
            uow.session.execute(
                select(LinkEdge).where(link_edge_table.c.tenant_id == tenant.tenant_id)
            )
            .scalars()
            .all()
        )

        def label(product_id: UUID) -> str:
            product = uow.repositories.products.get(tenant, product_id)
            assert product is not None
            return f"{product.domain}:{product.reference or product.name}"

        return {
            (frozenset({label(edge.left_id), label(edge.right_id)}), edge.strategy, edge.confidence)
            for edge in edges
        }


def test_job_killed_after_every_chunk_matches_uninterrupted_run(
    sqlite_unit_of_work: UowFactory,
    make_product: Callable[..., ResolvedProduct],
    list_source: Callable[..., RowSource],
) -> None:
    steady_tenant = TenantContext("steady")
    killed_tenant = TenantContext("killed")
    seed(
        sqlite_unit_of_work,
        make_product("Acme Widget Pro Max 2024", brand="Acme", tenant_id="steady"),
        make_product("Acme Widget Pro Max 2024", brand="Acme", tenant_id="killed"),
    )
    steady = Harness(sqlite_unit_of_work, list_source(ROWS))
    steady_job = steady.create(steady_tenant, chunk_size=1)
    assert steady.pipeline.run(steady_job) is JobStatus.COMPLETED

    source = DiesAfterEachChunk(list_source(ROWS))
    killed = Harness(sqlite_unit_of_work, source)
    killed_job = killed.create(killed_tenant, chunk_size=1)
    runs = 0
    status: JobStatus | None = None
    while status is not JobStatus.COMPLETED:
        assert runs < len(ROWS)
        source.restart()
        runs += 1
        try:
            status = killed.pipeline.run(killed_job)
        except ProcessDied:
            orphan = killed.supervisor.snapshot(killed_tenant, killed_job)
            assert orphan.status is JobStatus.RUNNING
            assert orphan.source_offset == runs
            if runs == 1:
                # the claim is still live, so nobody may take the job over yet
                with pytest.raises(JobStateError):
                    killed.pipeline.run(killed_job)
            expire_lease(sqlite_unit_of_work, killed_job)

    assert runs == len(ROWS)
    expected = steady.supervisor.snapshot(steady_tenant, steady_job)
    resumed = killed.supervisor.snapshot(killed_tenant, killed_job)
    assert resumed.counts == expected.counts
    assert resumed.counts.seen == len(ROWS)
    assert edge_set(sqlite_unit_of_work, killed_tenant) == edge_set(
        sqlite_unit_of_work, steady_tenant
    )
    assert edge_set(sqlite_unit_of_work, steady_tenant)
    with sqlite_unit_of_work() as uow:
        history = uow.repositories.jobs.checkpoints(killed_job)
        baseline = uow.repositories.jobs.checkpoints(steady_job)
    assert [checkpoint.source_offset for checkpoint in history] == [1, 2, 3, 4, 5]
    assert [(c.seen, c.matched, c.created) for c in history] == [
        (c.seen, c.matched, c.created) for c in baseline
    ]


def test_run_stops_once_another_runner_holds_the_job(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    list_source: Callable[..., RowSource],
) -> None:
    source = list_source(ROWS)
    harness = Harness(sqlite_unit_of_work, source)
    job_id = harness.create(tenant)
    rescuer = uuid4()

    def reclaim_after_first_chunk(snapshot: JobProgress) -> None:
        if snapshot.source_offset != 2:
            return
        with sqlite_unit_of_work() as uow:
            job = uow.repositories.jobs.get(job_id)
            assert job is not None
            job.claim_token = rescuer
            uow.commit()

    harness.supervisor.subscribe(reclaim_after_first_chunk)

    with pytest.raises(JobStateError, match="no longer held"):
        harness.pipeline.run(job_id)

    assert source.requests == [(0, 2)]
    with sqlite_unit_of_work() as uow:
        job = uow.repositories.jobs.get(job_id)
        assert job is not None
        assert job.status is JobStatus.RUNNING
        assert job.claim_token == rescuer
        assert job.last_error is None


class BlockingMatcher:
    """Semantic collaborator that holds every call until released."""

    def __init__(self, scores: Mapping[str, int]) -> None:
        self.scores = scores
        self.entered = threading.Event()
        self.release = threading.Event()

    def compare(self, text_a: str, text_b: str) -> int:
        _ = text_b
        self.entered.set()
        if not self.release.wait(timeout=30):
            raise TimeoutError("matcher never released")
        return self.scores.get(text_a, 0)


GARDEN_ROWS: list[Mapping[str, object]] = [
    {"reference": "G-1", "name": "Garden Hose"},
    {"reference": "G-2", "name": "Desk"},
    {"reference": "G-3", "name": "Lamp"},
]


def test_status_and_pause_stay_available_while_semantic_matcher_blocks(
    file_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
    list_source: Callable[..., RowSource],
) -> None:
    tube = make_product("Watering tube")
    seed(file_unit_of_work, tube)
    matcher = BlockingMatcher({"Garden Hose": 92})
    harness = Harness(
        file_unit_of_work,
        list_source(GARDEN_ROWS),
        cascade=MatcherCascade.default(semantic=matcher),
    )
    job_id = harness.create(tenant)

    with ThreadPoolExecutor(max_workers=1) as pool:
        running = pool.submit(harness.pipeline.run, job_id)
        try:
            assert matcher.entered.wait(timeout=10)
            during = harness.supervisor.snapshot(tenant, job_id)
            pause = harness.supervisor.request_pause(tenant, job_id)
        finally:
            matcher.release.set()
        status = running.result(timeout=30)

    assert during.status is JobStatus.RUNNING
    assert during.source_offset == 0
    assert pause.pause_requested is True
    assert status is JobStatus.PAUSED
    paused = harness.supervisor.snapshot(tenant, job_id)
    assert paused.source_offset == 2
    assert (paused.counts.matched, paused.counts.created) == (1, 1)
    with file_unit_of_work() as uow:
        edges = uow.repositories.links.list_for(tenant, tube.id)
    assert [edge.strategy for edge in edges] == [MatchStrategyKind.SEMANTIC]
    assert edges[0].confidence == 92

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from prodrecon.domain.errors import LinkNotFoundError, TenantMismatchError
from prodrecon.domain.model import (
    LinkOutcomeKind,
    MatchStrategyKind,
    ProductDomain,
    SuggestionStatus,
    utcnow,
)
from prodrecon.domain.reconciliation import CandidateRecord, LinkGraphManager, MatchResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from prodrecon.adapters.sqlalchemy import SqlAlchemyUnitOfWork
    from prodrecon.domain.model import PriceChangeEvent, ResolvedProduct, TenantContext

    UowFactory = Callable[[], SqlAlchemyUnitOfWork]


def supplier_row(reference: str = "W-1", *, price: str | None = None) -> CandidateRecord:
    return CandidateRecord(
        source_kind=ProductDomain.SUPPLIER_PRODUCT,
        source_ref=reference,
        name=f"Widget {reference}",
        identifier_code=reference,
        price=Decimal(price) if price is not None else None,
        origin="acme",
    )


def match(
    target: ResolvedProduct,
    confidence: int = 90,
    strategy: MatchStrategyKind = MatchStrategyKind.LEXICAL,
) -> MatchResult:
    return MatchResult(target=target, strategy=strategy, confidence=confidence)


class CollectingSink:
    def __init__(self) -> None:
        self.events: list[PriceChangeEvent] = []

    def emit(self, event: PriceChangeEvent) -> None:
        self.events.append(event)


class BrokenSink:
    def emit(self, event: PriceChangeEvent) -> None:
        raise RuntimeError(f"cannot deliver {event.product_id}")


def store(uow_factory: UowFactory, *products: ResolvedProduct) -> None:
    with uow_factory() as uow:
        for product in products:
            uow.repositories.products.add(product)
        uow.commit()


def test_apply_twice_keeps_one_edge(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget")
    store(sqlite_unit_of_work, catalog)
    row = supplier_row()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        target = uow.repositories.products.get(tenant, catalog.id)
        assert target is not None
        source = manager.record_source(row)
        first = manager.apply(match(target), row, source=source)
        second = manager.apply(match(target), row, source=source)
        uow.commit()

    assert first.kind is LinkOutcomeKind.CREATED
    assert second.kind is LinkOutcomeKind.UPDATED
    assert second.edge_id == first.edge_id

    with sqlite_unit_of_work() as uow:
        edges = uow.repositories.links.list_for(tenant, catalog.id)
    assert [edge.id for edge in edges] == [first.edge_id]
    assert edges[0].left_id == source.id
    assert edges[0].kind == "supplier_product:catalog_analysis"


def test_confidence_never_decreases(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget")
    store(sqlite_unit_of_work, catalog)
    row = supplier_row()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        target = uow.repositories.products.get(tenant, catalog.id)
        assert target is not None
        source = manager.record_source(row)
        manager.apply(match(target, 90, MatchStrategyKind.LEXICAL), row, source=source)
        manager.apply(match(target, 80, MatchStrategyKind.SEMANTIC), row, source=source)
        edge = uow.repositories.links.find(tenant, source.id, target.id)
        assert edge is not None
        assert edge.confidence == 90
        assert edge.strategy is MatchStrategyKind.LEXICAL

        manager.apply(match(target, 100, MatchStrategyKind.EXACT), row, source=source)
        edge = uow.repositories.links.find(tenant, source.id, target.id)
        assert edge is not None
        assert edge.confidence == 100
        assert edge.strategy is MatchStrategyKind.EXACT


def test_supplier_links_to_one_catalog_product(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    first_catalog = make_product("Catalog widget")
    second_catalog = make_product("Catalog widget v2")
    listing = make_product("Listing", domain=ProductDomain.MARKETPLACE_LISTING)
    store(sqlite_unit_of_work, first_catalog, second_catalog, listing)
    row = supplier_row()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        products = uow.repositories.products
        source = manager.record_source(row)
        linked = manager.apply(match(products.get(tenant, first_catalog.id)), row, source=source)
        rejected = manager.apply(
            match(products.get(tenant, second_catalog.id)), row, source=source
        )
        other_kind = manager.apply(match(products.get(tenant, listing.id)), row, source=source)
        uow.commit()

    assert linked.kind is LinkOutcomeKind.CREATED
    assert rejected.kind is LinkOutcomeKind.SKIPPED
    assert rejected.reason == "exclusive_link_exists"
    assert other_kind.kind is LinkOutcomeKind.CREATED


def test_self_link_and_cross_tenant_links_are_refused(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    foreign = make_product("Foreign widget", tenant_id="tenant-b")
    store(sqlite_unit_of_work, foreign)
    row = supplier_row()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        source = manager.record_source(row)

        outcome = manager.apply(match(source), row, source=source)
        assert outcome.kind is LinkOutcomeKind.SKIPPED
        assert outcome.reason == "self_link"

        with pytest.raises(TenantMismatchError):
            manager.apply(match(foreign), row, source=source)


def test_price_change_above_threshold_emits_event(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget", price="100.00")
    store(sqlite_unit_of_work, catalog)
    sink = CollectingSink()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant, price_change_threshold=Decimal("5"))
        target = uow.repositories.products.get(tenant, catalog.id)
        assert target is not None
        small = supplier_row("W-1", price="103.00")
        source = manager.record_source(small)
        quiet = manager.apply(match(target), small, source=source)
        large = supplier_row("W-1", price="120.00")
        loud = manager.apply(match(target), large, source=source)
        uow.commit()
    delivered = manager.flush_alerts(sink)

    assert quiet.events == ()
    assert len(loud.events) == 1
    assert delivered == 1
    event = sink.events[0]
    assert event.product_id == catalog.id
    assert event.old_price == Decimal("103.00")
    assert event.new_price == Decimal("120.00")
    assert event.change_percent == Decimal("16.50")
    assert event.link_id == loud.edge_id
    assert manager.pending_alerts == []

    with sqlite_unit_of_work() as uow:
        reloaded = uow.repositories.products.get(tenant, catalog.id)
        assert reloaded is not None
        assert reloaded.price == Decimal("120.00")


def test_alert_delivery_failure_is_contained(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget", price="10.00")
    store(sqlite_unit_of_work, catalog)
    row = supplier_row(price="20.00")

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        target = uow.repositories.products.get(tenant, catalog.id)
        assert target is not None
        manager.apply(match(target), row, source=manager.record_source(row))
        uow.commit()

    assert manager.flush_alerts(BrokenSink()) == 0
    assert manager.pending_alerts == []


def test_unlinked_pair_is_not_relinked_in_same_run(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget")
    store(sqlite_unit_of_work, catalog)
    row = supplier_row()
    run_started_at = utcnow()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        target = uow.repositories.products.get(tenant, catalog.id)
        assert target is not None
        source = manager.record_source(row)
        created = manager.apply(match(target), row, source=source, run_started_at=run_started_at)
        assert created.edge_id is not None
        pair = manager.unlink(created.edge_id)
        assert (pair.left_id, pair.right_id) == (source.id, target.id)

        suppressed = manager.apply(
            match(target), row, source=source, run_started_at=run_started_at
        )
        assert suppressed.kind is LinkOutcomeKind.SKIPPED
        assert suppressed.reason == "unlinked_in_run"
        assert uow.repositories.links.find(tenant, source.id, target.id) is None

        next_run = manager.apply(
            match(target), row, source=source, run_started_at=utcnow() + timedelta(seconds=1)
        )
        assert next_run.kind is LinkOutcomeKind.CREATED
        uow.commit()


def test_unlink_unknown_edge(sqlite_unit_of_work: UowFactory, tenant: TenantContext) -> None:
    with sqlite_unit_of_work() as uow, pytest.raises(LinkNotFoundError):
        LinkGraphManager(uow, tenant).unlink(uuid4())


def test_batch_confirm_isolates_failures(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    first_catalog = make_product("Catalog widget one")
    second_catalog = make_product("Catalog widget two")
    competing = make_product("Catalog widget three")
    store(sqlite_unit_of_work, first_catalog, second_catalog, competing)
    row_one = supplier_row("W-1", price="9.99")
    row_two = supplier_row("W-2")

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        products = uow.repositories.products
        source_one = manager.record_source(row_one)
        source_two = manager.record_source(row_two)
        manager.propose(match(products.get(tenant, first_catalog.id)), row_one, source=source_one)
        manager.propose(match(products.get(tenant, second_catalog.id)), row_two, source=source_two)
        # W-2 gets linked elsewhere before anyone reviews its suggestion
        manager.apply(match(products.get(tenant, competing.id)), row_two, source=source_two)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        pending = uow.repositories.suggestions.list_pending(tenant)
    assert len(pending) == 2
    by_left = {suggestion.left_id: suggestion.id for suggestion in pending}
    missing = uuid4()
    ids = [by_left[source_one.id], missing, by_left[source_two.id]]

    with sqlite_unit_of_work() as uow:
        result = LinkGraphManager(uow, tenant).confirm_suggestions(ids)
        uow.commit()

    assert result.succeeded == 1
    assert result.failed == 2
    assert [item.suggestion_id for item in result.items] == ids
    assert result.items[0].succeeded
    assert result.items[0].outcome is not None
    assert result.items[0].outcome.kind is LinkOutcomeKind.CREATED
    assert "not found" in (result.items[1].error or "")
    assert "exclusive_link_exists" in (result.items[2].error or "")

    with sqlite_unit_of_work() as uow:
        suggestions = uow.repositories.suggestions
        confirmed = suggestions.get(tenant, ids[0])
        failed = suggestions.get(tenant, ids[2])
        assert confirmed is not None
        assert confirmed.status is SuggestionStatus.CONFIRMED
        assert failed is not None
        assert failed.status is SuggestionStatus.FAILED
        assert suggestions.list_pending(tenant) == []
        assert uow.repositories.links.find(tenant, source_one.id, first_catalog.id) is not None
        catalog = uow.repositories.products.get(tenant, first_catalog.id)
        assert catalog is not None
        assert catalog.price == Decimal("9.99")


def test_propose_skips_pairs_that_are_already_linked(
    sqlite_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget")
    store(sqlite_unit_of_work, catalog)
    row = supplier_row()

    with sqlite_unit_of_work() as uow:
        manager = LinkGraphManager(uow, tenant)
        target = uow.repositories.products.get(tenant, catalog.id)
        assert target is not None
        source = manager.record_source(row)
        manager.apply(match(target), row, source=source)
        outcome = manager.propose(match(target), row, source=source)
        uow.commit()

    assert outcome.kind is LinkOutcomeKind.SKIPPED
    assert outcome.reason == "already_linked"


def test_concurrent_writers_create_one_edge(
    file_unit_of_work: UowFactory,
    tenant: TenantContext,
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = make_product("Catalog widget")
    store(file_unit_of_work, catalog)
    row = supplier_row()

    def link_once() -> LinkOutcomeKind:
        with file_unit_of_work() as uow:
            manager = LinkGraphManager(uow, tenant)
            source = manager.record_source(row)
            target = uow.repositories.products.get(tenant, catalog.id)
            assert target is not None
            outcome = manager.apply(match(target), row, source=source)
            uow.commit()
        return outcome.kind

    with ThreadPoolExecutor(max_workers=2) as pool:
        kinds = sorted(pool.map(lambda _: link_once(), range(2)))

    assert kinds == sorted([LinkOutcomeKind.CREATED, LinkOutcomeKind.UPDATED])
    with file_unit_of_work() as uow:
        assert len(uow.repositories.links.list_for(tenant, catalog.id)) == 1

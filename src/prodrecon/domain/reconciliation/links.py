"""Link Graph Manager: idempotent edge writes, suggestions, unlinks and price alerts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from prodrecon.domain.errors import (
    ConstraintViolationError,
    LinkNotFoundError,
    ReconciliationError,
    SuggestionNotFoundError,
)
from prodrecon.domain.model import (
    SUPPLIER_CATALOG_KIND,
    LinkEdge,
    LinkOutcomeKind,
    LinkSuggestion,
    MatchStrategyKind,
    PriceChangeEvent,
    ResolvedProduct,
    SuggestionStatus,
    UnlinkedPair,
    canonical_pair,
    link_kind,
    normalize_gtin,
    price_change_percent,
    stable_product_id,
    utcnow,
)

from .contracts import BatchConfirmResult, ConfirmItemOutcome, LinkOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from prodrecon.domain.model import ProductDomain, TenantContext
    from prodrecon.domain.ports.alerts import AlertSink
    from prodrecon.domain.ports.unit_of_work import ReconciliationUnitOfWork

    from .contracts import CandidateRecord, MatchResult

log = logging.getLogger(__name__)

DEFAULT_PRICE_CHANGE_THRESHOLD = Decimal("5")
PROMOTED_CONFIDENCE = 100

SKIP_SELF_LINK = "self_link"
SKIP_EXCLUSIVE = "exclusive_link_exists"
SKIP_UNLINKED = "unlinked_in_run"
SKIP_ALREADY_LINKED = "already_linked"


@dataclass(slots=True)
class LinkGraphManager:
    """Writes to the link graph inside the caller's unit of work.

    Price-change events are queued on ``pending_alerts``; the caller flushes
    them with ``flush_alerts`` once the unit of work has committed.
    """

    uow: ReconciliationUnitOfWork
    tenant: TenantContext
    price_change_threshold: Decimal = DEFAULT_PRICE_CHANGE_THRESHOLD
    pending_alerts: list[PriceChangeEvent] = field(default_factory=list)

    # Source nodes -------------------------------------------------------------

    def record_source(self, candidate: CandidateRecord) -> ResolvedProduct:
        """Create or refresh the node addressed by the candidate's origin and reference."""

        products = self.uow.repositories.products
        incoming = ResolvedProduct(
            id=stable_product_id(
                self.tenant.tenant_id, candidate.source_kind, candidate.origin, candidate.source_ref
            ),
            tenant_id=self.tenant.tenant_id,
            domain=candidate.source_kind,
            name=candidate.name,
            brand=candidate.brand,
            ean=normalize_gtin(candidate.identifier_ean),
            reference=candidate.source_ref,
            origin=candidate.origin,
            price=candidate.price,
            stock=candidate.stock,
        )
        product = products.ensure(incoming)
        if product is not incoming:
            self._refresh(product, incoming)
        return product

    def promote(
        self,
        candidate: CandidateRecord,
        *,
        source: ResolvedProduct,
        target_domain: ProductDomain,
        run_started_at: datetime | None = None,
    ) -> tuple[ResolvedProduct, LinkOutcome]:
        """Create a target-domain product from an unmatched candidate and link it."""

        promoted = self.uow.repositories.products.ensure(
            ResolvedProduct(
                id=stable_product_id(
                    self.tenant.tenant_id, target_domain, candidate.origin, candidate.source_ref
                ),
                tenant_id=self.tenant.tenant_id,
                domain=target_domain,
                name=candidate.name,
                brand=candidate.brand,
                ean=normalize_gtin(candidate.identifier_ean),
                reference=candidate.source_ref,
                origin=candidate.origin,
                price=candidate.price,
            )
        )
        outcome = self._link(
            source,
            promoted,
            strategy=MatchStrategyKind.PROMOTED,
            confidence=PROMOTED_CONFIDENCE,
            price=None,
            run_started_at=run_started_at,
        )
        return promoted, outcome

    # Edges --------------------------------------------------------------------

    def apply(
        self,
        match: MatchResult,
        candidate: CandidateRecord,
        *,
        source: ResolvedProduct,
        run_started_at: datetime | None = None,
    ) -> LinkOutcome:
        """Persist ``match`` as an edge between ``source`` and the matched product."""

        return self._link(
            source,
            match.target,
            strategy=match.strategy,
            confidence=match.confidence,
            price=candidate.price,
            run_started_at=run_started_at,
        )

    def unlink(self, edge_id: UUID) -> UnlinkedPair:
        links = self.uow.repositories.links
        edge = links.get(self.tenant, edge_id)
        if edge is None:
            raise LinkNotFoundError(f"Link {edge_id} not found")
        links.delete(edge)
        pair = UnlinkedPair(tenant_id=edge.tenant_id, left_id=edge.left_id, right_id=edge.right_id)
        self.uow.repositories.unlinks.record(pair)
        log.info("Unlinked %s <-> %s", edge.left_id, edge.right_id)
        return pair

    # Suggestions --------------------------------------------------------------

    def propose(
        self,
        match: MatchResult,
        candidate: CandidateRecord,
        *,
        source: ResolvedProduct,
        job_id: UUID | None = None,
        run_started_at: datetime | None = None,
    ) -> LinkOutcome:
        """Record a pending suggestion instead of linking (suggestion-mode jobs)."""

        self.tenant.require_owns(source, match.target)
        if source.id == match.target.id:
            return LinkOutcome.skipped(SKIP_SELF_LINK)
        left, right = canonical_pair(source, match.target)
        if self._suppressed(left, right, run_started_at):
            return LinkOutcome.skipped(SKIP_UNLINKED)
        if self.uow.repositories.links.find(self.tenant, left.id, right.id) is not None:
            return LinkOutcome.skipped(SKIP_ALREADY_LINKED)
        result = self.uow.repositories.suggestions.upsert(
            LinkSuggestion(
                tenant_id=self.tenant.tenant_id,
                job_id=job_id,
                left_id=left.id,
                right_id=right.id,
                target_id=match.target.id,
                strategy=match.strategy,
                confidence=match.confidence,
                proposed_price=candidate.price,
            )
        )
        kind = LinkOutcomeKind.CREATED if result.created else LinkOutcomeKind.UPDATED
        return LinkOutcome(kind=kind)

    def confirm_suggestions(self, suggestion_ids: Iterable[UUID]) -> BatchConfirmResult:
        """Confirm each suggestion in its own savepoint; one failure never blocks the rest."""

        items: list[ConfirmItemOutcome] = []
        for suggestion_id in suggestion_ids:
            try:
                with self.uow.savepoint():
                    outcome = self._confirm_one(suggestion_id)
            except ReconciliationError as exc:
                log.warning("Confirming suggestion %s failed: %s", suggestion_id, exc)
                self._mark_failed(suggestion_id)
                items.append(
                    ConfirmItemOutcome(suggestion_id=suggestion_id, succeeded=False, error=str(exc))
                )
                continue
            items.append(
                ConfirmItemOutcome(suggestion_id=suggestion_id, succeeded=True, outcome=outcome)
            )
        result = BatchConfirmResult(items=tuple(items))
        log.info("Batch confirm: succeeded=%s failed=%s", result.succeeded, result.failed)
        return result

    # Alerts -------------------------------------------------------------------

    def flush_alerts(self, sink: AlertSink) -> int:
        """Emit queued events; delivery failures are logged and dropped."""

        events, self.pending_alerts = self.pending_alerts, []
        delivered = 0
        for event in events:
            try:
                sink.emit(event)
            except Exception:  # noqa: BLE001
                log.exception("Failed to emit price change alert for %s", event.product_id)
                continue
            delivered += 1
        return delivered

    # Internals ----------------------------------------------------------------

    def _confirm_one(self, suggestion_id: UUID) -> LinkOutcome:
        repos = self.uow.repositories
        suggestion = repos.suggestions.get(self.tenant, suggestion_id)
        if suggestion is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} not found")
        if suggestion.status is not SuggestionStatus.PENDING:
            raise ConstraintViolationError(f"Suggestion {suggestion_id} is {suggestion.status}")
        left = repos.products.get(self.tenant, suggestion.left_id)
        right = repos.products.get(self.tenant, suggestion.right_id)
        if left is None or right is None:
            raise SuggestionNotFoundError(f"Suggestion {suggestion_id} refers to missing products")
        target, source = (left, right) if suggestion.target_id == left.id else (right, left)
        outcome = self._link(
            source,
            target,
            strategy=suggestion.strategy,
            confidence=suggestion.confidence,
            price=suggestion.proposed_price,
            run_started_at=None,
        )
        if outcome.kind is LinkOutcomeKind.SKIPPED:
            raise ConstraintViolationError(f"Suggestion {suggestion_id} skipped: {outcome.reason}")
        suggestion.status = SuggestionStatus.CONFIRMED
        suggestion.resolved_at = utcnow()
        return outcome

    def _mark_failed(self, suggestion_id: UUID) -> None:
        suggestion = self.uow.repositories.suggestions.get(self.tenant, suggestion_id)
        if suggestion is None or suggestion.status is not SuggestionStatus.PENDING:
            return
        suggestion.status = SuggestionStatus.FAILED
        suggestion.resolved_at = utcnow()

    def _link(
        self,
        source: ResolvedProduct,
        target: ResolvedProduct,
        *,
        strategy: MatchStrategyKind,
        confidence: int,
        price: Decimal | None,
        run_started_at: datetime | None,
    ) -> LinkOutcome:
        self.tenant.require_owns(source, target)
        if source.id == target.id:
            return LinkOutcome.skipped(SKIP_SELF_LINK)

        left, right = canonical_pair(source, target)
        if self._suppressed(left, right, run_started_at):
            log.debug("Skipping %s <-> %s: unlinked during this run", left.id, right.id)
            return LinkOutcome.skipped(SKIP_UNLINKED)

        kind = link_kind(left, right)
        links = self.uow.repositories.links
        if kind == SUPPLIER_CATALOG_KIND:
            existing = links.exclusive_target(self.tenant, left.id)
            if existing is not None and existing.right_id != right.id:
                return LinkOutcome.skipped(SKIP_EXCLUSIVE)

        try:
            result = links.upsert(
                LinkEdge(
                    tenant_id=self.tenant.tenant_id,
                    left_id=left.id,
                    right_id=right.id,
                    kind=kind,
                    strategy=strategy,
                    confidence=confidence,
                )
            )
        except ConstraintViolationError as exc:
            log.info("Link %s <-> %s rejected: %s", left.id, right.id, exc)
            return LinkOutcome.skipped(SKIP_EXCLUSIVE)

        events = self._apply_price(target, price, link_id=result.id)
        return LinkOutcome(
            kind=LinkOutcomeKind.CREATED if result.created else LinkOutcomeKind.UPDATED,
            edge_id=result.id,
            events=events,
        )

    def _apply_price(
        self, target: ResolvedProduct, price: Decimal | None, *, link_id: UUID
    ) -> tuple[PriceChangeEvent, ...]:
        if price is None or price == target.price:
            return ()
        previous = target.update_price(price)
        change = price_change_percent(previous, price)
        if previous is None or change is None or change <= self.price_change_threshold:
            return ()
        event = PriceChangeEvent(
            tenant_id=target.tenant_id,
            product_id=target.id,
            domain=target.domain,
            old_price=previous,
            new_price=price,
            change_percent=change,
            link_id=link_id,
        )
        self.pending_alerts.append(event)
        return (event,)

    def _suppressed(
        self, left: ResolvedProduct, right: ResolvedProduct, run_started_at: datetime | None
    ) -> bool:
        if run_started_at is None:
            return False
        unlinked_at = self.uow.repositories.unlinks.unlinked_at(self.tenant, left.id, right.id)
        return unlinked_at is not None and unlinked_at >= run_started_at

    @staticmethod
    def _refresh(product: ResolvedProduct, incoming: ResolvedProduct) -> None:
        product.update_price(incoming.price)
        product.update_stock(incoming.stock)
        if incoming.name and incoming.name != product.name:
            product.name = incoming.name
            product.updated_at = utcnow()
        if incoming.brand and incoming.brand != product.brand:
            product.brand = incoming.brand
            product.updated_at = utcnow()
        if incoming.ean and incoming.ean != product.ean:
            product.ean = incoming.ean
            product.updated_at = utcnow()

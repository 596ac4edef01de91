"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import and_, case, literal, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from prodrecon.adapters.sqlalchemy.mappings import (
    UTCDateTime,
    ingestion_job_table,
    job_checkpoint_table,
    link_edge_table,
    link_suggestion_table,
    resolved_product_table,
)
from prodrecon.config.errors import ConfigurationError
from prodrecon.domain.errors import ConstraintViolationError
from prodrecon.domain.model import (
    CLAIMABLE_STATUSES,
    SUPPLIER_CATALOG_KIND,
    IngestionJob,
    JobCheckpoint,
    JobStatus,
    LinkEdge,
    LinkSuggestion,
    ResolvedProduct,
    SuggestionStatus,
    UnlinkedPair,
    utcnow,
)
from prodrecon.domain.ports.persistence import UpsertResult

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime, timedelta
    from uuid import UUID

    from sqlalchemy import CursorResult, Table
    from sqlalchemy.orm import Session

    from prodrecon.domain.model import ProductDomain, TenantContext

_PAIR_COLUMNS = ("tenant_id", "left_id", "right_id")


def _dialect_insert(session: Session) -> Callable[[Table], Any]:
    """``INSERT .. ON CONFLICT`` capable insert for the bound dialect."""

    name = session.get_bind().dialect.name
    if name == "sqlite":
        return sqlite.insert
    if name == "postgresql":
        return postgresql.insert
    raise ConfigurationError(f"Unsupported database dialect for upserts: {name}")


class SqlAlchemyProductRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ResolvedProduct) -> None:
        self.session.add(entity)

    def get(self, tenant: TenantContext, product_id: UUID) -> ResolvedProduct | None:
        product = self.session.get(ResolvedProduct, product_id)
        if product is None or product.tenant_id != tenant.tenant_id:
            return None
        return product

    def ensure(self, product: ResolvedProduct) -> ResolvedProduct:
        existing = self.session.get(ResolvedProduct, product.id)
        if existing is not None:
            return existing
        try:
            with self.session.begin_nested():
                self.session.add(product)
        except IntegrityError:
            # a concurrent writer inserted the same stable id first
            existing = self.session.get(ResolvedProduct, product.id)
            if existing is None:
                raise
            return existing
        return product

    def find_by_identifier(
        self, tenant: TenantContext, domain: ProductDomain, ean: str
    ) -> list[ResolvedProduct]:
        stmt = (
            select(ResolvedProduct)
            .where(resolved_product_table.c.tenant_id == tenant.tenant_id)
            .where(resolved_product_table.c.domain == domain)
            .where(resolved_product_table.c.ean == ean)
        )
        return list(self.session.execute(stmt).scalars())

    def find_by_reference(
        self,
        tenant: TenantContext,
        domain: ProductDomain,
        reference: str,
        origin: str | None,
    ) -> list[ResolvedProduct]:
        origin_column = resolved_product_table.c.origin
        stmt = (
            select(ResolvedProduct)
            .where(resolved_product_table.c.tenant_id == tenant.tenant_id)
            .where(resolved_product_table.c.domain == domain)
            .where(resolved_product_table.c.reference == reference)
            .where(origin_column.is_(None) if origin is None else origin_column == origin)
        )
        return list(self.session.execute(stmt).scalars())

    def fuzzy_candidates(
        self, tenant: TenantContext, domain: ProductDomain, limit: int
    ) -> list[ResolvedProduct]:
        stmt = (
            select(ResolvedProduct)
            .where(resolved_product_table.c.tenant_id == tenant.tenant_id)
            .where(resolved_product_table.c.domain == domain)
            .order_by(resolved_product_table.c.updated_at.desc(), resolved_product_table.c.id)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyLinkRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, edge: LinkEdge) -> UpsertResult:
        table = link_edge_table
        stmt = _dialect_insert(self.session)(table).values(
            id=edge.id,
            tenant_id=edge.tenant_id,
            left_id=edge.left_id,
            right_id=edge.right_id,
            kind=edge.kind,
            strategy=edge.strategy,
            confidence=edge.confidence,
            created_at=edge.created_at,
            updated_at=edge.updated_at,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_PAIR_COLUMNS),
            set_={
                # confidence never decreases; the strategy follows the winning confidence
                "confidence": case(
                    (excluded.confidence > table.c.confidence, excluded.confidence),
                    else_=table.c.confidence,
                ),
                "strategy": case(
                    (excluded.confidence >= table.c.confidence, excluded.strategy),
                    else_=table.c.strategy,
                ),
                "updated_at": excluded.updated_at,
            },
        ).returning(table.c.id)

        self.session.flush()
        try:
            with self.session.begin_nested():
                edge_id = self.session.execute(stmt).scalar_one()
        except IntegrityError as exc:
            raise ConstraintViolationError(
                f"Link {edge.left_id} -> {edge.right_id} violates a uniqueness rule"
            ) from exc
        return UpsertResult(id=edge_id, created=edge_id == edge.id)

    def get(self, tenant: TenantContext, edge_id: UUID) -> LinkEdge | None:
        stmt = (
            select(LinkEdge)
            .where(link_edge_table.c.id == edge_id)
            .where(link_edge_table.c.tenant_id == tenant.tenant_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find(self, tenant: TenantContext, left_id: UUID, right_id: UUID) -> LinkEdge | None:
        stmt = (
            select(LinkEdge)
            .where(link_edge_table.c.tenant_id == tenant.tenant_id)
            .where(link_edge_table.c.left_id == left_id)
            .where(link_edge_table.c.right_id == right_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def exclusive_target(self, tenant: TenantContext, left_id: UUID) -> LinkEdge | None:
        stmt = (
            select(LinkEdge)
            .where(link_edge_table.c.tenant_id == tenant.tenant_id)
            .where(link_edge_table.c.left_id == left_id)
            .where(link_edge_table.c.kind == SUPPLIER_CATALOG_KIND)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_for(self, tenant: TenantContext, product_id: UUID) -> list[LinkEdge]:
        stmt = (
            select(LinkEdge)
            .where(link_edge_table.c.tenant_id == tenant.tenant_id)
            .where(
                (link_edge_table.c.left_id == product_id)
                | (link_edge_table.c.right_id == product_id)
            )
            .order_by(link_edge_table.c.created_at, link_edge_table.c.id)
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars())

    def delete(self, edge: LinkEdge) -> None:
        self.session.delete(edge)
        self.session.flush()


class SqlAlchemySuggestionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, suggestion: LinkSuggestion) -> UpsertResult:
        table = link_suggestion_table
        stmt = _dialect_insert(self.session)(table).values(
            id=suggestion.id,
            tenant_id=suggestion.tenant_id,
            job_id=suggestion.job_id,
            left_id=suggestion.left_id,
            right_id=suggestion.right_id,
            target_id=suggestion.target_id,
            strategy=suggestion.strategy,
            confidence=suggestion.confidence,
            proposed_price=suggestion.proposed_price,
            status=suggestion.status,
            created_at=suggestion.created_at,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_PAIR_COLUMNS),
            set_={
                "job_id": excluded.job_id,
                "target_id": excluded.target_id,
                "strategy": excluded.strategy,
                "confidence": excluded.confidence,
                "proposed_price": excluded.proposed_price,
            },
            # decided suggestions are left alone
            where=table.c.status == SuggestionStatus.PENDING,
        ).returning(table.c.id)

        self.session.flush()
        with self.session.begin_nested():
            suggestion_id = self.session.execute(stmt).scalar_one_or_none()
        if suggestion_id is None:
            existing = self.session.execute(
                select(table.c.id)
                .where(table.c.tenant_id == suggestion.tenant_id)
                .where(table.c.left_id == suggestion.left_id)
                .where(table.c.right_id == suggestion.right_id)
            ).scalar_one()
            return UpsertResult(id=existing, created=False)
        return UpsertResult(id=suggestion_id, created=suggestion_id == suggestion.id)

    def get(self, tenant: TenantContext, suggestion_id: UUID) -> LinkSuggestion | None:
        stmt = (
            select(LinkSuggestion)
            .where(link_suggestion_table.c.id == suggestion_id)
            .where(link_suggestion_table.c.tenant_id == tenant.tenant_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_pending(
        self, tenant: TenantContext, *, job_id: UUID | None = None
    ) -> list[LinkSuggestion]:
        stmt = (
            select(LinkSuggestion)
            .where(link_suggestion_table.c.tenant_id == tenant.tenant_id)
            .where(link_suggestion_table.c.status == SuggestionStatus.PENDING)
            .order_by(link_suggestion_table.c.created_at, link_suggestion_table.c.id)
            .execution_options(populate_existing=True)
        )
        if job_id is not None:
            stmt = stmt.where(link_suggestion_table.c.job_id == job_id)
        return list(self.session.execute(stmt).scalars())


class SqlAlchemyUnlinkRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record(self, pair: UnlinkedPair) -> None:
        existing = self.session.get(UnlinkedPair, (pair.tenant_id, pair.left_id, pair.right_id))
        if existing is None:
            self.session.add(pair)
            return
        existing.unlinked_at = pair.unlinked_at

    def unlinked_at(self, tenant: TenantContext, left_id: UUID, right_id: UUID) -> datetime | None:
        pair = self.session.get(UnlinkedPair, (tenant.tenant_id, left_id, right_id))
        return None if pair is None else pair.unlinked_at


class SqlAlchemyJobRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: IngestionJob) -> None:
        self.session.add(entity)

    def get(self, job_id: UUID) -> IngestionJob | None:
        # always re-read: pause requests arrive from other sessions
        stmt = (
            select(IngestionJob)
            .where(ingestion_job_table.c.id == job_id)
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def claim(
        self,
        job_id: UUID,
        *,
        token: UUID,
        lease: timedelta,
        now: datetime | None = None,
    ) -> bool:
        now = now or utcnow()
        table = ingestion_job_table
        orphaned = and_(
            table.c.status == JobStatus.RUNNING,
            or_(table.c.heartbeat_at.is_(None), table.c.heartbeat_at <= now - lease),
        )
        stmt = (
            update(table)
            .where(table.c.id == job_id)
            .where(or_(table.c.status.in_(sorted(CLAIMABLE_STATUSES)), orphaned))
            .values(
                status=JobStatus.RUNNING,
                claim_token=token,
                heartbeat_at=now,
                started_at=case(
                    (table.c.started_at.is_(None), literal(now, UTCDateTime())),
                    else_=table.c.started_at,
                ),
                finished_at=None,
                updated_at=now,
            )
        )
        self.session.flush()
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        return result.rowcount == 1

    def append_checkpoint(self, checkpoint: JobCheckpoint) -> None:
        self.session.add(checkpoint)

    def checkpoints(self, job_id: UUID) -> list[JobCheckpoint]:
        stmt = (
            select(JobCheckpoint)
            .where(job_checkpoint_table.c.job_id == job_id)
            .order_by(job_checkpoint_table.c.sequence)
        )
        return list(self.session.execute(stmt).scalars())


if TYPE_CHECKING:
    from prodrecon.domain.ports.persistence import (
        JobRepository,
        LinkRepository,
        ProductRepository,
        SuggestionRepository,
        UnlinkRepository,
    )

    _session_stub = cast("Session", object())
    _product_repo: ProductRepository = SqlAlchemyProductRepository(_session_stub)
    _link_repo: LinkRepository = SqlAlchemyLinkRepository(_session_stub)
    _suggestion_repo: SuggestionRepository = SqlAlchemySuggestionRepository(_session_stub)
    _unlink_repo: UnlinkRepository = SqlAlchemyUnlinkRepository(_session_stub)
    _job_repo: JobRepository = SqlAlchemyJobRepository(_session_stub)

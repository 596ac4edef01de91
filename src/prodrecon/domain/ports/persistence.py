"""Ports for persisting the link graph and ingestion jobs.

Every query that reads tenant data takes an explicit ``TenantContext``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from prodrecon.domain.model import IngestionJob, ResolvedProduct

if TYPE_CHECKING:
    from datetime import datetime, timedelta
    from uuid import UUID

    from prodrecon.domain.model import (
        JobCheckpoint,
        LinkEdge,
        LinkSuggestion,
        ProductDomain,
        TenantContext,
        UnlinkedPair,
    )


@dataclass(slots=True, frozen=True)
class UpsertResult:
    id: UUID
    created: bool


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class ProductRepository(Repository[ResolvedProduct], Protocol):
    def get(self, tenant: TenantContext, product_id: UUID) -> ResolvedProduct | None: ...

    def ensure(self, product: ResolvedProduct) -> ResolvedProduct:
        """Insert ``product`` unless its id exists; return the persistent instance."""
        ...

    def find_by_identifier(
        self, tenant: TenantContext, domain: ProductDomain, ean: str
    ) -> list[ResolvedProduct]: ...

    def find_by_reference(
        self,
        tenant: TenantContext,
        domain: ProductDomain,
        reference: str,
        origin: str | None,
    ) -> list[ResolvedProduct]: ...

    def fuzzy_candidates(
        self, tenant: TenantContext, domain: ProductDomain, limit: int
    ) -> list[ResolvedProduct]: ...


@runtime_checkable
class LinkRepository(Protocol):
    def upsert(self, edge: LinkEdge) -> UpsertResult:
        """Insert or raise confidence of the edge for the same canonical pair.

        Raises ``ConstraintViolationError`` when another uniqueness rule rejects it.
        """
        ...

    def get(self, tenant: TenantContext, edge_id: UUID) -> LinkEdge | None: ...

    def find(self, tenant: TenantContext, left_id: UUID, right_id: UUID) -> LinkEdge | None: ...

    def exclusive_target(self, tenant: TenantContext, left_id: UUID) -> LinkEdge | None: ...

    def list_for(self, tenant: TenantContext, product_id: UUID) -> list[LinkEdge]: ...

    def delete(self, edge: LinkEdge) -> None: ...


@runtime_checkable
class SuggestionRepository(Protocol):
    def upsert(self, suggestion: LinkSuggestion) -> UpsertResult: ...

    def get(self, tenant: TenantContext, suggestion_id: UUID) -> LinkSuggestion | None: ...

    def list_pending(
        self, tenant: TenantContext, *, job_id: UUID | None = None
    ) -> list[LinkSuggestion]: ...


@runtime_checkable
class UnlinkRepository(Protocol):
    def record(self, pair: UnlinkedPair) -> None: ...

    def unlinked_at(
        self, tenant: TenantContext, left_id: UUID, right_id: UUID
    ) -> datetime | None: ...


@runtime_checkable
class JobRepository(Repository[IngestionJob], Protocol):
    def get(self, job_id: UUID) -> IngestionJob | None: ...

    def claim(
        self,
        job_id: UUID,
        *,
        token: UUID,
        lease: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """Atomically move a claimable job to ``running`` under ``token``.

        A ``running`` job is claimable once its heartbeat is older than ``lease``.
        ``False`` if a live runner still holds it.
        """
        ...

    def append_checkpoint(self, checkpoint: JobCheckpoint) -> None: ...

    def checkpoints(self, job_id: UUID) -> list[JobCheckpoint]: ...

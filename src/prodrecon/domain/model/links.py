"""Link edges between resolved products, suggestions and unlink records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prodrecon.domain.model.entity import Entity, utcnow
from prodrecon.domain.model.enums import (
    MatchStrategyKind,
    ProductDomain,
    SuggestionStatus,
)

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal
    from uuid import UUID

    from prodrecon.domain.model.product import ResolvedProduct

SUPPLIER_CATALOG_KIND = f"{ProductDomain.SUPPLIER_PRODUCT}:{ProductDomain.CATALOG_ANALYSIS}"


def canonical_pair(
    a: ResolvedProduct, b: ResolvedProduct
) -> tuple[ResolvedProduct, ResolvedProduct]:
    """Order a pair so that the same two products always map to one (left, right)."""

    if (a.domain.rank, str(a.id)) <= (b.domain.rank, str(b.id)):
        return a, b
    return b, a


def link_kind(left: ResolvedProduct, right: ResolvedProduct) -> str:
    return f"{left.domain}:{right.domain}"


@dataclass(eq=False, kw_only=True)
class LinkEdge(Entity):
    """Confidence-scored relationship; unique per tenant and canonical pair."""

    tenant_id: str
    left_id: UUID
    right_id: UUID
    kind: str
    strategy: MatchStrategyKind
    confidence: int
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError("confidence must be within 0..100")
        if self.left_id == self.right_id:
            raise ValueError("a product cannot be linked to itself")


@dataclass(eq=False, kw_only=True)
class LinkSuggestion(Entity):
    """Pending link awaiting manual confirmation (suggestion-mode ingestion)."""

    tenant_id: str
    left_id: UUID
    right_id: UUID
    target_id: UUID
    strategy: MatchStrategyKind
    confidence: int
    job_id: UUID | None = None
    proposed_price: Decimal | None = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: datetime | None = None


@dataclass(eq=False, kw_only=True)
class UnlinkedPair:
    """A pair the user unlinked; automatic matching must not resurrect it in the same run."""

    tenant_id: str
    left_id: UUID
    right_id: UUID
    unlinked_at: datetime = field(default_factory=utcnow)

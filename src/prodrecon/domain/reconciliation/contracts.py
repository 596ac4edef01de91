"""Value objects passed between normalizer, cascade and link graph manager.

This module holds only:
- the transient ``CandidateRecord`` produced by normalization
- match results (``MatchResult`` or the ``NoMatch`` value)
- link outcomes and batch-confirm results
- the read-only ``CatalogView`` the cascade matches against
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from prodrecon.domain.model import LinkOutcomeKind

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from decimal import Decimal
    from uuid import UUID

    from prodrecon.domain.model import (
        MatchStrategyKind,
        PriceChangeEvent,
        ProductDomain,
        ResolvedProduct,
    )


@dataclass(slots=True, kw_only=True)
class CandidateRecord:
    """Normalised incoming record, never persisted on its own."""

    source_kind: ProductDomain
    source_ref: str
    name: str
    brand: str | None = None
    identifier_ean: str | None = None  # as received; validated when matched
    identifier_code: str | None = None
    price: Decimal | None = None
    stock: int | None = None
    origin: str | None = None
    raw_payload: Mapping[str, object] = field(default_factory=dict)


@dataclass(slots=True, frozen=True, kw_only=True)
class StrategyAttempt:
    strategy: MatchStrategyKind
    target: ResolvedProduct
    confidence: int


@dataclass(slots=True, frozen=True, kw_only=True)
class MatchResult:
    target: ResolvedProduct
    strategy: MatchStrategyKind
    confidence: int


@dataclass(slots=True, frozen=True)
class NoMatch:
    reason: str = "no strategy cleared its floor"


type Resolution = MatchResult | NoMatch


@dataclass(slots=True, frozen=True, kw_only=True)
class LinkOutcome:
    kind: LinkOutcomeKind
    edge_id: UUID | None = None
    reason: str | None = None
    events: tuple[PriceChangeEvent, ...] = ()

    @classmethod
    def skipped(cls, reason: str) -> LinkOutcome:
        return cls(kind=LinkOutcomeKind.SKIPPED, reason=reason)


@dataclass(slots=True, frozen=True, kw_only=True)
class ConfirmItemOutcome:
    suggestion_id: UUID
    succeeded: bool
    outcome: LinkOutcome | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class BatchConfirmResult:
    items: tuple[ConfirmItemOutcome, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.succeeded)


@runtime_checkable
class CatalogView(Protocol):
    """Read access to the target-domain products a candidate is matched against."""

    def by_identifier(self, ean: str) -> Sequence[ResolvedProduct]: ...

    def by_reference(self, reference: str, origin: str | None) -> Sequence[ResolvedProduct]: ...

    def fuzzy_candidates(self, limit: int) -> Sequence[ResolvedProduct]: ...

"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ProductDomain(StrEnum):
    SUPPLIER_PRODUCT = "supplier_product"
    CATALOG_ANALYSIS = "catalog_analysis"
    MARKETPLACE_LISTING = "marketplace_listing"

    @property
    def rank(self) -> int:
        """Ordering used to store link pairs canonically (supplier first)."""
        return _DOMAIN_RANK[self]


_DOMAIN_RANK: dict[ProductDomain, int] = {
    ProductDomain.SUPPLIER_PRODUCT: 0,
    ProductDomain.CATALOG_ANALYSIS: 1,
    ProductDomain.MARKETPLACE_LISTING: 2,
}


class MatchStrategyKind(StrEnum):
    EXACT = "exact"
    REFERENCE = "reference"
    LEXICAL = "lexical"
    SEMANTIC = "semantic"
    # candidate had no match and was promoted into a new target product
    PROMOTED = "promoted"


class LinkOutcomeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class IngestionPolicy(StrEnum):
    STRICT = "strict"
    SUGGESTION = "suggestion"


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is JobStatus.COMPLETED

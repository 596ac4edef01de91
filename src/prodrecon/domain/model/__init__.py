"""Domain model: products, links, jobs and their value types."""

from __future__ import annotations

from .entity import Entity, new_id, utcnow
from .enums import (
    IngestionPolicy,
    JobStatus,
    LinkOutcomeKind,
    MatchStrategyKind,
    ProductDomain,
    SuggestionStatus,
)
from .events import PriceChangeEvent
from .jobs import CLAIMABLE_STATUSES, MAX_ERROR_SAMPLES, IngestionJob, JobCheckpoint, JobCounts
from .links import (
    SUPPLIER_CATALOG_KIND,
    LinkEdge,
    LinkSuggestion,
    UnlinkedPair,
    canonical_pair,
    link_kind,
)
from .primitives import is_valid_gtin, normalize_gtin, parse_gtin, parse_price, price_change_percent
from .product import ResolvedProduct, stable_product_id
from .tenancy import TenantContext

__all__ = [
    "CLAIMABLE_STATUSES",
    "MAX_ERROR_SAMPLES",
    "SUPPLIER_CATALOG_KIND",
    "Entity",
    "IngestionJob",
    "IngestionPolicy",
    "JobCheckpoint",
    "JobCounts",
    "JobStatus",
    "LinkEdge",
    "LinkOutcomeKind",
    "LinkSuggestion",
    "MatchStrategyKind",
    "PriceChangeEvent",
    "ProductDomain",
    "ResolvedProduct",
    "SuggestionStatus",
    "TenantContext",
    "UnlinkedPair",
    "canonical_pair",
    "is_valid_gtin",
    "link_kind",
    "new_id",
    "normalize_gtin",
    "parse_gtin",
    "parse_price",
    "price_change_percent",
    "stable_product_id",
    "utcnow",
]

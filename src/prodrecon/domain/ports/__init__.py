"""Domain ports (protocols) implemented by adapters."""

from __future__ import annotations

from .alerts import AlertSink
from .fetching import RowSource, SourcePage, SourceRow
from .persistence import (
    JobRepository,
    LinkRepository,
    ProductRepository,
    Repository,
    SuggestionRepository,
    UnlinkRepository,
    UpsertResult,
)
from .semantic import SemanticMatcher
from .unit_of_work import (
    ReconciliationRepositories,
    ReconciliationUnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    "AlertSink",
    "JobRepository",
    "LinkRepository",
    "ProductRepository",
    "ReconciliationRepositories",
    "ReconciliationUnitOfWork",
    "Repository",
    "RowSource",
    "SemanticMatcher",
    "SourcePage",
    "SourceRow",
    "SuggestionRepository",
    "UnitOfWorkFactory",
    "UnlinkRepository",
    "UpsertResult",
]

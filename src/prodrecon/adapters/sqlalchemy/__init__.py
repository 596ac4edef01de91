"""SQLAlchemy adapter package for prodrecon."""

from __future__ import annotations

from .mappings import mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyJobRepository,
    SqlAlchemyLinkRepository,
    SqlAlchemyProductRepository,
    SqlAlchemySuggestionRepository,
    SqlAlchemyUnlinkRepository,
)
from .unit_of_work import SqlAlchemyUnitOfWork, is_started, shutdown, startup

__all__ = [
    "SqlAlchemyJobRepository",
    "SqlAlchemyLinkRepository",
    "SqlAlchemyProductRepository",
    "SqlAlchemySuggestionRepository",
    "SqlAlchemyUnitOfWork",
    "SqlAlchemyUnlinkRepository",
    "is_started",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]

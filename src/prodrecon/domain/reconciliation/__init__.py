"""Product reconciliation: normalization, matcher cascade and link graph."""

from __future__ import annotations

from .cascade import MatcherCascade
from .catalog import InMemoryCatalogView, RepositoryCatalogView
from .contracts import (
    BatchConfirmResult,
    CandidateRecord,
    CatalogView,
    ConfirmItemOutcome,
    LinkOutcome,
    MatchResult,
    NoMatch,
    Resolution,
    StrategyAttempt,
)
from .links import LinkGraphManager
from .normalize import (
    CandidateField,
    ColumnMapping,
    MappedField,
    RowNormalizer,
    UnmappedColumn,
    detect_header_row,
    match_text,
    suggest_column_mapping,
)
from .strategies import (
    ExactIdentifierStrategy,
    LexicalStrategy,
    MatchStrategy,
    ReferenceStrategy,
    SemanticStrategy,
    default_strategies,
    lexical_confidence,
)

__all__ = [
    "BatchConfirmResult",
    "CandidateField",
    "CandidateRecord",
    "CatalogView",
    "ColumnMapping",
    "ConfirmItemOutcome",
    "ExactIdentifierStrategy",
    "InMemoryCatalogView",
    "LexicalStrategy",
    "LinkGraphManager",
    "LinkOutcome",
    "MappedField",
    "MatchResult",
    "MatchStrategy",
    "MatcherCascade",
    "NoMatch",
    "ReferenceStrategy",
    "RepositoryCatalogView",
    "Resolution",
    "RowNormalizer",
    "SemanticStrategy",
    "StrategyAttempt",
    "UnmappedColumn",
    "default_strategies",
    "detect_header_row",
    "lexical_confidence",
    "match_text",
    "suggest_column_mapping",
]

"""Ordered matcher cascade."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import takewhile
from typing import TYPE_CHECKING

from .contracts import MatchResult, NoMatch
from .strategies import DEFAULT_FUZZY_SCAN_LIMIT, SemanticStrategy, default_strategies

if TYPE_CHECKING:
    from collections.abc import Sequence

    from prodrecon.domain.ports.semantic import SemanticMatcher

    from .contracts import CandidateRecord, CatalogView, Resolution
    from .strategies import MatchStrategy

log = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MatcherCascade:
    """Run strategies in order and stop at the first attempt reaching its floor.

    The first three default strategies are pure, so for a fixed candidate and
    catalog snapshot the result is deterministic.
    """

    strategies: Sequence[MatchStrategy]

    @classmethod
    def default(
        cls,
        *,
        scan_limit: int = DEFAULT_FUZZY_SCAN_LIMIT,
        semantic: SemanticMatcher | None = None,
    ) -> MatcherCascade:
        return cls(strategies=default_strategies(scan_limit=scan_limit, semantic=semantic))

    def resolve(
        self,
        candidate: CandidateRecord,
        catalog: CatalogView,
        threshold: int,
    ) -> Resolution:
        for strategy in self.strategies:
            attempt = strategy.attempt(candidate, catalog)
            if attempt is None:
                continue
            floor = strategy.floor(threshold)
            if attempt.confidence >= floor:
                log.debug(
                    "Matched %s via %s (confidence=%s)",
                    candidate.source_ref,
                    attempt.strategy,
                    attempt.confidence,
                )
                return MatchResult(
                    target=attempt.target,
                    strategy=attempt.strategy,
                    confidence=attempt.confidence,
                )
            log.debug(
                "%s attempt for %s below floor (%s < %s)",
                attempt.strategy,
                candidate.source_ref,
                attempt.confidence,
                floor,
            )
        return NoMatch()

    @property
    def is_remote(self) -> bool:
        """Whether any strategy calls out of process."""

        return any(isinstance(strategy, SemanticStrategy) for strategy in self.strategies)

    @property
    def remote_scan_limit(self) -> int:
        return max(
            (s.scan_limit for s in self.strategies if isinstance(s, SemanticStrategy)), default=0
        )

    def unresolved_locally(
        self,
        candidates: Sequence[CandidateRecord],
        catalog: CatalogView,
        threshold: int,
    ) -> list[CandidateRecord]:
        """Candidates that no strategy ahead of the first remote one can match."""

        local = MatcherCascade(
            strategies=tuple(
                takewhile(lambda s: not isinstance(s, SemanticStrategy), self.strategies)
            )
        )
        return [
            candidate
            for candidate in candidates
            if isinstance(local.resolve(candidate, catalog, threshold), NoMatch)
        ]

    def with_remote_scores(
        self, candidates: Sequence[CandidateRecord], catalog: CatalogView
    ) -> MatcherCascade:
        """Copy whose remote strategies answer from scores fetched now for ``candidates``."""

        return MatcherCascade(
            strategies=tuple(
                strategy.prefetch(candidates, catalog)
                if isinstance(strategy, SemanticStrategy)
                else strategy
                for strategy in self.strategies
            )
        )

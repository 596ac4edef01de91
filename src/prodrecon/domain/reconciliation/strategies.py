"""Match strategies tried in order by the cascade.

Each strategy returns its best ``StrategyAttempt`` for a candidate (or ``None``)
and declares the floor its confidence must reach for the cascade to stop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

from rapidfuzz.distance import Levenshtein

from prodrecon.domain.errors import InvalidIdentifierError
from prodrecon.domain.model import MatchStrategyKind, parse_gtin

from .contracts import StrategyAttempt
from .normalize import match_text

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from prodrecon.domain.model import ResolvedProduct
    from prodrecon.domain.ports.semantic import SemanticMatcher

    from .contracts import CandidateRecord, CatalogView

log = logging.getLogger(__name__)

EXACT_CONFIDENCE: Final[int] = 100
REFERENCE_CONFIDENCE: Final[int] = 95
DEFAULT_FUZZY_SCAN_LIMIT: Final[int] = 5000


@runtime_checkable
class MatchStrategy(Protocol):
    name: MatchStrategyKind

    def floor(self, threshold: int) -> int: ...

    def attempt(
        self, candidate: CandidateRecord, catalog: CatalogView
    ) -> StrategyAttempt | None: ...


def recency_key(product: ResolvedProduct) -> tuple[float, str]:
    # most recently updated first, then lowest id
    return (-product.updated_at.timestamp(), str(product.id))


def pick_most_recent(products: Iterable[ResolvedProduct]) -> ResolvedProduct | None:
    ordered = sorted(products, key=recency_key)
    return ordered[0] if ordered else None


@dataclass(slots=True, frozen=True)
class ExactIdentifierStrategy:
    """GTIN equality after zero-padding; invalid check digits never match."""

    name: MatchStrategyKind = MatchStrategyKind.EXACT

    def floor(self, threshold: int) -> int:
        _ = threshold
        return EXACT_CONFIDENCE

    def attempt(self, candidate: CandidateRecord, catalog: CatalogView) -> StrategyAttempt | None:
        if not candidate.identifier_ean:
            return None
        try:
            gtin = parse_gtin(candidate.identifier_ean)
        except InvalidIdentifierError as exc:
            log.debug("Exact strategy skipped for %s: %s", candidate.source_ref, exc)
            return None
        target = pick_most_recent(catalog.by_identifier(gtin))
        if target is None:
            return None
        return StrategyAttempt(strategy=self.name, target=target, confidence=EXACT_CONFIDENCE)


@dataclass(slots=True, frozen=True)
class ReferenceStrategy:
    """Reference code equality within the same origin."""

    name: MatchStrategyKind = MatchStrategyKind.REFERENCE

    def floor(self, threshold: int) -> int:
        _ = threshold
        return REFERENCE_CONFIDENCE

    def attempt(self, candidate: CandidateRecord, catalog: CatalogView) -> StrategyAttempt | None:
        if not candidate.identifier_code:
            return None
        target = pick_most_recent(catalog.by_reference(candidate.identifier_code, candidate.origin))
        if target is None:
            return None
        return StrategyAttempt(strategy=self.name, target=target, confidence=REFERENCE_CONFIDENCE)


def lexical_confidence(left: str, right: str) -> int:
    """``floor(100 * (maxlen - distance) / maxlen)`` over Levenshtein distance."""

    longest = max(len(left), len(right))
    if longest == 0:
        return 0
    distance = Levenshtein.distance(left, right)
    return (100 * (longest - distance)) // longest


@dataclass(slots=True, frozen=True)
class LexicalStrategy:
    """Best Levenshtein similarity over a bounded page of the catalog."""

    scan_limit: int = DEFAULT_FUZZY_SCAN_LIMIT
    name: MatchStrategyKind = MatchStrategyKind.LEXICAL

    def floor(self, threshold: int) -> int:
        return threshold

    def attempt(self, candidate: CandidateRecord, catalog: CatalogView) -> StrategyAttempt | None:
        text = match_text(candidate.name, candidate.brand)
        if not text:
            return None
        best: ResolvedProduct | None = None
        best_score = -1
        for product in catalog.fuzzy_candidates(self.scan_limit):
            score = lexical_confidence(text, match_text(product.name, product.brand))
            if score > best_score or (
                score == best_score
                and best is not None
                and recency_key(product) < recency_key(best)
            ):
                best, best_score = product, score
        if best is None:
            return None
        return StrategyAttempt(strategy=self.name, target=best, confidence=best_score)


type ScoredPairs = Mapping[tuple[str, str], int | None]


@dataclass(slots=True, frozen=True)
class SemanticStrategy:
    """Ask an external collaborator to score pairs; failures mean "no score".

    ``prefetch`` returns a copy that answers from scores gathered up front, so
    the remote calls can happen before a write transaction is opened. A
    prefetched copy never calls the collaborator; unknown pairs have no score.
    """

    matcher: SemanticMatcher
    scan_limit: int = 50
    min_score: int | None = None
    scores: ScoredPairs | None = None
    name: MatchStrategyKind = MatchStrategyKind.SEMANTIC

    def floor(self, threshold: int) -> int:
        return threshold if self.min_score is None else self.min_score

    def attempt(self, candidate: CandidateRecord, catalog: CatalogView) -> StrategyAttempt | None:
        text = _describe(candidate.name, candidate.brand)
        best: ResolvedProduct | None = None
        best_score = -1
        for product in catalog.fuzzy_candidates(self.scan_limit):
            other = _describe(product.name, product.brand)
            if self.scores is not None:
                score = self.scores.get((text, other))
            else:
                score = self._compare(text, other)
            if score is not None and score > best_score:
                best, best_score = product, score
        if best is None:
            return None
        confidence = max(0, min(best_score, 100))
        return StrategyAttempt(strategy=self.name, target=best, confidence=confidence)

    def prefetch(
        self, candidates: Sequence[CandidateRecord], catalog: CatalogView
    ) -> SemanticStrategy:
        scores: dict[tuple[str, str], int | None] = {}
        products = catalog.fuzzy_candidates(self.scan_limit)
        for candidate in candidates:
            text = _describe(candidate.name, candidate.brand)
            for product in products:
                key = (text, _describe(product.name, product.brand))
                if key not in scores:
                    scores[key] = self._compare(*key)
        log.debug(
            "Prefetched %s semantic scores for %s candidates", len(scores), len(candidates)
        )
        return replace(self, scores=scores)

    def _compare(self, text: str, other: str) -> int | None:
        try:
            return self.matcher.compare(text, other)
        except Exception:  # noqa: BLE001
            log.warning(
                "Semantic comparison failed for %r vs %r; treating as no score",
                text,
                other,
                exc_info=True,
            )
            return None


def _describe(name: str, brand: str | None) -> str:
    return f"{brand} {name}".strip() if brand else name


def default_strategies(
    *,
    scan_limit: int = DEFAULT_FUZZY_SCAN_LIMIT,
    semantic: SemanticMatcher | None = None,
) -> tuple[MatchStrategy, ...]:
    strategies: list[MatchStrategy] = [
        ExactIdentifierStrategy(),
        ReferenceStrategy(),
        LexicalStrategy(scan_limit=scan_limit),
    ]
    if semantic is not None:
        strategies.append(SemanticStrategy(matcher=semantic))
    return tuple(strategies)

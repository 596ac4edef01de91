from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from prodrecon.domain.errors import TransientSourceError
from prodrecon.domain.model import MatchStrategyKind, ProductDomain
from prodrecon.domain.reconciliation import (
    CandidateRecord,
    ExactIdentifierStrategy,
    InMemoryCatalogView,
    LexicalStrategy,
    ReferenceStrategy,
    SemanticStrategy,
    lexical_confidence,
    match_text,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from prodrecon.domain.model import ResolvedProduct


def candidate(
    name: str,
    *,
    ean: str | None = None,
    reference: str = "SUP-1",
    brand: str | None = None,
    origin: str | None = None,
) -> CandidateRecord:
    return CandidateRecord(
        source_kind=ProductDomain.SUPPLIER_PRODUCT,
        source_ref=reference,
        name=name,
        brand=brand,
        identifier_ean=ean,
        identifier_code=reference,
        origin=origin,
    )


class ScriptedMatcher:
    def __init__(self, scores: dict[str, int | Exception]) -> None:
        self.scores = scores
        self.calls: list[tuple[str, str]] = []

    def compare(self, text_a: str, text_b: str) -> int:
        self.calls.append((text_a, text_b))
        outcome = self.scores[text_b]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_exact_strategy_matches_zero_padded_gtin(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    target = make_product("Widget A", ean="04006381333931")
    catalog = InMemoryCatalogView([make_product("Other"), target])

    attempt = ExactIdentifierStrategy().attempt(candidate("Widget A", ean="4006381333931"), catalog)

    assert attempt is not None
    assert attempt.target is target
    assert attempt.strategy is MatchStrategyKind.EXACT
    assert attempt.confidence == 100


def test_exact_strategy_ignores_invalid_check_digit(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    catalog = InMemoryCatalogView([make_product("Widget A", ean="04006381333932")])

    attempt = ExactIdentifierStrategy().attempt(candidate("Widget A", ean="4006381333932"), catalog)

    assert attempt is None


def test_exact_strategy_prefers_most_recent_duplicate(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    older = make_product("Widget A", ean="04006381333931", age_minutes=30)
    newer = make_product("Widget A", ean="04006381333931", age_minutes=1)
    catalog = InMemoryCatalogView([older, newer])

    attempt = ExactIdentifierStrategy().attempt(candidate("Widget A", ean="4006381333931"), catalog)

    assert attempt is not None
    assert attempt.target is newer


def test_reference_strategy_is_scoped_to_origin(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    target = make_product("Widget", reference="W-1", origin="acme")
    catalog = InMemoryCatalogView([target])
    strategy = ReferenceStrategy()

    hit = strategy.attempt(candidate("Widget", reference="W-1", origin="acme"), catalog)
    miss = strategy.attempt(candidate("Widget", reference="W-1", origin="globex"), catalog)

    assert hit is not None
    assert hit.target is target
    assert hit.confidence == 95
    assert miss is None


def test_lexical_confidence_uses_levenshtein_ratio() -> None:
    left = match_text("Widget Pro Max", "Acme")
    right = match_text("Acme Widget Pro Max 2024", "Acme")

    assert lexical_confidence(left, right) == 79
    assert lexical_confidence("same", "same") == 100
    assert lexical_confidence("", "") == 0


def test_lexical_strategy_picks_best_score(make_product: Callable[..., ResolvedProduct]) -> None:
    best = make_product("Acme Widget Pro Max 2024", brand="Acme")
    catalog = InMemoryCatalogView([make_product("Garden Hose 20m"), best])

    attempt = LexicalStrategy().attempt(candidate("Widget Pro Max", brand="Acme"), catalog)

    assert attempt is not None
    assert attempt.target is best
    assert attempt.confidence == 79


def test_lexical_strategy_breaks_ties_by_recency(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    older = make_product("Acme Widget", age_minutes=60)
    newer = make_product("Acme Widget", age_minutes=5)
    catalog = InMemoryCatalogView([older, newer])

    attempt = LexicalStrategy().attempt(candidate("Acme Widget"), catalog)

    assert attempt is not None
    assert attempt.target is newer
    assert attempt.confidence == 100


def test_lexical_strategy_honours_scan_limit(make_product: Callable[..., ResolvedProduct]) -> None:
    recent = make_product("Garden Hose", age_minutes=1)
    stale = make_product("Acme Widget", age_minutes=500)
    catalog = InMemoryCatalogView([stale, recent])

    attempt = LexicalStrategy(scan_limit=1).attempt(candidate("Acme Widget"), catalog)

    assert attempt is not None
    assert attempt.target is recent


def test_semantic_strategy_treats_failures_as_no_score(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    flaky = make_product("Widget Deluxe", age_minutes=1)
    steady = make_product("Widget Standard", age_minutes=2)
    matcher = ScriptedMatcher(
        {"Widget Deluxe": TransientSourceError("timeout"), "Widget Standard": 88}
    )
    catalog = InMemoryCatalogView([flaky, steady])

    attempt = SemanticStrategy(matcher=matcher).attempt(candidate("Widget"), catalog)

    assert attempt is not None
    assert attempt.target is steady
    assert attempt.confidence == 88
    assert len(matcher.calls) == 2


def test_semantic_strategy_returns_none_when_every_call_fails(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    matcher = ScriptedMatcher({"Widget": TransientSourceError("down")})
    catalog = InMemoryCatalogView([make_product("Widget")])

    assert SemanticStrategy(matcher=matcher).attempt(candidate("Widget"), catalog) is None


def test_prefetched_semantic_strategy_answers_without_calling_out(
    make_product: Callable[..., ResolvedProduct],
) -> None:
    deluxe = make_product("Widget Deluxe", age_minutes=1)
    standard = make_product("Widget Standard", age_minutes=2)
    matcher = ScriptedMatcher(
        {"Widget Deluxe": TransientSourceError("timeout"), "Widget Standard": 88}
    )
    catalog = InMemoryCatalogView([deluxe, standard])

    prefetched = SemanticStrategy(matcher=matcher).prefetch(
        [candidate("Widget"), candidate("Widget", reference="SUP-2")], catalog
    )
    assert len(matcher.calls) == 2
    assert prefetched.scores == {
        ("Widget", "Widget Deluxe"): None,
        ("Widget", "Widget Standard"): 88,
    }

    attempt = prefetched.attempt(candidate("Widget"), catalog)
    unknown = prefetched.attempt(candidate("Gadget"), catalog)

    assert attempt is not None
    assert attempt.target is standard
    assert attempt.confidence == 88
    assert unknown is None
    assert len(matcher.calls) == 2



@pytest.mark.parametrize(
    ("strategy", "threshold", "floor"),
    [
        (ExactIdentifierStrategy(), 80, 100),
        (ReferenceStrategy(), 80, 95),
        (LexicalStrategy(), 80, 80),
        (SemanticStrategy(matcher=ScriptedMatcher({})), 80, 80),
        (SemanticStrategy(matcher=ScriptedMatcher({}), min_score=90), 80, 90),
    ],
)
def test_strategy_floors(strategy: object, threshold: int, floor: int) -> None:
    assert strategy.floor(threshold) == floor  # type: ignore[attr-defined]

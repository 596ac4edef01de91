"""Port for the optional semantic-similarity collaborator."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SemanticMatcher(Protocol):
    def compare(self, text_a: str, text_b: str) -> int:
        """Similarity between two product descriptions, 0..100."""
        ...

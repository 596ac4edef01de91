"""Ports for pulling source rows in bounded pages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

type SourceRow = Mapping[str, object]


@dataclass(slots=True, frozen=True)
class SourcePage:
    """One page of rows; ``next_offset`` wins over ``offset + limit`` when given."""

    rows: Sequence[SourceRow] = field(default_factory=tuple)
    has_more: bool = False
    total_count: int | None = None
    next_offset: int | None = None


@runtime_checkable
class RowSource(Protocol):
    """Paged access to a bulk source.

    Implementations raise ``TransientSourceError`` for network failures and
    timeouts; anything else is a programming or configuration error.
    """

    def fetch_page(self, offset: int, limit: int) -> SourcePage: ...


__all__ = ["RowSource", "SourcePage", "SourceRow"]

"""Port for price-change alert delivery."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from prodrecon.domain.model import PriceChangeEvent


@runtime_checkable
class AlertSink(Protocol):
    def emit(self, event: PriceChangeEvent) -> None: ...

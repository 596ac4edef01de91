"""Derived events emitted by the link graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prodrecon.domain.model.entity import utcnow

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal
    from uuid import UUID

    from prodrecon.domain.model.enums import ProductDomain


@dataclass(frozen=True, slots=True, kw_only=True)
class PriceChangeEvent:
    tenant_id: str
    product_id: UUID
    domain: ProductDomain
    old_price: Decimal
    new_price: Decimal
    change_percent: Decimal
    link_id: UUID | None = None
    occurred_at: datetime = field(default_factory=utcnow)

"""Resolved product nodes of the link graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import NAMESPACE_URL, UUID, uuid5

from prodrecon.domain.model.entity import Entity, utcnow

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from prodrecon.domain.model.enums import ProductDomain


def stable_product_id(
    tenant_id: str,
    domain: ProductDomain,
    origin: str | None,
    reference: str,
) -> UUID:
    """Deterministic id for a product addressed by (origin, reference)."""

    return uuid5(NAMESPACE_URL, f"prodrecon:{tenant_id}:{domain}:{origin or ''}:{reference}")


@dataclass(eq=False, kw_only=True)
class ResolvedProduct(Entity):
    """One real-world product as seen by one domain (supplier, catalog, marketplace)."""

    tenant_id: str
    domain: ProductDomain
    name: str
    brand: str | None = None
    ean: str | None = None
    reference: str | None = None
    origin: str | None = None
    price: Decimal | None = None
    stock: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def update_price(self, price: Decimal | None, *, at: datetime | None = None) -> Decimal | None:
        """Set a new price and return the previous one; ``None`` prices are ignored."""

        previous = self.price
        if price is None or price == previous:
            return previous
        self.price = price
        self.updated_at = at or utcnow()
        return previous

    def update_stock(self, stock: int | None, *, at: datetime | None = None) -> None:
        if stock is None or stock == self.stock:
            return
        self.stock = stock
        self.updated_at = at or utcnow()

"""``CatalogView`` implementations: in-memory snapshots and repository-backed views."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .strategies import recency_key

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from prodrecon.domain.model import ProductDomain, ResolvedProduct, TenantContext
    from prodrecon.domain.ports.persistence import ProductRepository


def _recent_first(products: Iterable[ResolvedProduct]) -> list[ResolvedProduct]:
    return sorted(products, key=recency_key)


@dataclass(slots=True)
class InMemoryCatalogView:
    """Snapshot of target products, mostly for pure matching and tests."""

    products: list[ResolvedProduct] = field(default_factory=list)

    def by_identifier(self, ean: str) -> Sequence[ResolvedProduct]:
        return [product for product in self.products if product.ean == ean]

    def by_reference(self, reference: str, origin: str | None) -> Sequence[ResolvedProduct]:
        return [
            product
            for product in self.products
            if product.reference == reference and product.origin == origin
        ]

    def fuzzy_candidates(self, limit: int) -> Sequence[ResolvedProduct]:
        return _recent_first(self.products)[:limit]

    def remember(self, product: ResolvedProduct) -> None:
        self.products.append(product)


@dataclass(slots=True)
class RepositoryCatalogView:
    """Tenant- and domain-scoped view over the product repository.

    The fuzzy-scan page is loaded once per view; products created while the view
    is alive are added through ``remember``.
    """

    products: ProductRepository
    tenant: TenantContext
    domain: ProductDomain
    _fuzzy: list[ResolvedProduct] | None = field(default=None, repr=False)
    _fuzzy_limit: int = field(default=0, repr=False)

    def by_identifier(self, ean: str) -> Sequence[ResolvedProduct]:
        return self.products.find_by_identifier(self.tenant, self.domain, ean)

    def by_reference(self, reference: str, origin: str | None) -> Sequence[ResolvedProduct]:
        return self.products.find_by_reference(self.tenant, self.domain, reference, origin)

    def fuzzy_candidates(self, limit: int) -> Sequence[ResolvedProduct]:
        if self._fuzzy is None or self._fuzzy_limit < limit:
            self._fuzzy = self.products.fuzzy_candidates(self.tenant, self.domain, limit)
            self._fuzzy_limit = limit
        return self._fuzzy[:limit]

    def remember(self, product: ResolvedProduct) -> None:
        if self._fuzzy is not None and product.domain == self.domain:
            self._fuzzy = _recent_first([*self._fuzzy, product])


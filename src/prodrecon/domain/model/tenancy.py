"""Explicit tenant scoping passed into every engine call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from prodrecon.domain.errors import TenantMismatchError


class TenantOwned(Protocol):
    @property
    def tenant_id(self) -> str: ...


@dataclass(frozen=True, slots=True)
class TenantContext:
    tenant_id: str

    def __post_init__(self) -> None:
        if not self.tenant_id or not self.tenant_id.strip():
            raise ValueError("tenant_id must be a non-empty string")

    def require_owns(self, *items: TenantOwned) -> None:
        """Raise ``TenantMismatchError`` unless every item belongs to this tenant."""

        for item in items:
            if item.tenant_id != self.tenant_id:
                raise TenantMismatchError(
                    f"{type(item).__name__} belongs to another tenant than {self.tenant_id!r}"
                )

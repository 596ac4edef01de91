"""Transaction boundary shared by the link graph services and the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractContextManager
    from types import TracebackType

    from prodrecon.domain.ports.persistence import (
        JobRepository,
        LinkRepository,
        ProductRepository,
        SuggestionRepository,
        UnlinkRepository,
    )


@dataclass(slots=True, frozen=True)
class ReconciliationRepositories:
    products: ProductRepository
    links: LinkRepository
    suggestions: SuggestionRepository
    unlinks: UnlinkRepository
    jobs: JobRepository


@runtime_checkable
class ReconciliationUnitOfWork(Protocol):
    """One transaction over all repositories; used as a ``with`` block.

    An exception leaving the block rolls back. Nothing is committed implicitly.
    """

    @property
    def repositories(self) -> ReconciliationRepositories: ...

    def __enter__(self) -> ReconciliationUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def savepoint(self) -> AbstractContextManager[object]:
        """Nested transaction; an exception inside rolls back only the nested work."""
        ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class UnitOfWorkFactory(Protocol):
    """Opens units of work; ``read_only`` ones never take the database write lock."""

    def __call__(self, *, read_only: bool = False) -> ReconciliationUnitOfWork: ...

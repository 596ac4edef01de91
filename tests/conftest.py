from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from prodrecon.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, shutdown, startup
from prodrecon.domain.model import ProductDomain, ResolvedProduct, TenantContext
from prodrecon.domain.ports import SourcePage

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence
    from pathlib import Path

    from sqlalchemy.engine import Engine

    from prodrecon.domain.model import IngestionJob

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def file_engine(tmp_path: Path) -> Iterator[Engine]:
    # threads need a shared file database; in-memory SQLite is per connection
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'prodrecon.db'}", future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(sqlite_engine: Engine) -> Iterator[Callable[[], SqlAlchemyUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def file_unit_of_work(file_engine: Engine) -> Iterator[Callable[[], SqlAlchemyUnitOfWork]]:
    startup(engine=file_engine, force=True)
    try:
        yield SqlAlchemyUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext("tenant-a")


@pytest.fixture
def other_tenant() -> TenantContext:
    return TenantContext("tenant-b")


@pytest.fixture
def make_product() -> Callable[..., ResolvedProduct]:
    def factory(
        name: str,
        *,
        tenant_id: str = "tenant-a",
        domain: ProductDomain = ProductDomain.CATALOG_ANALYSIS,
        ean: str | None = None,
        reference: str | None = None,
        origin: str | None = None,
        price: str | None = None,
        brand: str | None = None,
        age_minutes: int = 0,
    ) -> ResolvedProduct:
        stamp = BASE_TIME - timedelta(minutes=age_minutes)
        return ResolvedProduct(
            tenant_id=tenant_id,
            domain=domain,
            name=name,
            brand=brand,
            ean=ean,
            reference=reference,
            origin=origin,
            price=Decimal(price) if price is not None else None,
            created_at=stamp,
            updated_at=stamp,
        )

    return factory


class ListRowSource:
    """In-memory ``RowSource`` that records the offsets it was asked for."""

    def __init__(
        self,
        rows: Sequence[Mapping[str, object]],
        *,
        fail_at: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.rows = list(rows)
        self.fail_at = fail_at
        self.error = error
        self.requests: list[tuple[int, int]] = []

    def fetch_page(self, offset: int, limit: int) -> SourcePage:
        self.requests.append((offset, limit))
        if self.fail_at is not None and offset >= self.fail_at and self.error is not None:
            raise self.error
        page = self.rows[offset : offset + limit]
        end = offset + len(page)
        return SourcePage(
            rows=tuple(page),
            has_more=end < len(self.rows),
            total_count=len(self.rows),
            next_offset=end,
        )


@pytest.fixture
def list_source() -> Callable[..., ListRowSource]:
    return ListRowSource


@pytest.fixture
def source_factory_for() -> Callable[[ListRowSource], Callable[[IngestionJob], ListRowSource]]:
    def build(source: ListRowSource) -> Callable[[IngestionJob], ListRowSource]:
        def factory(job: IngestionJob) -> ListRowSource:
            _ = job
            return source

        return factory

    return build

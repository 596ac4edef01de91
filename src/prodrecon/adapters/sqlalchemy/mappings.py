"""SQLAlchemy mapping metadata for the reconciliation domain model."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from functools import cache

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.orm import configure_mappers

from prodrecon.domain.model import (
    SUPPLIER_CATALOG_KIND,
    IngestionJob,
    IngestionPolicy,
    JobCheckpoint,
    JobStatus,
    LinkEdge,
    LinkSuggestion,
    MatchStrategyKind,
    ProductDomain,
    ResolvedProduct,
    SuggestionStatus,
    UnlinkedPair,
)

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class DecimalText(TypeDecorator[Decimal]):
    """Exact decimal prices stored as text, identical on every backend."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> Decimal | None:
        _ = dialect
        if value is None:
            return None
        try:
            return Decimal(value)
        except InvalidOperation:
            log.warning("Discarding malformed stored price %r", value)
            return None


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Link graph ------------------------------------------------------------------

resolved_product_table = Table(
    "resolved_product",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String(64), nullable=False),
    Column("domain", Enum(ProductDomain, native_enum=False), nullable=False),
    Column("name", String, nullable=False),
    Column("brand", String, nullable=True),
    Column("ean", String(14), nullable=True),
    Column("reference", String, nullable=True),
    Column("origin", String, nullable=True),
    Column("price", DecimalText(), nullable=True),
    Column("stock", Integer, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Index("ix_resolved_product_ean", "tenant_id", "domain", "ean"),
    Index("ix_resolved_product_reference", "tenant_id", "domain", "reference", "origin"),
    Index("ix_resolved_product_recent", "tenant_id", "domain", "updated_at"),
)

link_edge_table = Table(
    "link_edge",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String(64), nullable=False),
    Column("left_id", UUIDColumnType, ForeignKey("resolved_product.id"), nullable=False),
    Column("right_id", UUIDColumnType, ForeignKey("resolved_product.id"), nullable=False),
    Column("kind", String(64), nullable=False),
    Column("strategy", Enum(MatchStrategyKind, native_enum=False), nullable=False),
    Column("confidence", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    UniqueConstraint("tenant_id", "left_id", "right_id", name="uq_link_edge_pair"),
    CheckConstraint("confidence BETWEEN 0 AND 100", name="confidence_range"),
    CheckConstraint("left_id <> right_id", name="no_self_link"),
)

# a supplier product links to at most one catalog analysis
link_edge_exclusive_index = Index(
    "uq_link_edge_supplier_catalog",
    link_edge_table.c.tenant_id,
    link_edge_table.c.left_id,
    unique=True,
    sqlite_where=link_edge_table.c.kind == SUPPLIER_CATALOG_KIND,
    postgresql_where=link_edge_table.c.kind == SUPPLIER_CATALOG_KIND,
)

link_suggestion_table = Table(
    "link_suggestion",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String(64), nullable=False),
    Column("job_id", UUIDColumnType, ForeignKey("ingestion_job.id"), nullable=True),
    Column("left_id", UUIDColumnType, ForeignKey("resolved_product.id"), nullable=False),
    Column("right_id", UUIDColumnType, ForeignKey("resolved_product.id"), nullable=False),
    Column("target_id", UUIDColumnType, nullable=False),
    Column("strategy", Enum(MatchStrategyKind, native_enum=False), nullable=False),
    Column("confidence", Integer, nullable=False),
    Column("proposed_price", DecimalText(), nullable=True),
    Column("status", Enum(SuggestionStatus, native_enum=False), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("resolved_at", UTCDateTime(), nullable=True),
    UniqueConstraint("tenant_id", "left_id", "right_id", name="uq_link_suggestion_pair"),
)

unlinked_pair_table = Table(
    "unlinked_pair",
    mapper_registry.metadata,
    Column("tenant_id", String(64), primary_key=True),
    Column("left_id", UUIDColumnType, primary_key=True),
    Column("right_id", UUIDColumnType, primary_key=True),
    Column("unlinked_at", UTCDateTime(), nullable=False),
)

# Ingestion jobs --------------------------------------------------------------

ingestion_job_table = Table(
    "ingestion_job",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("source", Text, nullable=False),
    Column("policy", Enum(IngestionPolicy, native_enum=False), nullable=False),
    Column("chunk_size", Integer, nullable=False),
    Column("source_domain", Enum(ProductDomain, native_enum=False), nullable=False),
    Column("target_domain", Enum(ProductDomain, native_enum=False), nullable=False),
    Column("origin", String, nullable=True),
    Column("column_mapping", JSON, nullable=True),
    Column("status", Enum(JobStatus, native_enum=False), nullable=False),
    Column("pause_requested", Boolean, nullable=False, default=False),
    Column("claim_token", UUIDColumnType, nullable=True),
    Column("heartbeat_at", UTCDateTime(), nullable=True),
    Column("source_offset", Integer, nullable=False, default=0),
    Column("total_count", Integer, nullable=True),
    Column("chunks_committed", Integer, nullable=False, default=0),
    Column("seen", Integer, nullable=False, default=0),
    Column("matched", Integer, nullable=False, default=0),
    Column("created", Integer, nullable=False, default=0),
    Column("skipped", Integer, nullable=False, default=0),
    Column("errored", Integer, nullable=False, default=0),
    Column("last_error", Text, nullable=True),
    Column("error_samples", JSON, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("started_at", UTCDateTime(), nullable=True),
    Column("updated_at", UTCDateTime(), nullable=False),
    Column("finished_at", UTCDateTime(), nullable=True),
)

job_checkpoint_table = Table(
    "job_checkpoint",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("job_id", UUIDColumnType, ForeignKey("ingestion_job.id"), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("source_offset", Integer, nullable=False),
    Column("seen", Integer, nullable=False),
    Column("matched", Integer, nullable=False),
    Column("created", Integer, nullable=False),
    Column("skipped", Integer, nullable=False),
    Column("errored", Integer, nullable=False),
    Column("committed_at", UTCDateTime(), nullable=False),
    UniqueConstraint("job_id", "sequence", name="uq_job_checkpoint_sequence"),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(ResolvedProduct, resolved_product_table)
    mapper_registry.map_imperatively(LinkEdge, link_edge_table)
    mapper_registry.map_imperatively(LinkSuggestion, link_suggestion_table)
    mapper_registry.map_imperatively(UnlinkedPair, unlinked_pair_table)
    mapper_registry.map_imperatively(IngestionJob, ingestion_job_table)
    mapper_registry.map_imperatively(JobCheckpoint, job_checkpoint_table)

    configure_mappers()
    return mapper_registry

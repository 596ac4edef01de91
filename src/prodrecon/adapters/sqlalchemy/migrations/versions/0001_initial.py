"""Link graph, suggestions and ingestion jobs.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

_SUPPLIER_CATALOG = sa.text("kind = 'supplier_product:catalog_analysis'")


def upgrade() -> None:
    op.create_table(
        "resolved_product",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("domain", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("ean", sa.String(length=14), nullable=True),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("origin", sa.String(), nullable=True),
        sa.Column("price", sa.String(length=32), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_resolved_product"),
    )
    op.create_index("ix_resolved_product_ean", "resolved_product", ["tenant_id", "domain", "ean"])
    op.create_index(
        "ix_resolved_product_reference",
        "resolved_product",
        ["tenant_id", "domain", "reference", "origin"],
    )
    op.create_index(
        "ix_resolved_product_recent", "resolved_product", ["tenant_id", "domain", "updated_at"]
    )

    op.create_table(
        "link_edge",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("left_id", sa.Uuid(), nullable=False),
        sa.Column("right_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("strategy", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "confidence BETWEEN 0 AND 100", name="ck_link_edge_confidence_range"
        ),
        sa.CheckConstraint("left_id <> right_id", name="ck_link_edge_no_self_link"),
        sa.ForeignKeyConstraint(
            ["left_id"], ["resolved_product.id"], name="fk_link_edge_left_id_resolved_product"
        ),
        sa.ForeignKeyConstraint(
            ["right_id"], ["resolved_product.id"], name="fk_link_edge_right_id_resolved_product"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_link_edge"),
        sa.UniqueConstraint("tenant_id", "left_id", "right_id", name="uq_link_edge_pair"),
    )
    op.create_index(
        "uq_link_edge_supplier_catalog",
        "link_edge",
        ["tenant_id", "left_id"],
        unique=True,
        sqlite_where=_SUPPLIER_CATALOG,
        postgresql_where=_SUPPLIER_CATALOG,
    )

    op.create_table(
        "ingestion_job",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("policy", sa.String(length=32), nullable=False),
        sa.Column("chunk_size", sa.Integer(), nullable=False),
        sa.Column("source_domain", sa.String(length=32), nullable=False),
        sa.Column("target_domain", sa.String(length=32), nullable=False),
        sa.Column("origin", sa.String(), nullable=True),
        sa.Column("column_mapping", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("pause_requested", sa.Boolean(), nullable=False),
        sa.Column("source_offset", sa.Integer(), nullable=False),
        sa.Column("total_count", sa.Integer(), nullable=True),
        sa.Column("chunks_committed", sa.Integer(), nullable=False),
        sa.Column("seen", sa.Integer(), nullable=False),
        sa.Column("matched", sa.Integer(), nullable=False),
        sa.Column("created", sa.Integer(), nullable=False),
        sa.Column("skipped", sa.Integer(), nullable=False),
        sa.Column("errored", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("error_samples", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_ingestion_job"),
    )
    op.create_index("ix_ingestion_job_tenant_id", "ingestion_job", ["tenant_id"])

    op.create_table(
        "job_checkpoint",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("source_offset", sa.Integer(), nullable=False),
        sa.Column("seen", sa.Integer(), nullable=False),
        sa.Column("matched", sa.Integer(), nullable=False),
        sa.Column("created", sa.Integer(), nullable=False),
        sa.Column("skipped", sa.Integer(), nullable=False),
        sa.Column("errored", sa.Integer(), nullable=False),
        sa.Column("committed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["job_id"], ["ingestion_job.id"], name="fk_job_checkpoint_job_id_ingestion_job"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_job_checkpoint"),
        sa.UniqueConstraint("job_id", "sequence", name="uq_job_checkpoint_sequence"),
    )

    op.create_table(
        "link_suggestion",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("left_id", sa.Uuid(), nullable=False),
        sa.Column("right_id", sa.Uuid(), nullable=False),
        sa.Column("target_id", sa.Uuid(), nullable=False),
        sa.Column("strategy", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("proposed_price", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["job_id"], ["ingestion_job.id"], name="fk_link_suggestion_job_id_ingestion_job"
        ),
        sa.ForeignKeyConstraint(
            ["left_id"],
            ["resolved_product.id"],
            name="fk_link_suggestion_left_id_resolved_product",
        ),
        sa.ForeignKeyConstraint(
            ["right_id"],
            ["resolved_product.id"],
            name="fk_link_suggestion_right_id_resolved_product",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_link_suggestion"),
        sa.UniqueConstraint("tenant_id", "left_id", "right_id", name="uq_link_suggestion_pair"),
    )

    op.create_table(
        "unlinked_pair",
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("left_id", sa.Uuid(), nullable=False),
        sa.Column("right_id", sa.Uuid(), nullable=False),
        sa.Column("unlinked_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tenant_id", "left_id", "right_id", name="pk_unlinked_pair"),
    )


def downgrade() -> None:
    op.drop_table("unlinked_pair")
    op.drop_table("link_suggestion")
    op.drop_table("job_checkpoint")
    op.drop_index("ix_ingestion_job_tenant_id", table_name="ingestion_job")
    op.drop_table("ingestion_job")
    op.drop_index("uq_link_edge_supplier_catalog", table_name="link_edge")
    op.drop_table("link_edge")
    op.drop_index("ix_resolved_product_recent", table_name="resolved_product")
    op.drop_index("ix_resolved_product_reference", table_name="resolved_product")
    op.drop_index("ix_resolved_product_ean", table_name="resolved_product")
    op.drop_table("resolved_product")

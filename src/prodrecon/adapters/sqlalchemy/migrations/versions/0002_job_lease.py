"""Claim token and heartbeat on ingestion jobs.

Revision ID: 0002_job_lease
Revises: 0001_initial
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0002_job_lease"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("ingestion_job") as batch:
        batch.add_column(sa.Column("claim_token", sa.Uuid(), nullable=True))
        batch.add_column(sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("ingestion_job") as batch:
        batch.drop_column("heartbeat_at")
        batch.drop_column("claim_token")

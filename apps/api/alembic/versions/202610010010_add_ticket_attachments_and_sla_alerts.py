"""add ticket attachments and sla alert tracking

Revision ID: 202610010010
Revises: 202610010009
Create Date: 2026-10-01 01:30:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010010"
down_revision: str | None = "202610010009"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("support_ticket", sa.Column("attachments", sa.JSON(), nullable=False, server_default="[]"))
    op.add_column("support_ticket", sa.Column("last_sla_alert_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("support_ticket", "last_sla_alert_at")
    op.drop_column("support_ticket", "attachments")

"""create expense, vendor and terms tables

Revision ID: 202610010004
Revises: 202610010003
Create Date: 2026-10-01 00:30:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010004"
down_revision: str | None = "202610010003"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_expense",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("expense_number", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("vendor_id", sa.Uuid(), nullable=True),
        sa.Column("vendor_name", sa.String(length=255), nullable=True),
        sa.Column("payee", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("lines", sa.JSON(), nullable=False),
        sa.Column("total", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=64), nullable=True),
        sa.Column("reference_number", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_by_name", sa.String(length=255), nullable=True),
        sa.Column("submitted_by", sa.String(length=64), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_approval_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("manager_approver_id", sa.String(length=64), nullable=True),
        sa.Column("manager_approver_name", sa.String(length=255), nullable=True),
        sa.Column("senior_manager_approver_id", sa.String(length=64), nullable=True),
        sa.Column("senior_manager_approver_name", sa.String(length=255), nullable=True),
        sa.Column("finance_manager_approver_id", sa.String(length=64), nullable=True),
        sa.Column("finance_manager_approver_name", sa.String(length=255), nullable=True),
        sa.Column("manager_approved_by", sa.String(length=64), nullable=True),
        sa.Column("manager_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("senior_approved_by", sa.String(length=64), nullable=True),
        sa.Column("senior_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finance_approved_by", sa.String(length=64), nullable=True),
        sa.Column("finance_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=64), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("rejected_at_level", sa.Integer(), nullable=True),
        sa.Column("paid_by", sa.String(length=64), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.String(length=64), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("approval_history", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("expense_number"),
    )
    op.create_index("ix_crm_expense_status", "crm_expense", ["status"])
    op.create_index("ix_crm_expense_created_by", "crm_expense", ["created_by"])
    op.create_index("ix_crm_expense_date", "crm_expense", ["date"])

    op.create_table(
        "crm_vendor",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("legal_name", sa.String(length=255), nullable=True),
        sa.Column("website", sa.String(length=500), nullable=True),
        sa.Column("support_email", sa.String(length=255), nullable=True),
        sa.Column("support_phone", sa.String(length=64), nullable=True),
        sa.Column("address_line1", sa.String(length=255), nullable=True),
        sa.Column("address_line2", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("state", sa.String(length=128), nullable=True),
        sa.Column("postal_code", sa.String(length=32), nullable=True),
        sa.Column("country", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Active"),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_vendor_name", "crm_vendor", ["name"])
    op.create_index("ix_crm_vendor_status", "crm_vendor", ["status"])

    op.create_table(
        "crm_vendor_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("vendor_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("user_name", sa.String(length=255), nullable=True),
        sa.Column("user_email", sa.String(length=255), nullable=True),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_vendor_history_vendor_created", "crm_vendor_history", ["vendor_id", "created_at"])

    op.create_table(
        "crm_custom_terms",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("account_ids", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "crm_terms_review_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("terms_id", sa.Uuid(), nullable=False),
        sa.Column("terms_name", sa.String(length=255), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("recipient_email", sa.String(length=255), nullable=False),
        sa.Column("recipient_name", sa.String(length=255), nullable=True),
        sa.Column("sender_id", sa.String(length=64), nullable=True),
        sa.Column("sender_email", sa.String(length=255), nullable=True),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("custom_message", sa.Text(), nullable=True),
        sa.Column("review_token", sa.String(length=128), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("response_notes", sa.Text(), nullable=True),
        sa.Column("signer_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["terms_id"], ["crm_custom_terms.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("review_token"),
    )
    op.create_index("ix_crm_terms_review_request_status", "crm_terms_review_request", ["status"])
    op.create_index("ix_crm_terms_review_request_account", "crm_terms_review_request", ["account_id"])


def downgrade() -> None:
    op.drop_index("ix_crm_terms_review_request_account", table_name="crm_terms_review_request")
    op.drop_index("ix_crm_terms_review_request_status", table_name="crm_terms_review_request")
    op.drop_table("crm_terms_review_request")
    op.drop_table("crm_custom_terms")
    op.drop_index("ix_crm_vendor_history_vendor_created", table_name="crm_vendor_history")
    op.drop_table("crm_vendor_history")
    op.drop_index("ix_crm_vendor_status", table_name="crm_vendor")
    op.drop_index("ix_crm_vendor_name", table_name="crm_vendor")
    op.drop_table("crm_vendor")
    op.drop_index("ix_crm_expense_date", table_name="crm_expense")
    op.drop_index("ix_crm_expense_created_by", table_name="crm_expense")
    op.drop_index("ix_crm_expense_status", table_name="crm_expense")
    op.drop_table("crm_expense")

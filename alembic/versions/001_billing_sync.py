"""billing sync schema

Revision ID: 001_billing_sync
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

revision = "001_billing_sync"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Accounts
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("customer_id", sa.String(length=255), nullable=True),
        sa.Column("subscription_id", sa.String(length=255), nullable=True),
        sa.Column("plan_type", sa.String(length=40), nullable=True),
        sa.Column("trial", sa.Boolean(), nullable=False),
        sa.Column(
            "subscription_status",
            sa.Enum(
                "none",
                "incomplete",
                "incomplete_expired",
                "trialing",
                "active",
                "past_due",
                "unpaid",
                "paused",
                "cancelled",
                name="subscriptionstatus",
            ),
            nullable=False,
        ),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False),
        sa.Column("last_event_id", sa.String(length=255), nullable=True),
        sa.Column("last_event_created", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_accounts_customer_id", "accounts", ["customer_id"], unique=True
    )

    # Payment ledger
    op.create_table(
        "payment_ledger",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.String(length=128), nullable=False),
        sa.Column("invoice_id", sa.String(length=255), nullable=False),
        sa.Column(
            "outcome",
            sa.Enum("succeeded", "failed", name="paymentoutcome"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("invoice_status", sa.String(length=40), nullable=True),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "invoice_id", "outcome", name="uq_payment_ledger_invoice_outcome"
        ),
    )
    op.create_index(
        "ix_payment_ledger_account_id", "payment_ledger", ["account_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_payment_ledger_account_id", table_name="payment_ledger")
    op.drop_table("payment_ledger")
    op.drop_index("ix_accounts_customer_id", table_name="accounts")
    op.drop_table("accounts")
    sa.Enum(name="paymentoutcome").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="subscriptionstatus").drop(op.get_bind(), checkfirst=True)

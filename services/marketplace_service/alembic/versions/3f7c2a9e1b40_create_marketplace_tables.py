"""create_marketplace_tables

Revision ID: 3f7c2a9e1b40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f7c2a9e1b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUS = sa.Enum(
    "pending",
    "accepted",
    "in_progress",
    "completed",
    "cancelled",
    name="order_status_enum",
)
TRANSACTION_TYPE = sa.Enum(
    "credit",
    "debit",
    "referral_bonus",
    "signup_bonus",
    name="transaction_type_enum",
)
AWARD_STATUS = sa.Enum(
    "pending",
    "completed",
    "dead_letter",
    name="award_status_enum",
)


def upgrade() -> None:
    """Upgrade schema - users, orders, wallets, ledger, referral outbox."""

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("auth_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("referral_code", sa.String(length=32), nullable=False),
        sa.Column("referred_by_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "referred_by_id IS NULL OR referred_by_id != id",
            name="ck_users_no_self_referral",
        ),
        sa.ForeignKeyConstraint(
            ["referred_by_id"], ["users.id"], name="fk_users_referred_by_id_users"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_auth_id", "users", ["auth_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_referral_code", "users", ["referral_code"], unique=True)
    op.create_index("ix_users_referred_by_id", "users", ["referred_by_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("partner_id", sa.Uuid(), nullable=True),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("razorpay_order_id", sa.String(), nullable=True),
        sa.Column("razorpay_payment_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("remaining_amount", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_orders_user_id_users"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_orders"),
        sa.UniqueConstraint(
            "razorpay_payment_id", name="uq_orders_razorpay_payment_id"
        ),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index(
        "ix_orders_razorpay_order_id", "orders", ["razorpay_order_id"], unique=True
    )
    op.create_index("ix_orders_user_status", "orders", ["user_id", "status"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_wallets_user_id_users"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_wallets"),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("wallet_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("transaction_type", TRANSACTION_TYPE, nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("referred_user_id", sa.Uuid(), nullable=True),
        sa.Column("source_order_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "amount > 0", name="ck_wallet_transactions_amount_positive"
        ),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["wallets.id"],
            name="fk_wallet_transactions_wallet_id_wallets",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_wallet_transactions_user_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["referred_user_id"],
            ["users.id"],
            name="fk_wallet_transactions_referred_user_id_users",
        ),
        sa.ForeignKeyConstraint(
            ["source_order_id"],
            ["orders.id"],
            name="fk_wallet_transactions_source_order_id_orders",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_transactions"),
        sa.UniqueConstraint(
            "user_id",
            "referred_user_id",
            name="uq_wallet_transactions_referral_pair",
        ),
    )
    op.create_index(
        "ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"]
    )
    op.create_index(
        "ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"]
    )
    op.create_index(
        "ix_wallet_transactions_wallet_created",
        "wallet_transactions",
        ["wallet_id", "created_at"],
    )

    op.create_table(
        "pending_referral_awards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("status", AWARD_STATUS, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["order_id"],
            ["orders.id"],
            name="fk_pending_referral_awards_order_id_orders",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_pending_referral_awards"),
        sa.UniqueConstraint("order_id", name="uq_pending_referral_awards_order_id"),
    )
    op.create_index(
        "ix_pending_referral_awards_status", "pending_referral_awards", ["status"]
    )


def downgrade() -> None:
    """Downgrade schema - drop marketplace tables."""
    op.drop_table("pending_referral_awards")
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("orders")
    op.drop_table("users")

    bind = op.get_bind()
    AWARD_STATUS.drop(bind, checkfirst=True)
    TRANSACTION_TYPE.drop(bind, checkfirst=True)
    ORDER_STATUS.drop(bind, checkfirst=True)

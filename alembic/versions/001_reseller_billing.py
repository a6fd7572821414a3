"""Reseller billing tables.

Idempotent: app startup runs Base.metadata.create_all before upgrading, so
every table is only created when missing.

Revision ID: 001_reseller_billing
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_reseller_billing"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _missing(table_name: str) -> bool:
    return not sa.inspect(op.get_bind()).has_table(table_name)


def upgrade() -> None:
    if _missing("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("supabase_id", sa.String(), nullable=True),
            sa.Column("full_name", sa.String(), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="restaurant_owner"),
            sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("promo_code_id", sa.Integer(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_supabase_id", "users", ["supabase_id"], unique=True)
        op.create_index("ix_users_reseller_id", "users", ["reseller_id"])

    if _missing("stripe_customers"):
        op.create_table(
            "stripe_customers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_stripe_customers_customer_id", "stripe_customers", ["customer_id"], unique=True)
        op.create_index("ix_stripe_customers_user_id", "stripe_customers", ["user_id"])

    if _missing("reseller_promo_codes"):
        op.create_table(
            "reseller_promo_codes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("promo_code_stripe_id", sa.String(), nullable=False),
            sa.Column("promo_code_text", sa.String(), nullable=False),
            sa.Column("coupon_id", sa.String(), nullable=False),
            sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False, server_default="50"),
            sa.Column("discount_percent", sa.Numeric(5, 2), nullable=True),
            sa.Column("discount_amount", sa.Integer(), nullable=True),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.CheckConstraint(
                "(discount_percent IS NULL) <> (discount_amount IS NULL)",
                name="ck_reseller_promo_codes_one_discount",
            ),
        )
        op.create_index("ix_reseller_promo_codes_reseller_id", "reseller_promo_codes", ["reseller_id"])
        op.create_index(
            "ix_reseller_promo_codes_promo_code_stripe_id", "reseller_promo_codes", ["promo_code_stripe_id"], unique=True
        )
        if op.get_bind().dialect.name == "postgresql":
            op.create_foreign_key(
                "fk_users_promo_code_id", "users", "reseller_promo_codes",
                ["promo_code_id"], ["id"], ondelete="SET NULL",
            )

    if _missing("stripe_subscriptions"):
        op.create_table(
            "stripe_subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("subscription_id", sa.String(), nullable=False),
            sa.Column("customer_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("price_id", sa.String(), nullable=True),
            sa.Column("current_period_start", sa.DateTime(), nullable=True),
            sa.Column("current_period_end", sa.DateTime(), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False),
            sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("payment_method_brand", sa.String(), nullable=True),
            sa.Column("payment_method_last4", sa.String(), nullable=True),
            sa.Column(
                "promo_code_id", sa.Integer(),
                sa.ForeignKey("reseller_promo_codes.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("discount_amount", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )
        op.create_index(
            "ix_stripe_subscriptions_subscription_id", "stripe_subscriptions", ["subscription_id"], unique=True
        )
        op.create_index("ix_stripe_subscriptions_customer_id", "stripe_subscriptions", ["customer_id"])
        op.create_index("ix_stripe_subscriptions_user_id", "stripe_subscriptions", ["user_id"])

    if _missing("promo_code_usage"):
        op.create_table(
            "promo_code_usage",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.String(), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            sa.Column(
                "promo_code_id", sa.Integer(),
                sa.ForeignKey("reseller_promo_codes.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("promo_code_stripe_id", sa.String(), nullable=True),
            sa.Column("checkout_session_id", sa.String(), nullable=True),
            sa.Column("discount_amount", sa.Integer(), nullable=True),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("applied_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint(
                "checkout_session_id", "promo_code_stripe_id", name="uq_promo_code_usage_session_code"
            ),
        )
        op.create_index("ix_promo_code_usage_customer_id", "promo_code_usage", ["customer_id"])
        op.create_index("ix_promo_code_usage_applied_at", "promo_code_usage", ["applied_at"])

    if _missing("reseller_payouts"):
        op.create_table(
            "reseller_payouts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("currency", sa.String(), nullable=False),
            sa.Column("commission_count", sa.Integer(), nullable=False),
            sa.Column("commissions_total", sa.Integer(), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_reseller_payouts_reseller_id", "reseller_payouts", ["reseller_id"])

    if _missing("reseller_commissions"):
        op.create_table(
            "reseller_commissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("subscription_id", sa.String(), nullable=False),
            sa.Column(
                "promo_code_id", sa.Integer(),
                sa.ForeignKey("reseller_promo_codes.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("commission_amount", sa.Integer(), nullable=False),
            sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
            sa.Column("currency", sa.String(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("period_start", sa.DateTime(), nullable=False),
            sa.Column("period_end", sa.DateTime(), nullable=True),
            sa.Column(
                "payout_id", sa.Integer(),
                sa.ForeignKey("reseller_payouts.id", ondelete="RESTRICT"), nullable=True,
            ),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint(
                "subscription_id", "period_start", name="uq_reseller_commissions_subscription_period"
            ),
        )
        op.create_index("ix_reseller_commissions_reseller_id", "reseller_commissions", ["reseller_id"])
        op.create_index("ix_reseller_commissions_subscription_id", "reseller_commissions", ["subscription_id"])
        op.create_index("ix_reseller_commissions_status", "reseller_commissions", ["status"])
        op.create_index("ix_reseller_commissions_payout_id", "reseller_commissions", ["payout_id"])

    if _missing("reseller_clients"):
        op.create_table(
            "reseller_clients",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reseller_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("reseller_id", "client_id", name="uq_reseller_clients_pair"),
        )
        op.create_index("ix_reseller_clients_reseller_id", "reseller_clients", ["reseller_id"])
        op.create_index("ix_reseller_clients_client_id", "reseller_clients", ["client_id"])


def downgrade() -> None:
    """Keep ledger data for safety; no-op downgrade."""
    pass

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


revision = "0001_create_schema"
down_revision = None
branch_labels = None
depends_on = None

_JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _has_index(inspector, table_name: str, index_name: str) -> bool:
    return any(idx["name"] == index_name for idx in inspector.get_indexes(table_name))


def _create_index(bind, name: str, table: str, columns: list[str], unique: bool = False) -> None:
    if not _has_index(inspect(bind), table, name):
        op.create_index(name, table, columns, unique=unique)


def upgrade() -> None:
    bind = op.get_bind()
    tables = set(inspect(bind).get_table_names())

    if "customers" not in tables:
        op.create_table(
            "customers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_customers_email", "customers", ["email"])

    if "coupons" not in tables:
        op.create_table(
            "coupons",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="percentage"),
            sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("min_order_amount", sa.Integer(), nullable=True),
            sa.Column("max_discount_amount", sa.Integer(), nullable=True),
            sa.Column("max_redemptions", sa.Integer(), nullable=True),
            sa.Column("per_customer_limit", sa.Integer(), nullable=True, server_default="1"),
            sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("start_date", sa.DateTime(), nullable=True),
            sa.Column("end_date", sa.DateTime(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("block_affiliate_commission", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("block_vip_discount", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("min_margin_percent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("auto_expire_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("auto_expire_threshold", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("auto_expire_after_days", sa.Integer(), nullable=True, server_default="30"),
            sa.Column("auto_expired_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_coupons_code", "coupons", ["code"], unique=True)
    _create_index(bind, "ix_coupons_active", "coupons", ["active"])

    if "orders" not in tables:
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("affiliate_code", sa.String(length=64), nullable=True),
            sa.Column("coupon_id", sa.Integer(), sa.ForeignKey("coupons.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_orders_customer_id", "orders", ["customer_id"])

    if "coupon_redemptions" not in tables:
        op.create_table(
            "coupon_redemptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("coupon_id", sa.Integer(), sa.ForeignKey("coupons.id"), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
            sa.Column("discount_amount", sa.Integer(), nullable=False),
            sa.Column("order_subtotal", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("order_total", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("net_revenue", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("affiliate_code", sa.String(length=64), nullable=True),
            sa.Column("affiliate_commission_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("redeemed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_coupon_redemptions_coupon_id", "coupon_redemptions", ["coupon_id"])
    _create_index(bind, "ix_coupon_redemptions_order_id", "coupon_redemptions", ["order_id"])
    _create_index(bind, "ix_coupon_redemptions_customer_id", "coupon_redemptions", ["customer_id"])
    _create_index(bind, "ix_coupon_redemptions_redeemed_at", "coupon_redemptions", ["redeemed_at"])

    if "abandoned_carts" not in tables:
        op.create_table(
            "abandoned_carts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("session_id", sa.String(length=128), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("cart_data", _JSON, nullable=False),
            sa.Column("cart_value", sa.Integer(), nullable=False),
            sa.Column("coupon_code", sa.String(length=64), nullable=True),
            sa.Column("affiliate_code", sa.String(length=64), nullable=True),
            sa.Column("last_activity_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("abandoned_at", sa.DateTime(), nullable=True),
            sa.Column("recovery_email_sent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("recovery_email_sent_at", sa.DateTime(), nullable=True),
            sa.Column("recovered_at", sa.DateTime(), nullable=True),
            sa.Column("recovered_order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_abandoned_carts_session_id", "abandoned_carts", ["session_id"])

    if "failed_payments" not in tables:
        op.create_table(
            "failed_payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("payment_intent_id", sa.String(length=128), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            sa.Column("failure_code", sa.String(length=64), nullable=True),
            sa.Column("recovery_email_sent", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("recovery_email_sent_at", sa.DateTime(), nullable=True),
            sa.Column("recovered_at", sa.DateTime(), nullable=True),
            sa.Column("expired_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_failed_payments_order_id", "failed_payments", ["order_id"])

    if "recovery_events" not in tables:
        op.create_table(
            "recovery_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_type", sa.String(length=30), nullable=False),
            sa.Column("source_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
            sa.Column("revenue_recovered", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("metadata_json", _JSON, nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_recovery_events_source_id", "recovery_events", ["source_id"])

    if "email_log" not in tables:
        op.create_table(
            "email_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(length=30), nullable=False),
            sa.Column("to_email", sa.String(length=255), nullable=False),
            sa.Column("subject", sa.String(length=255), nullable=False),
            sa.Column("category", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("provider_message_id", sa.String(length=255), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_email_log_id", "email_log", ["id"])
    _create_index(bind, "ix_email_log_to_email", "email_log", ["to_email"])

    if "admin_users" not in tables:
        op.create_table(
            "admin_users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False, unique=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("password_hash", sa.String(), nullable=False),
            sa.Column("role", sa.String(), nullable=False, server_default="admin"),
            sa.Column("active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_admin_users_id", "admin_users", ["id"])

    if "admin_login_attempts" not in tables:
        op.create_table(
            "admin_login_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("first_failed_at", sa.DateTime(), nullable=True),
            sa.Column("last_failed_at", sa.DateTime(), nullable=True),
            sa.Column("locked_until", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_admin_login_attempts_id", "admin_login_attempts", ["id"])
    _create_index(bind, "ix_admin_login_attempts_email", "admin_login_attempts", ["email"], unique=True)

    if "admin_audit_log" not in tables:
        op.create_table(
            "admin_audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("entity_type", sa.String(), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("meta_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        )
    _create_index(bind, "ix_admin_audit_log_id", "admin_audit_log", ["id"])
    _create_index(bind, "ix_admin_audit_log_user_id", "admin_audit_log", ["user_id"])


def downgrade() -> None:
    for table in (
        "admin_audit_log",
        "admin_login_attempts",
        "admin_users",
        "email_log",
        "recovery_events",
        "failed_payments",
        "abandoned_carts",
        "coupon_redemptions",
        "orders",
        "coupons",
        "customers",
    ):
        op.drop_table(table)

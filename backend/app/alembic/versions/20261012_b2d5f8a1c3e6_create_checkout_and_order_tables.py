"""create coupon, order, payment attempt and webhook ledger tables

Revision ID: b2d5f8a1c3e6
Revises: a1c4e7f0b2d5
Create Date: 2026-10-12 00:00:01.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "b2d5f8a1c3e6"
down_revision = "a1c4e7f0b2d5"
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("(CURRENT_TIMESTAMP)"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("(CURRENT_TIMESTAMP)"),
    )


def upgrade() -> None:
    op.create_table(
        "coupons",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(length=20), nullable=False, server_default="percent"),
        sa.Column("discount_value", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("max_discount_subunits", sa.Integer(), nullable=True),
        sa.Column("min_cart_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scope_type", sa.String(length=20), nullable=False, server_default="generic"),
        sa.Column("tier_scope", sa.String(length=20), nullable=True),
        sa.Column("category_scope", sa.JSON(), nullable=True),
        sa.Column("usage_limit_total", sa.Integer(), nullable=True),
        sa.Column("usage_limit_per_user", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)

    op.create_table(
        "coupon_user_targets",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("coupon_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("coupon_id", "user_id", name="uq_coupon_user_target"),
    )
    op.create_index("ix_coupon_user_targets_coupon_id", "coupon_user_targets", ["coupon_id"])

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("coupon_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["coupon_id"], ["coupons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupon_redemptions_coupon_id", "coupon_redemptions", ["coupon_id"])
    op.create_index("ix_coupon_redemptions_user_id", "coupon_redemptions", ["user_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("order_ref", sa.String(length=40), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="confirmed"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("subtotal_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shipping_fee_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_total_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("coupon_code", sa.String(length=64), nullable=True),
        sa.Column("coupon_source", sa.String(length=20), nullable=True),
        sa.Column("coupon_discount_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("loyalty_tier", sa.String(length=20), nullable=True),
        sa.Column("abandoned_journey_id", sa.String(length=36), nullable=True),
        sa.Column("payment_gateway", sa.String(length=20), nullable=True),
        sa.Column("gateway_order_id", sa.String(length=64), nullable=True),
        sa.Column("gateway_payment_id", sa.String(length=64), nullable=True),
        sa.Column("payment_attempt_id", sa.String(length=36), nullable=True),
        sa.Column("settlement_id", sa.String(length=64), nullable=True),
        sa.Column("settlement_snapshot", sa.JSON(), nullable=True),
        sa.Column("refund_id", sa.String(length=64), nullable=True),
        sa.Column("refund_status", sa.String(length=20), nullable=True),
        sa.Column("refund_amount_subunits", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_order_ref", "orders", ["order_ref"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_abandoned_journey_id", "orders", ["abandoned_journey_id"])
    op.create_index("ix_orders_gateway_order_id", "orders", ["gateway_order_id"])
    op.create_index("ix_orders_gateway_payment_id", "orders", ["gateway_payment_id"], unique=True)
    op.create_index("ix_orders_settlement_id", "orders", ["settlement_id"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("variant_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("variant_title", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_subunits", sa.Integer(), nullable=False),
        sa.Column("line_total_subunits", sa.Integer(), nullable=False),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("item_snapshot", sa.JSON(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "order_status_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("note", sa.String(length=255), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_status_events_order_id", "order_status_events", ["order_id"])

    op.create_table(
        "payment_attempts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("gateway_order_id", sa.String(length=64), nullable=False),
        sa.Column("gateway_payment_id", sa.String(length=64), nullable=True),
        sa.Column("gateway_signature", sa.String(length=255), nullable=True),
        sa.Column("amount_subunits", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="created"),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("notes", sa.JSON(), nullable=True),
        sa.Column("local_order_id", sa.String(length=36), nullable=True),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        sa.Column("verify_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_attempts_user_id", "payment_attempts", ["user_id"])
    op.create_index(
        "ix_payment_attempts_gateway_order_id", "payment_attempts", ["gateway_order_id"], unique=True
    )
    op.create_index("ix_payment_attempts_gateway_payment_id", "payment_attempts", ["gateway_payment_id"])

    op.create_table(
        "inventory_reservations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("attempt_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("variant_id", sa.String(length=36), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("tracked", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="reserved"),
        sa.Column("released_reason", sa.String(length=100), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["attempt_id"], ["payment_attempts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inventory_reservations_attempt_id", "inventory_reservations", ["attempt_id"])

    op.create_table(
        "gateway_webhook_events",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("signature", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="received"),
        sa.Column("payload_raw", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("process_note", sa.String(length=500), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_gateway_webhook_events_event_id", "gateway_webhook_events", ["event_id"], unique=True
    )


def downgrade() -> None:
    op.drop_index("ix_gateway_webhook_events_event_id", table_name="gateway_webhook_events")
    op.drop_table("gateway_webhook_events")
    op.drop_index("ix_inventory_reservations_attempt_id", table_name="inventory_reservations")
    op.drop_table("inventory_reservations")
    op.drop_index("ix_payment_attempts_gateway_payment_id", table_name="payment_attempts")
    op.drop_index("ix_payment_attempts_gateway_order_id", table_name="payment_attempts")
    op.drop_index("ix_payment_attempts_user_id", table_name="payment_attempts")
    op.drop_table("payment_attempts")
    op.drop_index("ix_order_status_events_order_id", table_name="order_status_events")
    op.drop_table("order_status_events")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    for index in (
        "ix_orders_created_at",
        "ix_orders_settlement_id",
        "ix_orders_gateway_payment_id",
        "ix_orders_gateway_order_id",
        "ix_orders_abandoned_journey_id",
        "ix_orders_status",
        "ix_orders_user_id",
        "ix_orders_order_ref",
    ):
        op.drop_index(index, table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_coupon_redemptions_user_id", table_name="coupon_redemptions")
    op.drop_index("ix_coupon_redemptions_coupon_id", table_name="coupon_redemptions")
    op.drop_table("coupon_redemptions")
    op.drop_index("ix_coupon_user_targets_coupon_id", table_name="coupon_user_targets")
    op.drop_table("coupon_user_targets")
    op.drop_index("ix_coupons_code", table_name="coupons")
    op.drop_table("coupons")

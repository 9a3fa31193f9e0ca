"""create abandoned cart recovery tables

Revision ID: c3e6a9b2d4f7
Revises: b2d5f8a1c3e6
Create Date: 2026-10-12 00:00:02.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "c3e6a9b2d4f7"
down_revision = "b2d5f8a1c3e6"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "recovery_campaigns",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("inactivity_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("attempt_delays_minutes", sa.JSON(), nullable=False),
        sa.Column("discount_ladder_percent", sa.JSON(), nullable=False),
        sa.Column("max_discount_percent", sa.Integer(), nullable=False, server_default="25"),
        sa.Column("min_discount_cart_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recovery_window_hours", sa.Integer(), nullable=False, server_default="72"),
        sa.Column("send_email", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("send_whatsapp", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("send_payment_link", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("reminder_enable", sa.Boolean(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "cart_candidates",
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("cart_item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cart_total_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_cart_candidates_last_activity_at", "cart_candidates", ["last_activity_at"])

    op.create_table(
        "recovery_journeys",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("cart_item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cart_total_subunits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("cart_snapshot", sa.JSON(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_no", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recovered_order_id", sa.String(length=36), nullable=True),
        sa.Column("recovered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recovery_reason", sa.String(length=200), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recovery_journeys_user_id", "recovery_journeys", ["user_id"])
    op.create_index("ix_recovery_journeys_status", "recovery_journeys", ["status"])
    op.create_index("ix_recovery_journeys_next_attempt_at", "recovery_journeys", ["next_attempt_at"])
    op.create_index(
        "uq_recovery_journeys_active_user",
        "recovery_journeys",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "recovery_attempts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("journey_id", sa.String(length=36), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="sent"),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("discount_code", sa.String(length=40), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_link_id", sa.String(length=64), nullable=True),
        sa.Column("payment_link_url", sa.String(length=500), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("response", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["journey_id"], ["recovery_journeys.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recovery_attempts_journey_id", "recovery_attempts", ["journey_id"])
    op.create_index("ix_recovery_attempts_payment_link_id", "recovery_attempts", ["payment_link_id"])

    op.create_table(
        "recovery_discounts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("journey_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("discount_type", sa.String(length=20), nullable=False, server_default="percent"),
        sa.Column("discount_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_discount_subunits", sa.Integer(), nullable=True),
        sa.Column("min_cart_subunits", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_order_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["journey_id"], ["recovery_journeys.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recovery_discounts_journey_id", "recovery_discounts", ["journey_id"])
    op.create_index("ix_recovery_discounts_user_id", "recovery_discounts", ["user_id"])
    op.create_index("ix_recovery_discounts_code", "recovery_discounts", ["code"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_recovery_discounts_code", table_name="recovery_discounts")
    op.drop_index("ix_recovery_discounts_user_id", table_name="recovery_discounts")
    op.drop_index("ix_recovery_discounts_journey_id", table_name="recovery_discounts")
    op.drop_table("recovery_discounts")
    op.drop_index("ix_recovery_attempts_payment_link_id", table_name="recovery_attempts")
    op.drop_index("ix_recovery_attempts_journey_id", table_name="recovery_attempts")
    op.drop_table("recovery_attempts")
    op.drop_index("uq_recovery_journeys_active_user", table_name="recovery_journeys")
    op.drop_index("ix_recovery_journeys_next_attempt_at", table_name="recovery_journeys")
    op.drop_index("ix_recovery_journeys_status", table_name="recovery_journeys")
    op.drop_index("ix_recovery_journeys_user_id", table_name="recovery_journeys")
    op.drop_table("recovery_journeys")
    op.drop_index("ix_cart_candidates_last_activity_at", table_name="cart_candidates")
    op.drop_table("cart_candidates")
    op.drop_table("recovery_campaigns")

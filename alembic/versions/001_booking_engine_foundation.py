# alembic/versions/001_booking_engine_foundation.py
"""Booking engine foundation - catalog, capacity, coupons, bookings, payments, outbox

Revision ID: 001_booking_engine_foundation
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates every table the booking lifecycle and payment reconciliation need.
Money columns are integers in minor currency units.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_booking_engine_foundation"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json() -> sa.types.TypeEngine:
    return postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    # ------------------------------------------------------------ catalog
    op.create_table(
        "bookable_assets",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("asset_type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("partner_id", sa.String(26), nullable=True),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="BRL"),
        sa.Column("capacity_per_slot", sa.Integer(), nullable=True),
        sa.Column("requires_partner_confirmation", sa.Boolean(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("unit_price >= 0", name="ck_bookable_assets_unit_price"),
        sa.CheckConstraint(
            "capacity_per_slot IS NULL OR capacity_per_slot > 0",
            name="ck_bookable_assets_capacity",
        ),
    )
    op.create_index("ix_bookable_assets_asset_type", "bookable_assets", ["asset_type"])
    op.create_index("ix_bookable_assets_partner_id", "bookable_assets", ["partner_id"])

    # ----------------------------------------------------------- capacity
    op.create_table(
        "capacity_slots",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("asset_id", sa.String(26), nullable=False),
        sa.Column("slot_key", sa.String(64), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("asset_id", "slot_key", name="uq_capacity_slots_asset_slot"),
        sa.CheckConstraint("reserved >= 0", name="ck_capacity_slots_reserved_non_negative"),
        sa.CheckConstraint(
            "capacity IS NULL OR reserved <= capacity",
            name="ck_capacity_slots_reserved_ceiling",
        ),
    )
    op.create_table(
        "capacity_holds",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("asset_id", sa.String(26), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_capacity_holds_asset_id", "capacity_holds", ["asset_id"])
    op.create_index("ix_capacity_holds_status", "capacity_holds", ["status"])
    op.create_table(
        "capacity_hold_lines",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "hold_id",
            sa.String(26),
            sa.ForeignKey("capacity_holds.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("slot_id", sa.String(26), sa.ForeignKey("capacity_slots.id"), nullable=False),
        sa.Column("slot_key", sa.String(64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_capacity_hold_lines_quantity"),
    )

    # ------------------------------------------------------------ coupons
    op.create_table(
        "coupons",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("code", sa.String(20), nullable=False, unique=True),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(20), nullable=False, server_default="percentage"),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_discount_amount", sa.Integer(), nullable=True),
        sa.Column("minimum_order_value", sa.Integer(), nullable=True),
        sa.Column("maximum_order_value", sa.Integer(), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("user_usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("coupon_type", sa.String(30), nullable=False, server_default="public"),
        sa.Column("allowed_users", _json(), nullable=False),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("global_asset_types", _json(), nullable=False),
        sa.Column("stackable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(64), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("discount_value > 0", name="ck_coupons_discount_value"),
        sa.CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count"),
        sa.CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_coupons_usage_ceiling",
        ),
        sa.CheckConstraint("valid_from < valid_until", name="ck_coupons_window"),
    )
    op.create_table(
        "coupon_applicable_assets",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "coupon_id",
            sa.String(26),
            sa.ForeignKey("coupons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("asset_type", sa.String(20), nullable=False),
        sa.Column("asset_id", sa.String(26), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("coupon_id", "asset_type", "asset_id", name="uq_coupon_asset"),
    )
    op.create_index(
        "ix_coupon_applicable_assets_asset",
        "coupon_applicable_assets",
        ["asset_type", "asset_id"],
    )
    op.create_table(
        "coupon_user_usage",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "coupon_id",
            sa.String(26),
            sa.ForeignKey("coupons.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_key", sa.String(280), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("coupon_id", "user_key", name="uq_coupon_user_usage"),
        sa.CheckConstraint("usage_count >= 0", name="ck_coupon_user_usage_count"),
    )

    # ----------------------------------------------------------- bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("asset_type", sa.String(20), nullable=False),
        sa.Column("asset_id", sa.String(26), sa.ForeignKey("bookable_assets.id"), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("customer_email", sa.String(254), nullable=False),
        sa.Column("customer_phone", sa.String(40), nullable=True),
        sa.Column("customer_user_id", sa.String(64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("scheduled_start_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("details", _json(), nullable=False),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("base_amount", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("payment_status", sa.String(30), nullable=True),
        sa.Column("confirmation_code", sa.String(12), nullable=True, unique=True),
        sa.Column(
            "capacity_hold_id", sa.String(26), sa.ForeignKey("capacity_holds.id"), nullable=True
        ),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("payment_preference_id", sa.String(255), nullable=True),
        sa.Column("provider_payment_id", sa.String(255), nullable=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column("amount_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_bookings_quantity_positive"),
        sa.CheckConstraint("base_amount >= 0", name="ck_bookings_base_amount"),
        sa.CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= base_amount",
            name="ck_bookings_discount_bounds",
        ),
        sa.CheckConstraint(
            "final_amount = base_amount - discount_amount",
            name="ck_bookings_final_amount",
        ),
    )
    for column in (
        "asset_type",
        "asset_id",
        "customer_email",
        "customer_user_id",
        "scheduled_start_at",
        "scheduled_end_at",
        "status",
        "payment_status",
        "hold_expires_at",
        "provider_payment_id",
    ):
        op.create_index(f"ix_bookings_{column}", "bookings", [column])
    op.create_index("ix_bookings_status_hold_expires", "bookings", ["status", "hold_expires_at"])

    op.create_table(
        "booking_coupons",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "booking_id",
            sa.String(26),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("coupon_id", sa.String(26), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("discount_amount >= 0", name="ck_booking_coupons_discount"),
    )
    op.create_index("ix_booking_coupons_booking", "booking_coupons", ["booking_id"])

    op.create_table(
        "booking_transitions",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "booking_id",
            sa.String(26),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("trigger", sa.String(30), nullable=False),
        sa.Column("from_status", sa.String(30), nullable=False),
        sa.Column("to_status", sa.String(30), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("provider_event_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_booking_transitions_booking", "booking_transitions", ["booking_id", "created_at"]
    )

    op.create_table(
        "coupon_redemptions",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("coupon_id", sa.String(26), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("user_key", sa.String(280), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("discount_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="applied"),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("coupon_id", "booking_id", name="uq_coupon_redemption_booking"),
    )
    op.create_index("ix_coupon_redemptions_coupon_id", "coupon_redemptions", ["coupon_id"])
    op.create_index("ix_coupon_redemptions_booking_id", "coupon_redemptions", ["booking_id"])
    op.create_index("ix_coupon_redemptions_user_key", "coupon_redemptions", ["user_key"])

    # ----------------------------------------------------------- payments
    op.create_table(
        "payment_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("booking_reference", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("provider_event_id", sa.String(255), nullable=False),
        sa.Column("provider_payment_id", sa.String(255), nullable=True),
        sa.Column("raw_status", sa.String(50), nullable=False),
        sa.Column("payment_status", sa.String(30), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("anomaly_reason", sa.Text(), nullable=True),
        sa.Column("booking_status_before", sa.String(30), nullable=False),
        sa.Column("booking_status_after", sa.String(30), nullable=False),
        sa.Column("event_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_payload", _json(), nullable=False),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "booking_id", "provider_event_id", name="uq_payment_events_booking_event"
        ),
    )
    op.create_index("ix_payment_events_booking_id", "payment_events", ["booking_id"])
    op.create_index(
        "ix_payment_events_provider_payment_id", "payment_events", ["provider_payment_id"]
    )
    op.create_index("ix_payment_events_outcome", "payment_events", ["outcome"])

    op.create_table(
        "webhook_ledger",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("provider_event_id", sa.String(255), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("payload", _json(), nullable=False),
        sa.Column("headers", _json(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("outcome", sa.String(20), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("deliveries", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("replays", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "last_received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "source", "provider_event_id", name="uq_webhook_ledger_source_event"
        ),
    )
    op.create_index(
        "ix_webhook_ledger_status_received", "webhook_ledger", ["status", "received_at"]
    )
    op.create_index("ix_webhook_ledger_booking_id", "webhook_ledger", ["booking_id"])

    # ------------------------------------------------------------- outbox
    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("event", sa.String(64), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("recipient_contact", _json(), nullable=False),
        sa.Column("template_data", _json(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deliver_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "event", "booking_id", name="uq_notification_outbox_event_booking"
        ),
    )
    op.create_index(
        "ix_notification_outbox_due", "notification_outbox", ["status", "deliver_after"]
    )
    op.create_index("ix_notification_outbox_booking_id", "notification_outbox", ["booking_id"])


def downgrade() -> None:
    for table in (
        "notification_outbox",
        "webhook_ledger",
        "payment_events",
        "coupon_redemptions",
        "booking_transitions",
        "booking_coupons",
        "bookings",
        "coupon_user_usage",
        "coupon_applicable_assets",
        "coupons",
        "capacity_hold_lines",
        "capacity_holds",
        "capacity_slots",
        "bookable_assets",
    ):
        op.drop_table(table)

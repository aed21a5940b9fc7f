"""Create users, destinations and bookings tables

Revision ID: 001
Revises: None
Create Date: 2024-05-20 00:00:00.000000+00:00

What:  Initial booking schema.
How:   PostgreSQL-specific pieces: gen_random_uuid() keys, TIMESTAMPTZ,
       JSONB guest list, and a btree_gist exclusion constraint that stops two
       active bookings of one destination from overlapping even when they
       are inserted by different worker processes.

Rollback: downgrade() drops all three tables (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "destinations",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("location", sa.String(100), nullable=False),
        sa.Column("category", sa.String(20), nullable=False, server_default=sa.text("'nature'")),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("max_guests", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("booking_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_booked_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rating", sa.Numeric(2, 1), nullable=False, server_default=sa.text("0")),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("price >= 0", name="ck_destinations_price_non_negative"),
        sa.CheckConstraint("max_guests >= 1", name="ck_destinations_max_guests"),
        sa.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_destinations_rating"),
    )
    op.create_index("idx_destinations_active", "destinations", ["is_active"])
    op.create_index("idx_destinations_category", "destinations", ["category"])

    op.create_table(
        "bookings",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("destination_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("guests", sa.Integer(), nullable=False),
        sa.Column("price_per_night", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            "payment_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")
        ),
        sa.Column(
            "payment_method",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'credit_card'"),
        ),
        sa.Column("payment_id", sa.String(100), nullable=True),
        sa.Column("special_requests", sa.String(500), nullable=True),
        sa.Column("primary_guest_name", sa.String(50), nullable=False),
        sa.Column("primary_guest_email", sa.String(255), nullable=False),
        sa.Column("primary_guest_phone", sa.String(30), nullable=True),
        sa.Column(
            "additional_guests",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("confirmed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("confirmation_number", sa.String(40), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("review_rating", sa.Integer(), nullable=True),
        sa.Column("review_comment", sa.String(1000), nullable=True),
        sa.Column("reviewed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("source", sa.String(10), nullable=False, server_default=sa.text("'web'")),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["destination_id"], ["destinations.id"]),
        sa.ForeignKeyConstraint(["cancelled_by"], ["users.id"]),
        sa.UniqueConstraint("confirmation_number", name="uq_bookings_confirmation_number"),
        sa.CheckConstraint("end_date > start_date", name="ck_bookings_dates"),
        sa.CheckConstraint("guests >= 1 AND guests <= 20", name="ck_bookings_guests"),
        sa.CheckConstraint("total_price >= 0", name="ck_bookings_total_price"),
        sa.CheckConstraint(
            "review_rating IS NULL OR (review_rating >= 1 AND review_rating <= 5)",
            name="ck_bookings_review_rating",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'refunded')",
            name="ck_bookings_status",
        ),
    )
    op.create_index("idx_bookings_user", "bookings", ["user_id", "status"])
    op.create_index("idx_bookings_destination", "bookings", ["destination_id", "status"])
    op.create_index("idx_bookings_dates", "bookings", ["start_date", "end_date"])
    op.create_index("idx_bookings_payment_status", "bookings", ["payment_status"])
    op.create_index("idx_bookings_created_at", "bookings", [sa.text("created_at DESC")])

    # '[)' matches the half-open stay: check-out day D and check-in day D coexist
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT ex_bookings_no_overlap
        EXCLUDE USING gist (
            destination_id WITH =,
            daterange(start_date, end_date, '[)') WITH &&
        )
        WHERE (status IN ('pending', 'confirmed'))
        """
    )


def downgrade() -> None:
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_no_overlap")
    op.drop_index("idx_bookings_created_at", table_name="bookings")
    op.drop_index("idx_bookings_payment_status", table_name="bookings")
    op.drop_index("idx_bookings_dates", table_name="bookings")
    op.drop_index("idx_bookings_destination", table_name="bookings")
    op.drop_index("idx_bookings_user", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("idx_destinations_category", table_name="destinations")
    op.drop_index("idx_destinations_active", table_name="destinations")
    op.drop_table("destinations")
    op.drop_table("users")

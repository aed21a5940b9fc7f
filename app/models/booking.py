"""
Travel Booking Backend — Booking SQLAlchemy Model
===================================================

What:  ORM model for the `bookings` table: one reservation of a destination
       by a user for a half-open date range [start_date, end_date).
How:   The nested parts of a booking (guest details, cancellation,
       confirmation, review, request metadata) are flattened into prefixed
       columns; the variable-length additional guest list is a JSON column.
Who:   Persisted by BookingService; queried by AvailabilityChecker.

Table Design:
    - status: pending → confirmed → completed → refunded, or → cancelled
    - confirmation_number: unique (NULLs allowed until confirmed)
    - (destination_id, status, start_date, end_date): drives the overlap query
    - rows are never deleted; cancelled/refunded are terminal soft-states

    PostgreSQL additionally carries an exclusion constraint over active
    rows (see alembic/versions/001_create_booking_tables.py).
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    CASH = "cash"


class BookingSource(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    ADMIN = "admin"


# Statuses that hold the destination for their date range
ACTIVE_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    destination_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("destinations.id"), nullable=False
    )

    # ── Stay ──────────────────────────────────────────────────────────────
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    guests: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Price ─────────────────────────────────────────────────────────────
    price_per_night: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # ── Lifecycle ─────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    payment_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentMethod.CREDIT_CARD.value
    )
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    special_requests: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # ── Guest Details ─────────────────────────────────────────────────────
    primary_guest_name: Mapped[str] = mapped_column(String(50), nullable=False)
    primary_guest_email: Mapped[str] = mapped_column(String(255), nullable=False)
    primary_guest_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    # [{"name": "...", "age": 7}, ...]
    additional_guests: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    # ── Cancellation ──────────────────────────────────────────────────────
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))

    # ── Confirmation ──────────────────────────────────────────────────────
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    confirmation_number: Mapped[Optional[str]] = mapped_column(String(40), unique=True)

    # ── Completion / Refund ───────────────────────────────────────────────
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # ── Review ────────────────────────────────────────────────────────────
    review_rating: Mapped[Optional[int]] = mapped_column(Integer)
    review_comment: Mapped[Optional[str]] = mapped_column(String(1000))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # ── Request Metadata ──────────────────────────────────────────────────
    source: Mapped[str] = mapped_column(
        String(10), nullable=False, default=BookingSource.WEB.value
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(512))

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_bookings_dates"),
        CheckConstraint("guests >= 1 AND guests <= 20", name="ck_bookings_guests"),
        CheckConstraint("total_price >= 0", name="ck_bookings_total_price"),
        CheckConstraint(
            "review_rating IS NULL OR (review_rating >= 1 AND review_rating <= 5)",
            name="ck_bookings_review_rating",
        ),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed', 'refunded')",
            name="ck_bookings_status",
        ),
        Index("idx_bookings_user", "user_id", "status"),
        Index("idx_bookings_destination", "destination_id", "status"),
        Index("idx_bookings_dates", "start_date", "end_date"),
        Index("idx_bookings_payment_status", "payment_status"),
        Index("idx_bookings_created_at", created_at.desc()),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, destination={self.destination_id}, "
            f"{self.start_date}..{self.end_date}, status='{self.status}')>"
        )

"""
Travel Booking Backend — Destination SQLAlchemy Model
=======================================================

What:  ORM model for the `destinations` table: a bookable listing.
How:   Owns the nightly price, guest capacity and active flag that booking
       creation reads; keeps denormalized booking and review counters.
Who:   DestinationService (CRUD, counters, rating) and BookingService
       (capacity and price lookup).

Lifecycle:
    1. Created by an admin (is_active = True)
    2. booking_count / last_booked_at bumped on every new booking
    3. rating / review_count recomputed when a booking review is attached
    4. Deactivated instead of deleted; inactive destinations cannot be booked
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Destination(Base):
    __tablename__ = "destinations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="nature")

    # ── Pricing & Capacity ────────────────────────────────────────────────
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # ── Counters ──────────────────────────────────────────────────────────
    booking_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_booked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rating: Mapped[Decimal] = mapped_column(Numeric(2, 1), nullable=False, default=Decimal("0"))
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

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
        CheckConstraint("price >= 0", name="ck_destinations_price_non_negative"),
        CheckConstraint("max_guests >= 1", name="ck_destinations_max_guests"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_destinations_rating"),
        Index("idx_destinations_active", "is_active"),
        Index("idx_destinations_category", "category"),
    )

    def __repr__(self) -> str:
        return (
            f"<Destination(id={self.id}, name='{self.name}', "
            f"max_guests={self.max_guests}, active={self.is_active})>"
        )

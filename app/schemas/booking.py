"""
Travel Booking Backend — Booking Request/Response Schemas
===========================================================

What:  Pydantic models defining the booking API contract.
How:   FastAPI validates request bodies against the *Create/*Update models
       and serializes BookingResponse for every booking it returns.
Who:   Booking routes, BookingService, and the booking record manager
       (GuestDetails and ReviewInfo are shared with the lifecycle states).

Field-level rules here mirror the persisted constraints: guests 1–20,
special requests ≤ 500 chars, primary guest name 2–50 chars, rating 1–5,
review comment ≤ 1000 chars, additional guest age 0–120.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.booking import BookingSource, BookingStatus, PaymentMethod, PaymentStatus


STATUS_DISPLAY = {
    BookingStatus.PENDING.value: "Pending Confirmation",
    BookingStatus.CONFIRMED.value: "Confirmed",
    BookingStatus.CANCELLED.value: "Cancelled",
    BookingStatus.COMPLETED.value: "Completed",
    BookingStatus.REFUNDED.value: "Refunded",
}

PAYMENT_STATUS_DISPLAY = {
    PaymentStatus.PENDING.value: "Payment Pending",
    PaymentStatus.PAID.value: "Paid",
    PaymentStatus.FAILED.value: "Payment Failed",
    PaymentStatus.REFUNDED.value: "Refunded",
    PaymentStatus.PARTIALLY_REFUNDED.value: "Partially Refunded",
}


# ══════════════════════════════════════════════════════════════════════════
# Guest Details
# ══════════════════════════════════════════════════════════════════════════


class PrimaryGuest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class AdditionalGuest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    age: Optional[int] = Field(default=None, ge=0, le=120)


class GuestDetails(BaseModel):
    primary_guest: PrimaryGuest
    additional_guests: List[AdditionalGuest] = Field(default_factory=list)


class GuestDetailsInput(BaseModel):
    """Guest details as sent by clients; the primary guest may be omitted."""
    primary_guest: Optional[PrimaryGuest] = None
    additional_guests: List[AdditionalGuest] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class BookingCreate(BaseModel):
    """
    What:  Body of POST /api/bookings.
    When the primary guest is omitted, the booking owner's name and email
    are used instead. Date order and guest bounds are enforced by
    BookingService so they surface as validation_error (400).
    """
    destination_id: uuid.UUID
    start_date: date
    end_date: date
    guests: int
    special_requests: Optional[str] = Field(default=None, max_length=500)
    guest_details: Optional[GuestDetailsInput] = None
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD


class BookingMetadata(BaseModel):
    """Request origin captured by the HTTP layer, not sent by clients."""
    source: BookingSource = BookingSource.WEB
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class BookingUpdate(BaseModel):
    """
    Body of PUT /api/bookings/{id}.

    Owners may change special_requests and guest_details while the booking
    is pending. Payment fields are applied for admins only.
    """
    special_requests: Optional[str] = Field(default=None, max_length=500)
    guest_details: Optional[GuestDetails] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = Field(default=None, max_length=100)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    # Admin-only: cancel a confirmed booking whose stay has already started
    force: bool = False


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class CancellationInfo(BaseModel):
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[uuid.UUID] = None
    reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None


class ConfirmationInfo(BaseModel):
    confirmed_at: Optional[datetime] = None
    confirmation_number: Optional[str] = None


class ReviewInfo(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    """Full booking document as returned by every booking endpoint."""
    id: uuid.UUID
    user_id: uuid.UUID
    destination_id: uuid.UUID
    start_date: date
    end_date: date
    nights: int
    guests: int
    price_per_night: Decimal
    total_price: Decimal
    currency: str
    status: BookingStatus
    status_display: str
    payment_status: PaymentStatus
    payment_status_display: str
    payment_method: PaymentMethod
    special_requests: Optional[str] = None
    guest_details: GuestDetails
    cancellation: CancellationInfo
    confirmation: ConfirmationInfo
    review: ReviewInfo
    metadata: BookingMetadata
    is_active: bool
    is_upcoming: bool
    is_past: bool
    created_at: datetime
    updated_at: datetime


class CancelResponse(BaseModel):
    message: str = "Booking cancelled successfully"
    booking: BookingResponse
    refund_amount: Decimal


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_bookings: int
    has_next_page: bool
    has_prev_page: bool


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    pagination: Pagination


class ConflictingBooking(BaseModel):
    id: uuid.UUID
    start_date: date
    end_date: date
    status: BookingStatus


class AvailabilityResponse(BaseModel):
    available: bool
    conflicting_bookings: List[ConflictingBooking] = Field(default_factory=list)


class BookingStats(BaseModel):
    total_bookings: int = 0
    total_revenue: Decimal = Decimal("0")
    average_booking_value: Decimal = Decimal("0")
    average_guests: float = 0.0
    status_breakdown: Dict[str, int] = Field(default_factory=dict)

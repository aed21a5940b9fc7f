"""
Travel Booking Backend — Booking Record Manager
=================================================

What:  Validation, price computation, refund policy and status transitions
       for a single booking, independent of storage and HTTP.
How:   Each status is its own frozen pydantic model; `BookingState` is the
       discriminated union over them (discriminator: `status`). Transition
       functions take the variant they accept and return a new variant;
       they never mutate their input.
Who:   BookingService converts ORM rows to states, calls these functions,
       and writes the resulting state back.

State Machine:
    ┌─────────┐ confirm ┌───────────┐ complete ┌───────────┐ refund ┌──────────┐
    │ pending │────────▶│ confirmed │─────────▶│ completed │───────▶│ refunded │
    └────┬────┘         └─────┬─────┘          └───────────┘        └──────────┘
         │ cancel             │ cancel
         ▼                    ▼
    ┌───────────────────────────┐
    │         cancelled         │
    └───────────────────────────┘

    `completed` is never reached automatically; an admin call performs it
    once the stay has ended.

Every function here is pure and reentrant: time is always passed in.
"""

import math
import secrets
import time
import uuid
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.exceptions import (
    BookingNotCancellableError,
    CapacityExceededError,
    InvalidStateTransitionError,
    ReviewAlreadyExistsError,
    ReviewNotAllowedError,
    ValidationError,
)
from app.schemas.booking import ReviewInfo


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_CENTS = Decimal("0.01")
_DAY_SECONDS = 86400

# Refund tiers, in days before check-in
FULL_REFUND_AFTER_DAYS = 7
HALF_REFUND_FROM_DAYS = 3
HALF_REFUND_RATE = Decimal("0.5")


# ══════════════════════════════════════════════════════════════════════════
# Lifecycle States
# ══════════════════════════════════════════════════════════════════════════


class _BookingStateBase(BaseModel):
    """Fields every booking carries regardless of status."""

    model_config = ConfigDict(frozen=True)

    id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    destination_id: uuid.UUID
    start_date: date
    end_date: date
    guests: int
    price_per_night: Decimal
    total_price: Decimal
    currency: str = "USD"
    payment_status: str = "pending"


class PendingBooking(_BookingStateBase):
    status: Literal["pending"] = "pending"


class ConfirmedBooking(_BookingStateBase):
    status: Literal["confirmed"] = "confirmed"
    confirmed_at: datetime
    confirmation_number: str


class CancelledBooking(_BookingStateBase):
    status: Literal["cancelled"] = "cancelled"
    cancelled_at: datetime
    cancelled_by: Optional[uuid.UUID] = None
    reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    # Kept when a confirmed booking is cancelled
    confirmed_at: Optional[datetime] = None
    confirmation_number: Optional[str] = None


class CompletedBooking(_BookingStateBase):
    status: Literal["completed"] = "completed"
    confirmed_at: datetime
    confirmation_number: str
    completed_at: datetime
    review: Optional[ReviewInfo] = None


class RefundedBooking(_BookingStateBase):
    status: Literal["refunded"] = "refunded"
    confirmed_at: datetime
    confirmation_number: str
    completed_at: datetime
    refunded_at: datetime
    review: Optional[ReviewInfo] = None


BookingState = Annotated[
    Union[
        PendingBooking,
        ConfirmedBooking,
        CancelledBooking,
        CompletedBooking,
        RefundedBooking,
    ],
    Field(discriminator="status"),
]

booking_state_adapter: TypeAdapter = TypeAdapter(BookingState)


# ══════════════════════════════════════════════════════════════════════════
# Pricing & Validation
# ══════════════════════════════════════════════════════════════════════════


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / _DAY_SECONDS)


def count_nights(start_date: date, end_date: date) -> int:
    """Nights = ceiling of the day difference between end and start."""
    return _ceil_days(end_date - start_date)


def price_booking(nights: int, price_per_night: Decimal, guests: int) -> Decimal:
    """totalPrice = nights × pricePerNight × guests (no rounding)."""
    return Decimal(nights) * Decimal(price_per_night) * guests


def validate_guest_capacity(guests: int, max_guests: int) -> None:
    if guests > max_guests:
        raise CapacityExceededError(guests=guests, max_guests=max_guests)


def validate_stay(
    start_date: date,
    end_date: date,
    guests: int,
    today: date,
    max_guests_per_booking: int = 20,
) -> None:
    """
    Field-level checks on a booking request before any lookup happens.

    Raises:
        ValidationError: end not after start, start in the past, or guest
            count outside 1..max_guests_per_booking
    """
    if end_date <= start_date:
        raise ValidationError("End date must be after start date", field="end_date")
    if start_date < today:
        raise ValidationError("Start date cannot be in the past", field="start_date")
    if not 1 <= guests <= max_guests_per_booking:
        raise ValidationError(
            f"Number of guests must be between 1 and {max_guests_per_booking}",
            field="guests",
        )


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_confirmation_number(prefix: str = "TRV", now_ms: Optional[int] = None) -> str:
    """
    Format: PREFIX-<base36 epoch millis>-<5 random base36 chars>, upper-cased.

    Example: TRV-LXQ1Z8K2-AB12C
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"{prefix}-{_to_base36(now_ms)}-{suffix}".upper()


# ══════════════════════════════════════════════════════════════════════════
# Refund Policy
# ══════════════════════════════════════════════════════════════════════════


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def days_until_start(start_date: date, now: datetime) -> int:
    """ceil((startDate − now) / 1 day), with the stay starting at 00:00 UTC."""
    start = datetime.combine(start_date, dt_time.min, tzinfo=timezone.utc)
    return _ceil_days(start - _as_utc(now))


def calculate_refund(total_price: Decimal, start_date: date, now: datetime) -> Decimal:
    """
    Tiered cancellation refund.

        days until start > 7   → 100% of total_price
        3 ≤ days ≤ 7           → 50%, rounded once to cents
        days < 3               → 0
    """
    days = days_until_start(start_date, now)
    total = Decimal(total_price)
    if days > FULL_REFUND_AFTER_DAYS:
        return total
    if days >= HALF_REFUND_FROM_DAYS:
        return (total * HALF_REFUND_RATE).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return Decimal("0.00")


# ══════════════════════════════════════════════════════════════════════════
# Transitions
# ══════════════════════════════════════════════════════════════════════════


def _carry(state: _BookingStateBase) -> dict:
    return state.model_dump(include=set(_BookingStateBase.model_fields))


def confirm(state: BookingState, now: datetime, prefix: str = "TRV") -> ConfirmedBooking:
    if not isinstance(state, PendingBooking):
        raise InvalidStateTransitionError(
            state.status, "confirm", "Only pending bookings can be confirmed"
        )
    return ConfirmedBooking(
        **_carry(state),
        confirmed_at=now,
        confirmation_number=generate_confirmation_number(prefix),
    )


def cancel(
    state: BookingState,
    reason: Optional[str],
    actor_id: Optional[uuid.UUID],
    now: datetime,
    override: bool = False,
) -> CancelledBooking:
    """
    Cancel a pending or confirmed booking.

    A confirmed booking whose start date is today or earlier has already
    started; only `override` (admin) may cancel it.

    Raises:
        BookingNotCancellableError: any other status, or a started stay
            without override
    """
    if isinstance(state, PendingBooking):
        confirmed_at, confirmation_number = None, None
    elif isinstance(state, ConfirmedBooking):
        if state.start_date <= _as_utc(now).date() and not override:
            raise BookingNotCancellableError(
                "Cannot cancel a booking that has already started",
                context={"start_date": state.start_date.isoformat()},
            )
        confirmed_at, confirmation_number = state.confirmed_at, state.confirmation_number
    else:
        raise BookingNotCancellableError(
            f"A {state.status} booking cannot be cancelled",
            context={"current_status": state.status},
        )

    return CancelledBooking(
        **_carry(state),
        cancelled_at=now,
        cancelled_by=actor_id,
        reason=reason,
        confirmed_at=confirmed_at,
        confirmation_number=confirmation_number,
    )


def complete(state: BookingState, now: datetime) -> CompletedBooking:
    if not isinstance(state, ConfirmedBooking):
        raise InvalidStateTransitionError(
            state.status, "complete", "Only confirmed bookings can be completed"
        )
    if state.end_date > _as_utc(now).date():
        raise InvalidStateTransitionError(
            state.status,
            "complete",
            "A booking can only be completed after its stay has ended",
        )
    return CompletedBooking(
        **_carry(state),
        confirmed_at=state.confirmed_at,
        confirmation_number=state.confirmation_number,
        completed_at=now,
    )


def refund(state: BookingState, now: datetime) -> RefundedBooking:
    if not isinstance(state, CompletedBooking):
        raise InvalidStateTransitionError(
            state.status, "refund", "Only completed bookings can be refunded"
        )
    carried = _carry(state)
    carried["payment_status"] = "refunded"
    return RefundedBooking(
        **carried,
        confirmed_at=state.confirmed_at,
        confirmation_number=state.confirmation_number,
        completed_at=state.completed_at,
        refunded_at=now,
        review=state.review,
    )


def attach_review(
    state: BookingState,
    rating: int,
    comment: Optional[str],
    now: datetime,
) -> CompletedBooking:
    if not isinstance(state, CompletedBooking):
        raise ReviewNotAllowedError(state.status)
    if state.review is not None and state.review.rating is not None:
        raise ReviewAlreadyExistsError()
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5", field="rating")
    return state.model_copy(
        update={"review": ReviewInfo(rating=rating, comment=comment, reviewed_at=now)}
    )

"""
Travel Booking Backend — Booking Service (Lifecycle Orchestrator)
===================================================================

What:  The single entry point that combines availability checking,
       capacity validation, pricing and persistence for bookings.
How:   Loads rows, converts them to lifecycle states, delegates every rule
       to the booking record manager, and writes the resulting state back.
Who:   Booking routes (HTTP) and anything else that books on a user's behalf.

Create Flow (POST /api/bookings):
    ┌──────────┐   ┌──────────────────── destination lock ────────────────────┐
    │ Validate │──▶│ Destination ─▶ Availability ─▶ Capacity ─▶ Price ─▶ Insert │
    │  fields  │   │   active?       no overlap?      fits?              commit │
    └──────────┘   └──────────────────────────────────────────────────────────┘

    Steps inside the lock never interleave with another create for the
    same destination. The commit happens before the lock is released.

Retry Policy:
    Only check_availability retries StorageUnavailableError (tenacity,
    exponential backoff with jitter). Create/cancel/confirm never retry:
    a retry could submit the same business action twice.
"""

import logging
import math
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import Settings
from app.database import STORAGE_ERRORS
from app.exceptions import (
    DatabaseError,
    DatesUnavailableError,
    NotFoundError,
    PermissionDeniedError,
    StorageUnavailableError,
    ValidationError,
)
from app.models.booking import Booking, BookingStatus
from app.models.user import User
from app.schemas.booking import (
    PAYMENT_STATUS_DISPLAY,
    STATUS_DISPLAY,
    AvailabilityResponse,
    BookingCreate,
    BookingListResponse,
    BookingMetadata,
    BookingResponse,
    BookingStats,
    BookingUpdate,
    CancellationInfo,
    CancelResponse,
    ConfirmationInfo,
    ConflictingBooking,
    GuestDetails,
    Pagination,
    PrimaryGuest,
    ReviewInfo,
)
from app.security import Actor
from app.services import booking_records
from app.services.availability import AvailabilityChecker
from app.services.booking_records import BookingState, CancelledBooking, booking_state_adapter
from app.services.destination_locks import DestinationLocks
from app.services.destination_service import DestinationService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Row ⇄ State ⇄ Response
# ══════════════════════════════════════════════════════════════════════════

_STATE_FIELDS = (
    "confirmed_at",
    "confirmation_number",
    "cancelled_at",
    "cancelled_by",
    "refund_amount",
    "completed_at",
    "refunded_at",
)


def to_state(record: Booking) -> BookingState:
    """Build the lifecycle variant matching the row's status."""
    review = None
    if record.review_rating is not None:
        review = ReviewInfo(
            rating=record.review_rating,
            comment=record.review_comment,
            reviewed_at=record.reviewed_at,
        )
    data = {
        "id": record.id,
        "user_id": record.user_id,
        "destination_id": record.destination_id,
        "start_date": record.start_date,
        "end_date": record.end_date,
        "guests": record.guests,
        "price_per_night": record.price_per_night,
        "total_price": record.total_price,
        "currency": record.currency,
        "payment_status": record.payment_status,
        "status": record.status,
        "reason": record.cancellation_reason,
        "review": review,
    }
    for field in _STATE_FIELDS:
        data[field] = getattr(record, field)
    # Fields a variant does not declare are ignored by pydantic
    return booking_state_adapter.validate_python(data)


def apply_state(record: Booking, state: BookingState) -> None:
    """Write a lifecycle variant back onto its row."""
    record.status = state.status
    record.payment_status = state.payment_status
    declared = type(state).model_fields
    for field in _STATE_FIELDS:
        if field in declared:
            setattr(record, field, getattr(state, field))
    if isinstance(state, CancelledBooking):
        record.cancellation_reason = state.reason
    review = getattr(state, "review", None)
    if review is not None:
        record.review_rating = review.rating
        record.review_comment = review.comment
        record.reviewed_at = review.reviewed_at


def to_response(record: Booking, today: date) -> BookingResponse:
    active = record.is_active
    return BookingResponse(
        id=record.id,
        user_id=record.user_id,
        destination_id=record.destination_id,
        start_date=record.start_date,
        end_date=record.end_date,
        nights=booking_records.count_nights(record.start_date, record.end_date),
        guests=record.guests,
        price_per_night=record.price_per_night,
        total_price=record.total_price,
        currency=record.currency,
        status=record.status,
        status_display=STATUS_DISPLAY.get(record.status, record.status),
        payment_status=record.payment_status,
        payment_status_display=PAYMENT_STATUS_DISPLAY.get(
            record.payment_status, record.payment_status
        ),
        payment_method=record.payment_method,
        special_requests=record.special_requests,
        guest_details=GuestDetails(
            primary_guest=PrimaryGuest(
                name=record.primary_guest_name,
                email=record.primary_guest_email,
                phone=record.primary_guest_phone,
            ),
            additional_guests=record.additional_guests or [],
        ),
        cancellation=CancellationInfo(
            cancelled_at=record.cancelled_at,
            cancelled_by=record.cancelled_by,
            reason=record.cancellation_reason,
            refund_amount=record.refund_amount,
        ),
        confirmation=ConfirmationInfo(
            confirmed_at=record.confirmed_at,
            confirmation_number=record.confirmation_number,
        ),
        review=ReviewInfo(
            rating=record.review_rating,
            comment=record.review_comment,
            reviewed_at=record.reviewed_at,
        ),
        metadata=BookingMetadata(
            source=record.source,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        ),
        is_active=active,
        is_upcoming=active and record.start_date > today,
        is_past=record.end_date < today,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# Service
# ══════════════════════════════════════════════════════════════════════════


class BookingService:
    """
    Booking lifecycle operations.

    Construction takes every collaborator and setting explicitly; the app
    entry point builds one instance (see `from_settings`) and hands it to
    the routes through `app.state`.

    Error Handling Strategy:
        Business rejections propagate as their own exception types.
        Connection failures become StorageUnavailableError; other database
        failures become DatabaseError with the detail logged server-side.
    """

    def __init__(
        self,
        checker: Optional[AvailabilityChecker] = None,
        destinations: Optional[DestinationService] = None,
        locks: Optional[DestinationLocks] = None,
        confirmation_prefix: str = "TRV",
        default_currency: str = "USD",
        max_guests_per_booking: int = 20,
        retry_attempts: int = 3,
        retry_min_wait: float = 0.2,
        retry_max_wait: float = 2.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.checker = checker or AvailabilityChecker()
        self.destinations = destinations or DestinationService()
        self.locks = locks or DestinationLocks()
        self.confirmation_prefix = confirmation_prefix
        self.default_currency = default_currency
        self.max_guests_per_booking = max_guests_per_booking
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "BookingService":
        options = dict(
            confirmation_prefix=settings.confirmation_prefix,
            default_currency=settings.default_currency,
            max_guests_per_booking=settings.max_guests_per_booking,
            retry_attempts=settings.retry_max_attempts,
            retry_min_wait=settings.retry_min_wait,
            retry_max_wait=settings.retry_max_wait,
        )
        options.update(overrides)
        return cls(**options)

    # ── Create ────────────────────────────────────────────────────────────

    async def create_booking(
        self,
        db: AsyncSession,
        actor: Actor,
        payload: BookingCreate,
        metadata: Optional[BookingMetadata] = None,
    ) -> BookingResponse:
        """
        Book a destination for [start_date, end_date) in `pending` status.

        Workflow Steps:
            0. Field checks (dates, guest count) and owner lookup
            1. Destination must exist and be active
            2. No active booking may overlap the dates
            3. Guests must fit the destination's capacity
            4. Price = nights × price per night × guests
            5. Insert, bump destination counters, commit

        Raises:
            ValidationError, DestinationNotFoundError, DatesUnavailableError,
            CapacityExceededError, StorageUnavailableError, DatabaseError
        """
        now = self.clock()
        booking_records.validate_stay(
            payload.start_date,
            payload.end_date,
            payload.guests,
            today=now.date(),
            max_guests_per_booking=self.max_guests_per_booking,
        )
        primary_guest = await self._primary_guest(db, actor, payload)
        metadata = metadata or BookingMetadata()

        async with self.locks.hold(payload.destination_id):
            destination = await self.destinations.get_bookable(
                db, payload.destination_id, for_update=True
            )

            conflicts = await self.checker.find_conflicts(
                db, destination.id, payload.start_date, payload.end_date
            )
            if conflicts:
                raise DatesUnavailableError(
                    payload.start_date, payload.end_date, conflicts=len(conflicts)
                )

            booking_records.validate_guest_capacity(payload.guests, destination.max_guests)

            nights = booking_records.count_nights(payload.start_date, payload.end_date)
            total_price = booking_records.price_booking(nights, destination.price, payload.guests)

            additional = []
            if payload.guest_details is not None:
                additional = [g.model_dump() for g in payload.guest_details.additional_guests]

            record = Booking(
                id=uuid.uuid4(),
                user_id=actor.user_id,
                destination_id=destination.id,
                start_date=payload.start_date,
                end_date=payload.end_date,
                guests=payload.guests,
                price_per_night=destination.price,
                total_price=total_price,
                currency=destination.currency or self.default_currency,
                status=BookingStatus.PENDING.value,
                payment_method=payload.payment_method.value,
                special_requests=payload.special_requests,
                primary_guest_name=primary_guest.name,
                primary_guest_email=primary_guest.email,
                primary_guest_phone=primary_guest.phone,
                additional_guests=additional,
                source=metadata.source.value,
                ip_address=metadata.ip_address,
                user_agent=metadata.user_agent,
                created_at=now,
                updated_at=now,
            )
            db.add(record)
            self.destinations.record_booking(destination, now)

            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.warning(
                    "Insert rejected by overlap constraint for destination %s: %s",
                    destination.id, e,
                )
                raise DatesUnavailableError(payload.start_date, payload.end_date) from e
            except STORAGE_ERRORS as e:
                await db.rollback()
                raise StorageUnavailableError(
                    context={"destination_id": str(destination.id)}
                ) from e

        logger.info(
            "Booking %s created: destination=%s %s..%s guests=%d total=%s",
            record.id, record.destination_id, record.start_date,
            record.end_date, record.guests, record.total_price,
        )
        return to_response(record, now.date())

    async def _primary_guest(
        self, db: AsyncSession, actor: Actor, payload: BookingCreate
    ) -> PrimaryGuest:
        user = await db.get(User, actor.user_id)
        if user is None or not user.is_active:
            raise NotFoundError(resource="user", resource_id=str(actor.user_id))

        if payload.guest_details is not None and payload.guest_details.primary_guest:
            return payload.guest_details.primary_guest
        return PrimaryGuest(name=user.name, email=user.email)

    # ── Lifecycle Transitions ─────────────────────────────────────────────

    async def cancel_booking(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
        force: bool = False,
    ) -> CancelResponse:
        """
        Cancel a booking and record the refund owed.

        Owner or admin only. `force` lets an admin cancel a confirmed stay
        that has already started; it is ignored for everyone else.
        The refund is computed from the booking as it stood before the
        cancellation.
        """
        record = await self._load(db, booking_id)
        self._authorize(record, actor)

        now = self.clock()
        state = to_state(record)
        cancelled = booking_records.cancel(
            state, reason, actor.user_id, now, override=force and actor.is_admin
        )
        refund_amount = booking_records.calculate_refund(state.total_price, state.start_date, now)
        cancelled = cancelled.model_copy(update={"refund_amount": refund_amount})

        apply_state(record, cancelled)
        await self._flush(db, "cancel")
        logger.info(
            "Booking %s cancelled by %s (refund %s %s)",
            record.id, actor.user_id, refund_amount, record.currency,
        )
        return CancelResponse(booking=to_response(record, now.date()), refund_amount=refund_amount)

    async def confirm_booking(
        self, db: AsyncSession, booking_id: uuid.UUID, actor: Actor
    ) -> BookingResponse:
        self._require_admin(actor)
        record = await self._load(db, booking_id)
        now = self.clock()

        confirmed = booking_records.confirm(to_state(record), now, self.confirmation_prefix)
        apply_state(record, confirmed)
        await self._flush(db, "confirm")
        logger.info("Booking %s confirmed: %s", record.id, record.confirmation_number)
        return to_response(record, now.date())

    async def complete_booking(
        self, db: AsyncSession, booking_id: uuid.UUID, actor: Actor
    ) -> BookingResponse:
        """Admin marks a confirmed booking completed once its stay has ended."""
        self._require_admin(actor)
        record = await self._load(db, booking_id)
        now = self.clock()

        apply_state(record, booking_records.complete(to_state(record), now))
        await self._flush(db, "complete")
        logger.info("Booking %s completed", record.id)
        return to_response(record, now.date())

    async def refund_booking(
        self, db: AsyncSession, booking_id: uuid.UUID, actor: Actor
    ) -> BookingResponse:
        self._require_admin(actor)
        record = await self._load(db, booking_id)
        now = self.clock()

        apply_state(record, booking_records.refund(to_state(record), now))
        await self._flush(db, "refund")
        logger.info("Booking %s refunded", record.id)
        return to_response(record, now.date())

    async def add_review(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        actor: Actor,
        rating: int,
        comment: Optional[str] = None,
    ) -> BookingResponse:
        """Attach the owner's review and refresh the destination's rating."""
        record = await self._load(db, booking_id)
        if record.user_id != actor.user_id:
            raise PermissionDeniedError("You can only review your own bookings")

        now = self.clock()
        apply_state(record, booking_records.attach_review(to_state(record), rating, comment, now))
        await self._flush(db, "review")
        await self.destinations.refresh_rating(db, record.destination_id)
        logger.info("Booking %s reviewed: rating=%d", record.id, rating)
        return to_response(record, now.date())

    # ── Update ────────────────────────────────────────────────────────────

    async def update_booking(
        self,
        db: AsyncSession,
        booking_id: uuid.UUID,
        actor: Actor,
        payload: BookingUpdate,
    ) -> BookingResponse:
        """
        Owners edit special requests and guest details while pending;
        admins may edit those plus payment fields at any status.
        Dates, guests and status are never edited here.
        """
        record = await self._load(db, booking_id)
        is_owner = record.user_id == actor.user_id
        if not actor.is_admin and not (is_owner and record.status == BookingStatus.PENDING.value):
            raise PermissionDeniedError("You cannot update this booking")

        provided = payload.model_fields_set
        if "special_requests" in provided:
            record.special_requests = payload.special_requests
        if "guest_details" in provided and payload.guest_details is not None:
            guest = payload.guest_details.primary_guest
            record.primary_guest_name = guest.name
            record.primary_guest_email = guest.email
            record.primary_guest_phone = guest.phone
            record.additional_guests = [
                g.model_dump() for g in payload.guest_details.additional_guests
            ]
        if actor.is_admin:
            if payload.payment_status is not None:
                record.payment_status = payload.payment_status.value
            if payload.payment_method is not None:
                record.payment_method = payload.payment_method.value
            if "payment_id" in provided:
                record.payment_id = payload.payment_id

        record.updated_at = self.clock()
        await self._flush(db, "update")
        return to_response(record, self.clock().date())

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_booking(
        self, db: AsyncSession, booking_id: uuid.UUID, actor: Actor
    ) -> BookingResponse:
        record = await self._load(db, booking_id)
        self._authorize(record, actor)
        return to_response(record, self.clock().date())

    async def list_bookings(
        self,
        db: AsyncSession,
        actor: Actor,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        destination_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        start_from: Optional[date] = None,
        start_to: Optional[date] = None,
    ) -> BookingListResponse:
        """
        Offset-paginated listing, newest first.

        Non-admins always see only their own bookings; `user_id` is honoured
        for admins only.
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        filters = []
        if not actor.is_admin:
            filters.append(Booking.user_id == actor.user_id)
        elif user_id is not None:
            filters.append(Booking.user_id == user_id)
        if status:
            filters.append(Booking.status == status)
        if destination_id is not None:
            filters.append(Booking.destination_id == destination_id)
        if start_from is not None:
            filters.append(Booking.start_date >= start_from)
        if start_to is not None:
            filters.append(Booking.start_date <= start_to)

        try:
            result = await db.execute(
                select(Booking)
                .where(*filters)
                .order_by(Booking.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            records = list(result.scalars().all())
            total = (
                await db.execute(select(func.count(Booking.id)).where(*filters))
            ).scalar() or 0
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError() from e

        total_pages = math.ceil(total / limit) if total else 0
        today = self.clock().date()
        return BookingListResponse(
            bookings=[to_response(r, today) for r in records],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_bookings=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )

    async def get_booking_stats(
        self,
        db: AsyncSession,
        actor: Actor,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> BookingStats:
        self._require_admin(actor)

        filters = []
        if created_from is not None:
            filters.append(Booking.created_at >= created_from)
        if created_to is not None:
            filters.append(Booking.created_at <= created_to)

        totals = (
            await db.execute(
                select(
                    func.count(Booking.id),
                    func.sum(Booking.total_price),
                    func.avg(Booking.total_price),
                    func.avg(Booking.guests),
                ).where(*filters)
            )
        ).one()
        breakdown = await db.execute(
            select(Booking.status, func.count(Booking.id)).where(*filters).group_by(Booking.status)
        )

        count, revenue, average_value, average_guests = totals
        return BookingStats(
            total_bookings=count or 0,
            total_revenue=Decimal(str(revenue or 0)),
            average_booking_value=Decimal(str(average_value or 0)).quantize(Decimal("0.01")),
            average_guests=round(float(average_guests or 0), 2),
            status_breakdown={status: n for status, n in breakdown.all()},
        )

    async def check_availability(
        self,
        db: AsyncSession,
        destination_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> AvailabilityResponse:
        """
        Pre-booking availability lookup. Read-only, so connection failures
        are retried with exponential backoff before giving up.
        """
        async for attempt in self._read_retrying():
            with attempt:
                await self.destinations.get_bookable(db, destination_id)
                conflicts = await self.checker.find_conflicts(
                    db, destination_id, start_date, end_date
                )

        return AvailabilityResponse(
            available=not conflicts,
            conflicting_bookings=[
                ConflictingBooking(
                    id=b.id, start_date=b.start_date, end_date=b.end_date, status=b.status
                )
                for b in conflicts
            ],
        )

    # ── Helpers ───────────────────────────────────────────────────────────

    def _read_retrying(self) -> AsyncRetrying:
        """Retry policy for read-only lookups: StorageUnavailableError only."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential_jitter(multiplier=self.retry_min_wait, max=self.retry_max_wait),
            retry=retry_if_exception_type(StorageUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def _load(self, db: AsyncSession, booking_id: uuid.UUID) -> Booking:
        try:
            record = await db.get(Booking, booking_id)
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError(context={"booking_id": str(booking_id)}) from e
        if record is None:
            raise NotFoundError(resource="booking", resource_id=str(booking_id))
        return record

    @staticmethod
    def _authorize(record: Booking, actor: Actor) -> None:
        if not actor.is_admin and record.user_id != actor.user_id:
            raise PermissionDeniedError()

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Admin access required")

    @staticmethod
    async def _flush(db: AsyncSession, action: str) -> None:
        try:
            await db.flush()
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError() from e
        except IntegrityError as e:
            logger.error("Booking %s violated a constraint: %s", action, e)
            raise DatabaseError(
                message=f"Could not {action} the booking. Please try again.",
                context={"action": action},
            ) from e

"""
Travel Booking Backend — Booking Service Tests
================================================

What:  The booking lifecycle end to end against a real SQLite database:
       create, conflicts, capacity, cancel/refund tiers, confirm, complete,
       review, refund, update, listing, stats and the storage retry policy.
How:   `service` runs on a frozen clock (2024-05-01 12:00 UTC) that tests
       move forward by assigning `clock.now`.
"""

import asyncio
import warnings
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.exceptions import (
    BookingNotCancellableError,
    CapacityExceededError,
    DatesUnavailableError,
    DestinationNotFoundError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ReviewAlreadyExistsError,
    ReviewNotAllowedError,
    StorageUnavailableError,
    ValidationError,
)
from app.models.booking import Booking
from app.models.destination import Destination
from app.schemas.booking import BookingCreate, BookingUpdate, GuestDetails, PrimaryGuest
from app.security import Actor
from app.services.booking_service import BookingService
from app.services.destination_service import DestinationService


def booking_request(destination, start, end, guests=2, **extra) -> BookingCreate:
    return BookingCreate(
        destination_id=destination.id,
        start_date=start,
        end_date=end,
        guests=guests,
        **extra,
    )


async def count_bookings(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(Booking.id)))).scalar()


class TestCreateBooking:

    @pytest.mark.asyncio
    async def test_creates_pending_booking(self, service, db_session, seed, owner, session_factory):
        result = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )

        assert result.status == "pending"
        assert result.nights == 4
        assert result.total_price == Decimal("800.00")
        assert result.price_per_night == Decimal("100.00")
        assert result.currency == "USD"
        assert result.guest_details.primary_guest.name == "Ada Lovelace"
        assert result.guest_details.primary_guest.email == "ada@example.com"
        assert result.is_active is True
        assert result.is_upcoming is True
        assert result.confirmation.confirmation_number is None

        async with session_factory() as session:
            villa = await session.get(Destination, seed.villa.id)
            assert villa.booking_count == 1
            assert villa.last_booked_at is not None
        assert await count_bookings(session_factory) == 1

    @pytest.mark.asyncio
    async def test_explicit_primary_guest_wins(self, service, db_session, seed, owner):
        payload = booking_request(
            seed.villa,
            date(2024, 6, 1),
            date(2024, 6, 3),
            guest_details={
                "primary_guest": {"name": "Charles Babbage", "email": "CB@Example.com"},
                "additional_guests": [{"name": "Ada Jr", "age": 7}],
            },
        )
        result = await service.create_booking(db_session, owner, payload)

        assert result.guest_details.primary_guest.name == "Charles Babbage"
        assert result.guest_details.primary_guest.email == "cb@example.com"
        assert result.guest_details.additional_guests[0].age == 7

    @pytest.mark.asyncio
    async def test_capacity_exceeded_persists_nothing(
        self, service, db_session, seed, owner, session_factory
    ):
        with pytest.raises(CapacityExceededError):
            await service.create_booking(
                db_session, owner,
                booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5), guests=5),
            )

        assert await count_bookings(session_factory) == 0
        async with session_factory() as session:
            villa = await session.get(Destination, seed.villa.id)
            assert villa.booking_count == 0

    @pytest.mark.asyncio
    async def test_overlap_with_confirmed_booking(self, service, db_session, seed, owner, admin):
        first = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.confirm_booking(db_session, first.id, admin)
        await db_session.commit()

        with pytest.raises(DatesUnavailableError) as exc_info:
            await service.create_booking(
                db_session, owner, booking_request(seed.villa, date(2024, 6, 3), date(2024, 6, 4))
            )
        assert exc_info.value.status_code == 409
        assert exc_info.value.context["conflicting_bookings"] == 1

    @pytest.mark.asyncio
    async def test_same_day_turnover_allowed(self, service, db_session, seed, owner):
        await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        second = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 5), date(2024, 6, 8))
        )
        assert second.status == "pending"

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_dates(self, service, db_session, seed, owner):
        first = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.cancel_booking(db_session, first.id, owner)
        await db_session.commit()

        again = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        assert again.id != first.id

    @pytest.mark.asyncio
    async def test_inactive_destination(self, service, db_session, seed, owner):
        with pytest.raises(DestinationNotFoundError):
            await service.create_booking(
                db_session, owner, booking_request(seed.closed, date(2024, 6, 1), date(2024, 6, 2))
            )

    @pytest.mark.asyncio
    async def test_unknown_destination(self, service, db_session, seed, owner):
        payload = BookingCreate(
            destination_id=uuid.uuid4(),
            start_date=date(2024, 6, 1),
            end_date=date(2024, 6, 2),
            guests=1,
        )
        with pytest.raises(DestinationNotFoundError):
            await service.create_booking(db_session, owner, payload)

    @pytest.mark.asyncio
    async def test_unknown_user(self, service, db_session, seed):
        stranger = Actor(user_id=uuid.uuid4(), email="nobody@example.com")
        with pytest.raises(NotFoundError):
            await service.create_booking(
                db_session, stranger,
                booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 2)),
            )

    @pytest.mark.asyncio
    async def test_start_in_past(self, service, db_session, seed, owner):
        with pytest.raises(ValidationError):
            await service.create_booking(
                db_session, owner, booking_request(seed.villa, date(2024, 4, 1), date(2024, 4, 3))
            )

    @pytest.mark.asyncio
    async def test_concurrent_overlapping_requests(self, service, seed, owner, session_factory):
        """Two overlapping creates racing on one destination: exactly one wins."""

        async def attempt(start, end):
            async with session_factory() as session:
                return await service.create_booking(
                    session, owner, booking_request(seed.villa, start, end)
                )

        results = await asyncio.gather(
            attempt(date(2024, 6, 1), date(2024, 6, 5)),
            attempt(date(2024, 6, 3), date(2024, 6, 7)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], DatesUnavailableError)
        assert await count_bookings(session_factory) == 1

    @pytest.mark.asyncio
    async def test_constraint_violation_reported_as_dates_unavailable(self, mock_db_session):
        destination = Destination(
            id=uuid.uuid4(), name="Villa", location="Here",
            price=Decimal("100.00"), currency="USD", max_guests=4, is_active=True,
        )
        destinations = MagicMock(spec=DestinationService)
        destinations.get_bookable = AsyncMock(return_value=destination)
        checker = MagicMock()
        checker.find_conflicts = AsyncMock(return_value=[])
        mock_db_session.get = AsyncMock(
            return_value=MagicMock(is_active=True, email="ada@example.com")
        )
        mock_db_session.get.return_value.name = "Ada Lovelace"
        mock_db_session.commit = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("ex_bookings_no_overlap"))
        )

        service = BookingService(
            checker=checker,
            destinations=destinations,
            clock=lambda: datetime(2024, 5, 1, tzinfo=timezone.utc),
        )
        with pytest.raises(DatesUnavailableError):
            await service.create_booking(
                mock_db_session,
                Actor(user_id=uuid.uuid4()),
                booking_request(destination, date(2024, 6, 1), date(2024, 6, 2)),
            )
        mock_db_session.rollback.assert_awaited_once()


class TestCancelBooking:

    async def _book(self, service, db_session, seed, owner, start, end):
        return await service.create_booking(
            db_session, owner, booking_request(seed.villa, start, end, guests=2)
        )

    @pytest.mark.asyncio
    async def test_ten_days_out_full_refund(self, service, db_session, seed, owner):
        booking = await self._book(service, db_session, seed, owner, date(2024, 5, 11), date(2024, 5, 13))
        result = await service.cancel_booking(db_session, booking.id, owner, reason="Change of plans")

        assert result.refund_amount == Decimal("400.00")
        assert result.booking.status == "cancelled"
        assert result.booking.cancellation.reason == "Change of plans"
        assert result.booking.cancellation.cancelled_by == owner.user_id
        assert result.booking.cancellation.refund_amount == Decimal("400.00")
        assert result.booking.is_active is False

    @pytest.mark.asyncio
    async def test_five_days_out_half_refund(self, service, db_session, seed, owner):
        booking = await self._book(service, db_session, seed, owner, date(2024, 5, 6), date(2024, 5, 8))
        result = await service.cancel_booking(db_session, booking.id, owner)
        assert result.refund_amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_one_day_out_no_refund(self, service, db_session, seed, owner):
        booking = await self._book(service, db_session, seed, owner, date(2024, 5, 2), date(2024, 5, 4))
        result = await service.cancel_booking(db_session, booking.id, owner)
        assert result.refund_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_exactly_seven_days_half_refund(self, service, clock, db_session, seed, owner):
        clock.now = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
        booking = await self._book(service, db_session, seed, owner, date(2024, 5, 8), date(2024, 5, 10))
        result = await service.cancel_booking(db_session, booking.id, owner)
        assert result.refund_amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_other_user_denied(self, service, db_session, seed, owner, other):
        booking = await self._book(service, db_session, seed, owner, date(2024, 6, 1), date(2024, 6, 3))
        with pytest.raises(PermissionDeniedError):
            await service.cancel_booking(db_session, booking.id, other)

    @pytest.mark.asyncio
    async def test_admin_may_cancel(self, service, db_session, seed, owner, admin):
        booking = await self._book(service, db_session, seed, owner, date(2024, 6, 1), date(2024, 6, 3))
        result = await service.cancel_booking(db_session, booking.id, admin)
        assert result.booking.cancellation.cancelled_by == admin.user_id

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, service, db_session, seed, owner):
        booking = await self._book(service, db_session, seed, owner, date(2024, 6, 1), date(2024, 6, 3))
        await service.cancel_booking(db_session, booking.id, owner)
        with pytest.raises(BookingNotCancellableError):
            await service.cancel_booking(db_session, booking.id, owner)

    @pytest.mark.asyncio
    async def test_started_stay_needs_admin_force(
        self, service, clock, db_session, seed, owner, admin
    ):
        booking = await self._book(service, db_session, seed, owner, date(2024, 5, 2), date(2024, 5, 6))
        await service.confirm_booking(db_session, booking.id, admin)
        clock.now = datetime(2024, 5, 3, 9, 0, tzinfo=timezone.utc)

        with pytest.raises(BookingNotCancellableError):
            await service.cancel_booking(db_session, booking.id, owner, force=True)
        with pytest.raises(BookingNotCancellableError):
            await service.cancel_booking(db_session, booking.id, admin)

        result = await service.cancel_booking(db_session, booking.id, admin, force=True)
        assert result.booking.status == "cancelled"
        assert result.refund_amount == Decimal("0.00")
        assert result.booking.confirmation.confirmation_number is not None

    @pytest.mark.asyncio
    async def test_unknown_booking(self, service, db_session, seed, owner):
        with pytest.raises(NotFoundError):
            await service.cancel_booking(db_session, uuid.uuid4(), owner)


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_confirm_sets_confirmation(self, service, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        confirmed = await service.confirm_booking(db_session, booking.id, admin)

        assert confirmed.status == "confirmed"
        assert confirmed.confirmation.confirmation_number.startswith("TRV-")
        assert confirmed.confirmation.confirmed_at is not None

    @pytest.mark.asyncio
    async def test_confirm_twice_rejected(self, service, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.confirm_booking(db_session, booking.id, admin)
        with pytest.raises(InvalidStateTransitionError):
            await service.confirm_booking(db_session, booking.id, admin)

    @pytest.mark.asyncio
    async def test_confirm_requires_admin(self, service, db_session, seed, owner):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        with pytest.raises(PermissionDeniedError):
            await service.confirm_booking(db_session, booking.id, owner)

    @pytest.mark.asyncio
    async def test_complete_review_refund(self, service, clock, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.confirm_booking(db_session, booking.id, admin)

        with pytest.raises(InvalidStateTransitionError):
            await service.complete_booking(db_session, booking.id, admin)
        with pytest.raises(ReviewNotAllowedError):
            await service.add_review(db_session, booking.id, owner, 5, "Too early")

        clock.now = datetime(2024, 6, 6, 10, 0, tzinfo=timezone.utc)
        completed = await service.complete_booking(db_session, booking.id, admin)
        assert completed.status == "completed"
        assert completed.is_active is False
        assert completed.is_past is True

        reviewed = await service.add_review(db_session, booking.id, owner, 4, "Great view")
        assert reviewed.review.rating == 4
        assert reviewed.review.comment == "Great view"

        villa = await db_session.get(Destination, seed.villa.id)
        assert villa.rating == Decimal("4.0")
        assert villa.review_count == 1

        with pytest.raises(ReviewAlreadyExistsError):
            await service.add_review(db_session, booking.id, owner, 5, None)

        refunded = await service.refund_booking(db_session, booking.id, admin)
        assert refunded.status == "refunded"
        assert refunded.payment_status == "refunded"
        assert refunded.review.rating == 4

    @pytest.mark.asyncio
    async def test_only_owner_reviews(self, service, clock, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.confirm_booking(db_session, booking.id, admin)
        clock.now = datetime(2024, 6, 6, tzinfo=timezone.utc)
        await service.complete_booking(db_session, booking.id, admin)

        with pytest.raises(PermissionDeniedError):
            await service.add_review(db_session, booking.id, admin, 5, None)

    @pytest.mark.asyncio
    async def test_refund_requires_completed(self, service, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        with pytest.raises(InvalidStateTransitionError):
            await service.refund_booking(db_session, booking.id, admin)


class TestUpdateBooking:

    @pytest.mark.asyncio
    async def test_owner_updates_pending(self, service, db_session, seed, owner):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        updated = await service.update_booking(
            db_session, booking.id, owner,
            BookingUpdate(
                special_requests="Late check-in",
                guest_details=GuestDetails(
                    primary_guest=PrimaryGuest(name="Ada King", email="ada.king@example.com"),
                ),
            ),
        )
        assert updated.special_requests == "Late check-in"
        assert updated.guest_details.primary_guest.name == "Ada King"
        assert updated.total_price == booking.total_price

    @pytest.mark.asyncio
    async def test_owner_payment_fields_ignored(self, service, db_session, seed, owner):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        updated = await service.update_booking(
            db_session, booking.id, owner, BookingUpdate(payment_status="paid")
        )
        assert updated.payment_status == "pending"

    @pytest.mark.asyncio
    async def test_owner_cannot_update_confirmed(self, service, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.confirm_booking(db_session, booking.id, admin)
        with pytest.raises(PermissionDeniedError):
            await service.update_booking(
                db_session, booking.id, owner, BookingUpdate(special_requests="Crib please")
            )

    @pytest.mark.asyncio
    async def test_admin_updates_payment(self, service, db_session, seed, owner, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        updated = await service.update_booking(
            db_session, booking.id, admin,
            BookingUpdate(payment_status="paid", payment_method="paypal", payment_id="PAY-1"),
        )
        assert updated.payment_status == "paid"
        assert updated.payment_status_display == "Paid"
        assert updated.payment_method == "paypal"


class TestQueries:

    async def _book_both(self, service, db_session, seed, owner, other):
        await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        await service.create_booking(
            db_session, other,
            booking_request(seed.cabin, date(2024, 6, 1), date(2024, 6, 3), guests=3),
        )

    @pytest.mark.asyncio
    async def test_get_booking_permissions(self, service, db_session, seed, owner, other, admin):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )
        assert (await service.get_booking(db_session, booking.id, owner)).id == booking.id
        assert (await service.get_booking(db_session, booking.id, admin)).id == booking.id
        with pytest.raises(PermissionDeniedError):
            await service.get_booking(db_session, booking.id, other)

    @pytest.mark.asyncio
    async def test_list_scoped_to_owner(self, service, db_session, seed, owner, other, admin):
        await self._book_both(service, db_session, seed, owner, other)

        mine = await service.list_bookings(db_session, owner)
        assert [b.user_id for b in mine.bookings] == [owner.user_id]

        # user_id filter is ignored for non-admins
        still_mine = await service.list_bookings(db_session, owner, user_id=other.user_id)
        assert still_mine.pagination.total_bookings == 1

        everything = await service.list_bookings(db_session, admin)
        assert everything.pagination.total_bookings == 2

        filtered = await service.list_bookings(db_session, admin, destination_id=seed.cabin.id)
        assert [b.destination_id for b in filtered.bookings] == [seed.cabin.id]

    @pytest.mark.asyncio
    async def test_pagination(self, service, db_session, seed, owner):
        for day in (1, 5, 9):
            await service.create_booking(
                db_session, owner,
                booking_request(seed.villa, date(2024, 6, day), date(2024, 6, day + 2)),
            )

        page = await service.list_bookings(db_session, owner, page=2, limit=2)
        assert len(page.bookings) == 1
        assert page.pagination.total_pages == 2
        assert page.pagination.has_prev_page is True
        assert page.pagination.has_next_page is False

    @pytest.mark.asyncio
    async def test_stats(self, service, db_session, seed, owner, other, admin):
        await self._book_both(service, db_session, seed, owner, other)

        stats = await service.get_booking_stats(db_session, admin)
        assert stats.total_bookings == 2
        assert stats.total_revenue == Decimal("1283.00")
        assert stats.average_booking_value == Decimal("641.50")
        assert stats.average_guests == 2.5
        assert stats.status_breakdown == {"pending": 2}

    @pytest.mark.asyncio
    async def test_stats_require_admin(self, service, db_session, seed, owner):
        with pytest.raises(PermissionDeniedError):
            await service.get_booking_stats(db_session, owner)


class TestCheckAvailability:

    @pytest.mark.asyncio
    async def test_available_and_conflicting(self, service, db_session, seed, owner):
        booking = await service.create_booking(
            db_session, owner, booking_request(seed.villa, date(2024, 6, 1), date(2024, 6, 5))
        )

        free = await service.check_availability(
            db_session, seed.villa.id, date(2024, 6, 5), date(2024, 6, 7)
        )
        assert free.available is True
        assert free.conflicting_bookings == []

        taken = await service.check_availability(
            db_session, seed.villa.id, date(2024, 6, 2), date(2024, 6, 3)
        )
        assert taken.available is False
        assert [c.id for c in taken.conflicting_bookings] == [booking.id]

    @pytest.mark.asyncio
    async def test_inactive_destination(self, service, db_session, seed):
        with pytest.raises(DestinationNotFoundError):
            await service.check_availability(
                db_session, seed.closed.id, date(2024, 6, 1), date(2024, 6, 2)
            )


class TestStorageRetryPolicy:
    """Only the read-only availability check retries storage failures."""

    def setup_method(self):
        self.destinations = MagicMock(spec=DestinationService)
        self.destinations.get_bookable = AsyncMock(
            return_value=MagicMock(id=uuid.uuid4(), max_guests=4)
        )
        self.checker = MagicMock()
        self.service = BookingService(
            checker=self.checker,
            destinations=self.destinations,
            retry_attempts=3,
            retry_min_wait=0,
            retry_max_wait=0,
            clock=lambda: datetime(2024, 5, 1, tzinfo=timezone.utc),
        )

    @pytest.mark.asyncio
    async def test_availability_recovers_after_transient_failure(self, mock_db_session):
        self.checker.find_conflicts = AsyncMock(side_effect=[StorageUnavailableError(), []])

        result = await self.service.check_availability(
            mock_db_session, uuid.uuid4(), date(2024, 6, 1), date(2024, 6, 2)
        )

        assert result.available is True
        assert self.checker.find_conflicts.await_count == 2

    @pytest.mark.asyncio
    async def test_availability_gives_up_after_attempts(self, mock_db_session):
        self.checker.find_conflicts = AsyncMock(side_effect=StorageUnavailableError())

        with pytest.raises(StorageUnavailableError):
            await self.service.check_availability(
                mock_db_session, uuid.uuid4(), date(2024, 6, 1), date(2024, 6, 2)
            )
        assert self.checker.find_conflicts.await_count == 3

    @pytest.mark.asyncio
    async def test_business_rejection_not_retried(self, mock_db_session):
        self.destinations.get_bookable = AsyncMock(side_effect=DestinationNotFoundError("x"))
        self.checker.find_conflicts = AsyncMock(return_value=[])

        with pytest.raises(DestinationNotFoundError):
            await self.service.check_availability(
                mock_db_session, uuid.uuid4(), date(2024, 6, 1), date(2024, 6, 2)
            )
        assert self.destinations.get_bookable.await_count == 1

    @pytest.mark.asyncio
    async def test_create_never_retries(self, mock_db_session):
        self.checker.find_conflicts = AsyncMock(side_effect=StorageUnavailableError())
        user = MagicMock(is_active=True, email="ada@example.com")
        user.name = "Ada Lovelace"
        mock_db_session.get = AsyncMock(return_value=user)

        payload = BookingCreate(
            destination_id=uuid.uuid4(),
            start_date=date(2024, 6, 1),
            end_date=date(2024, 6, 2),
            guests=1,
        )
        with pytest.raises(StorageUnavailableError):
            await self.service.create_booking(mock_db_session, Actor(user_id=uuid.uuid4()), payload)
        assert self.checker.find_conflicts.await_count == 1
        mock_db_session.add.assert_not_called()

    def test_read_retry_policy_builds_without_warnings(self):
        service = BookingService(retry_min_wait=0.2, retry_max_wait=2.0)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            service._read_retrying()


class TestAvailabilityConnectionLoss:
    """A dropped connection must leave the session usable for the next attempt."""

    @pytest.mark.asyncio
    async def test_retry_reuses_session_after_connection_loss(
        self, service, db_session, seed, monkeypatch
    ):
        original_execute = db_session.execute
        dropped = []

        async def drop_first_connection(*args, **kwargs):
            if not dropped:
                dropped.append(True)
                connection = await db_session.connection()
                await connection.invalidate()
                raise OperationalError("SELECT", {}, Exception("server closed the connection"))
            return await original_execute(*args, **kwargs)

        monkeypatch.setattr(db_session, "execute", drop_first_connection)

        result = await service.check_availability(
            db_session, seed.villa.id, date(2024, 6, 1), date(2024, 6, 5)
        )

        assert result.available is True
        assert dropped == [True]

    @pytest.mark.asyncio
    async def test_destination_lookup_rolls_back_on_connection_loss(self, mock_db_session):
        mock_db_session.execute = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("connection refused"))
        )

        with pytest.raises(StorageUnavailableError):
            await DestinationService().get_bookable(mock_db_session, uuid.uuid4())
        mock_db_session.rollback.assert_awaited_once()

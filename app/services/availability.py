"""
Travel Booking Backend — Availability Checker
===============================================

What:  Decides whether a proposed [start, end) stay on a destination
       overlaps any active (pending or confirmed) booking.
How:   One read-only SELECT whose WHERE clause spells out the three ways two
       half-open intervals can overlap:

           existing   ├──────────┤
        1. candidate       ├──────────...      starts during existing stay
        2. candidate ...───────┤               ends during existing stay
        3. candidate ├────────────────┤        fully contains existing stay

       Check-out day D and check-in day D never conflict (same-day turnover).
Who:   BookingService.create_booking (inside the per-destination lock) and
       BookingService.check_availability (pre-booking UI queries).

Query plan:
    SELECT * FROM bookings
    WHERE destination_id = :id AND status IN ('pending', 'confirmed')
      AND (case 1 OR case 2 OR case 3)
    → Uses idx_bookings_destination (destination_id, status)
"""

import logging
import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import STORAGE_ERRORS, rollback_quietly
from app.exceptions import DatabaseError, StorageUnavailableError, ValidationError
from app.models.booking import ACTIVE_STATUSES, Booking

logger = logging.getLogger(__name__)


def intervals_conflict(
    existing_start: date,
    existing_end: date,
    start: date,
    end: date,
) -> bool:
    """In-memory form of the overlap rule used by the query below."""
    starts_during = existing_start <= start < existing_end
    ends_during = existing_start < end <= existing_end
    contains = start <= existing_start and existing_end <= end
    return starts_during or ends_during or contains


def validate_range(start: date, end: date) -> None:
    if start is None or end is None:
        raise ValidationError("Start date and end date are required")
    if end <= start:
        raise ValidationError("End date must be after start date", field="end_date")


class AvailabilityChecker:
    """Read-only conflict lookup. Holds no state."""

    async def find_conflicts(
        self,
        db: AsyncSession,
        destination_id: uuid.UUID,
        start: date,
        end: date,
        exclude_booking_id: Optional[uuid.UUID] = None,
    ) -> List[Booking]:
        """
        Return the active bookings on `destination_id` overlapping [start, end).

        An empty list means the destination is available.

        Raises:
            ValidationError: end is not after start
            StorageUnavailableError: connection to the database failed
            DatabaseError: any other query failure
        """
        validate_range(start, end)

        query = (
            select(Booking)
            .where(
                Booking.destination_id == destination_id,
                Booking.status.in_(ACTIVE_STATUSES),
                or_(
                    and_(Booking.start_date <= start, Booking.end_date > start),
                    and_(Booking.start_date < end, Booking.end_date >= end),
                    and_(Booking.start_date >= start, Booking.end_date <= end),
                ),
            )
            .order_by(Booking.start_date)
        )
        if exclude_booking_id is not None:
            query = query.where(Booking.id != exclude_booking_id)

        try:
            result = await db.execute(query)
        except STORAGE_ERRORS as e:
            logger.warning("Availability query lost its connection: %s", e)
            await rollback_quietly(db)
            raise StorageUnavailableError(
                context={"destination_id": str(destination_id)}
            ) from e
        except Exception as e:
            logger.error("Availability query failed: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not check availability. Please try again.",
                context={"destination_id": str(destination_id)},
            ) from e

        conflicts = list(result.scalars().all())
        if conflicts:
            logger.info(
                "Destination %s has %d conflicting booking(s) for %s..%s",
                destination_id, len(conflicts), start, end,
            )
        return conflicts

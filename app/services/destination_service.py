"""
Travel Booking Backend — Destination Service
==============================================

What:  Create, fetch and list destinations; maintain the booking counters
       and the review-derived rating.
Who:   Destination routes; BookingService for the bookable-destination
       lookup, counters and rating refresh.
"""

import logging
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import STORAGE_ERRORS, rollback_quietly
from app.exceptions import DestinationNotFoundError, StorageUnavailableError
from app.models.booking import Booking
from app.models.destination import Destination
from app.schemas.destination import (
    DestinationCreate,
    DestinationListResponse,
    DestinationResponse,
)

logger = logging.getLogger(__name__)


class DestinationService:

    async def get_bookable(
        self,
        db: AsyncSession,
        destination_id: uuid.UUID,
        for_update: bool = False,
    ) -> Destination:
        """
        Load an active destination or raise DestinationNotFoundError.

        `for_update` takes a row lock on databases that support it, so the
        counter increment in create_booking cannot be lost.
        """
        query = select(Destination).where(Destination.id == destination_id)
        if for_update:
            query = query.with_for_update()
        try:
            result = await db.execute(query)
        except STORAGE_ERRORS as e:
            await rollback_quietly(db)
            raise StorageUnavailableError(context={"destination_id": str(destination_id)}) from e

        destination = result.scalar_one_or_none()
        if destination is None or not destination.is_active:
            raise DestinationNotFoundError(str(destination_id))
        return destination

    async def get_destination(
        self, db: AsyncSession, destination_id: uuid.UUID
    ) -> DestinationResponse:
        destination = await self.get_bookable(db, destination_id)
        return DestinationResponse.model_validate(destination)

    async def list_destinations(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 10,
        category: Optional[str] = None,
    ) -> DestinationListResponse:
        query = select(Destination).where(Destination.is_active.is_(True))
        count_query = select(func.count(Destination.id)).where(Destination.is_active.is_(True))
        if category:
            query = query.where(Destination.category == category)
            count_query = count_query.where(Destination.category == category)

        query = query.order_by(Destination.created_at.desc()).offset((page - 1) * limit).limit(limit)

        result = await db.execute(query)
        destinations = list(result.scalars().all())
        total = (await db.execute(count_query)).scalar() or 0

        return DestinationListResponse(
            destinations=[DestinationResponse.model_validate(d) for d in destinations],
            total_count=total,
            page=page,
            limit=limit,
        )

    async def create_destination(
        self, db: AsyncSession, payload: DestinationCreate
    ) -> DestinationResponse:
        destination = Destination(**payload.model_dump())
        db.add(destination)
        await db.flush()
        logger.info("Destination created: %s (%s)", destination.id, destination.name)
        return DestinationResponse.model_validate(destination)

    def record_booking(self, destination: Destination, booked_at: datetime) -> None:
        destination.booking_count = (destination.booking_count or 0) + 1
        destination.last_booked_at = booked_at

    async def refresh_rating(self, db: AsyncSession, destination_id: uuid.UUID) -> None:
        """Recompute rating (one decimal) and review_count from booking reviews."""
        result = await db.execute(
            select(func.avg(Booking.review_rating), func.count(Booking.review_rating)).where(
                Booking.destination_id == destination_id,
                Booking.review_rating.is_not(None),
            )
        )
        average, count = result.one()
        destination = await db.get(Destination, destination_id)
        if destination is None:
            return

        destination.review_count = count or 0
        destination.rating = (
            Decimal(str(average)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
            if average is not None
            else Decimal("0")
        )
        await db.flush()

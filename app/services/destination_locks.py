"""
Travel Booking Backend — Per-Destination Critical Sections
============================================================

What:  One asyncio.Lock per destination id.
How:   BookingService.create_booking holds the destination's lock across
       availability check → capacity check → insert → commit, so two
       overlapping requests for the same destination run one after the other
       and the second one sees the first one's row.
Who:   Owned by the BookingService instance built in app.services.

Scope:
    The registry serialises coroutines inside one process. Across worker
    processes the PostgreSQL exclusion constraint on active bookings rejects
    the second insert instead (reported as DatesUnavailableError).
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class DestinationLocks:
    def __init__(self) -> None:
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}

    def lock_for(self, destination_id: uuid.UUID) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._locks.get(destination_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[destination_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, destination_id: uuid.UUID) -> AsyncIterator[None]:
        async with self.lock_for(destination_id):
            yield

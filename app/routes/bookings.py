"""
Travel Booking Backend — Booking Route Handlers
=================================================

What:  HTTP surface of the booking lifecycle.
How:   Resolves the caller from the bearer token, delegates to the
       BookingService held on app.state, returns its pydantic models.
Who:   Called by the web frontend (user dashboard, admin dashboard,
       destination detail page).

Route Inventory:
    GET  /api/bookings/availability        public
    POST /api/bookings                     authenticated
    GET  /api/bookings                     authenticated (admins see all)
    GET  /api/bookings/admin/stats         admin
    GET  /api/bookings/{id}                owner or admin
    PUT  /api/bookings/{id}                owner (pending) or admin
    POST /api/bookings/{id}/cancel         owner or admin
    POST /api/bookings/{id}/review         owner
    POST /api/bookings/{id}/confirm        admin
    POST /api/bookings/{id}/complete       admin
    POST /api/bookings/{id}/refund         admin

Static paths are declared before /{booking_id} so they are matched first.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.middleware.logging import client_address
from app.models.booking import BookingStatus
from app.schemas.booking import (
    AvailabilityResponse,
    BookingCreate,
    BookingListResponse,
    BookingMetadata,
    BookingResponse,
    BookingStats,
    BookingUpdate,
    CancelRequest,
    CancelResponse,
    ReviewCreate,
)
from app.schemas.common import ErrorResponse
from app.security import Actor, get_current_actor, require_admin
from app.services.booking_service import BookingService

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


def get_booking_service(request: Request) -> BookingService:
    """The BookingService built by create_app()."""
    return request.app.state.booking_service


def request_metadata(request: Request) -> BookingMetadata:
    return BookingMetadata(
        ip_address=client_address(request),
        user_agent=request.headers.get("User-Agent"),
    )


# ── Public ────────────────────────────────────────────────────────────────


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    responses={
        400: {"description": "Invalid date range", "model": ErrorResponse},
        404: {"description": "Destination not found", "model": ErrorResponse},
        503: {"description": "Storage unavailable", "model": ErrorResponse},
    },
    summary="Check whether a destination is free for a date range",
)
async def check_availability(
    destination_id: UUID = Query(...),
    start_date: date = Query(..., description="Check-in day (inclusive)"),
    end_date: date = Query(..., description="Check-out day (exclusive)"),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> AvailabilityResponse:
    return await service.check_availability(db, destination_id, start_date, end_date)


# ── Authenticated ─────────────────────────────────────────────────────────


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    responses={
        400: {"description": "Invalid request or capacity exceeded", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        404: {"description": "Destination not found", "model": ErrorResponse},
        409: {"description": "Dates unavailable", "model": ErrorResponse},
        503: {"description": "Storage unavailable", "model": ErrorResponse},
    },
    summary="Create a pending booking",
)
async def create_booking(
    payload: BookingCreate,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Books [start_date, end_date) on a destination. The booking starts out
    `pending`; an admin confirms it later.
    """
    return await service.create_booking(db, actor, payload, request_metadata(request))


@router.get(
    "",
    response_model=BookingListResponse,
    summary="List bookings (own bookings, or all for admins)",
)
async def list_bookings(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[BookingStatus] = Query(default=None),
    destination_id: Optional[UUID] = Query(default=None),
    user_id: Optional[UUID] = Query(default=None, description="Admin only"),
    start_from: Optional[date] = Query(default=None),
    start_to: Optional[date] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    result = await service.list_bookings(
        db,
        actor,
        page=page,
        limit=limit,
        status=status.value if status else None,
        destination_id=destination_id,
        user_id=user_id,
        start_from=start_from,
        start_to=start_to,
    )
    response.headers["X-Total-Count"] = str(result.pagination.total_bookings)
    return result


@router.get(
    "/admin/stats",
    response_model=BookingStats,
    summary="Booking totals and status breakdown (admin)",
)
async def booking_stats(
    created_from: Optional[datetime] = Query(default=None),
    created_to: Optional[datetime] = Query(default=None),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingStats:
    return await service.get_booking_stats(db, actor, created_from, created_to)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={
        403: {"description": "Not your booking", "model": ErrorResponse},
        404: {"description": "Booking not found", "model": ErrorResponse},
    },
    summary="Get a single booking",
)
async def get_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await service.get_booking(db, booking_id, actor)


@router.put(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Update special requests, guest details or payment fields",
)
async def update_booking(
    booking_id: UUID,
    payload: BookingUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await service.update_booking(db, booking_id, actor, payload)


@router.post(
    "/{booking_id}/cancel",
    response_model=CancelResponse,
    responses={
        400: {"description": "Booking cannot be cancelled", "model": ErrorResponse},
        403: {"description": "Not your booking", "model": ErrorResponse},
    },
    summary="Cancel a booking and compute the refund",
)
async def cancel_booking(
    booking_id: UUID,
    payload: Optional[CancelRequest] = Body(default=None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> CancelResponse:
    """
    Refund tiers by days until check-in: more than 7 → full, 3 to 7 → half,
    fewer than 3 → nothing.
    """
    payload = payload or CancelRequest()
    return await service.cancel_booking(
        db, booking_id, actor, reason=payload.reason, force=payload.force
    )


@router.post(
    "/{booking_id}/review",
    response_model=BookingResponse,
    responses={
        400: {"description": "Booking is not completed", "model": ErrorResponse},
        409: {"description": "Already reviewed", "model": ErrorResponse},
    },
    summary="Review a completed stay",
)
async def add_review(
    booking_id: UUID,
    payload: ReviewCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await service.add_review(db, booking_id, actor, payload.rating, payload.comment)


# ── Admin ─────────────────────────────────────────────────────────────────


@router.post(
    "/{booking_id}/confirm",
    response_model=BookingResponse,
    responses={409: {"description": "Booking is not pending", "model": ErrorResponse}},
    summary="Confirm a pending booking (admin)",
)
async def confirm_booking(
    booking_id: UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await service.confirm_booking(db, booking_id, actor)


@router.post(
    "/{booking_id}/complete",
    response_model=BookingResponse,
    responses={409: {"description": "Not confirmed, or stay not over", "model": ErrorResponse}},
    summary="Mark a finished stay completed (admin)",
)
async def complete_booking(
    booking_id: UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await service.complete_booking(db, booking_id, actor)


@router.post(
    "/{booking_id}/refund",
    response_model=BookingResponse,
    responses={409: {"description": "Booking is not completed", "model": ErrorResponse}},
    summary="Refund a completed booking (admin)",
)
async def refund_booking(
    booking_id: UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return await service.refund_booking(db, booking_id, actor)

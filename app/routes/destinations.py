"""
Travel Booking Backend — Destination Route Handlers
=====================================================

What:  Browse destinations (public) and add new ones (admin).
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.schemas.common import ErrorResponse
from app.schemas.destination import (
    Category,
    DestinationCreate,
    DestinationListResponse,
    DestinationResponse,
)
from app.security import Actor, require_admin
from app.services.destination_service import DestinationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/destinations", tags=["Destinations"])


def get_destination_service(request: Request) -> DestinationService:
    return request.app.state.destination_service


@router.get("", response_model=DestinationListResponse, summary="List active destinations")
async def list_destinations(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    category: Optional[Category] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
    destination_service: DestinationService = Depends(get_destination_service),
) -> DestinationListResponse:
    result = await destination_service.list_destinations(
        db, page=page, limit=limit, category=category
    )
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.get(
    "/{destination_id}",
    response_model=DestinationResponse,
    responses={404: {"description": "Destination not found", "model": ErrorResponse}},
    summary="Get a single destination",
)
async def get_destination(
    destination_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    destination_service: DestinationService = Depends(get_destination_service),
) -> DestinationResponse:
    return await destination_service.get_destination(db, destination_id)


@router.post(
    "",
    status_code=201,
    response_model=DestinationResponse,
    responses={403: {"description": "Admin access required", "model": ErrorResponse}},
    summary="Create a destination (admin)",
)
async def create_destination(
    payload: DestinationCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
    destination_service: DestinationService = Depends(get_destination_service),
) -> DestinationResponse:
    logger.info("Admin %s creating destination '%s'", actor.user_id, payload.name)
    return await destination_service.create_destination(db, payload)

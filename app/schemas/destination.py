"""
Travel Booking Backend — Destination Schemas
==============================================

What:  API contract for creating and reading destinations.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


Category = Literal[
    "adventure", "beach", "city", "cultural", "nature",
    "luxury", "budget", "family", "romantic",
]


class DestinationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=2000)
    location: str = Field(min_length=1, max_length=100)
    category: Category = "nature"
    price: Decimal = Field(ge=0, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    max_guests: int = Field(default=10, ge=1)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class DestinationResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    location: str
    category: str
    price: Decimal
    currency: str
    max_guests: int
    is_active: bool
    booking_count: int
    last_booked_at: Optional[datetime] = None
    rating: Decimal
    review_count: int
    created_at: datetime

    model_config = {"from_attributes": True}


class DestinationListResponse(BaseModel):
    destinations: List[DestinationResponse]
    total_count: int
    page: int
    limit: int

# src/core/trips/models.py
"""
Модели рейсов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.clock import utc_now
from src.common.constants import TripStatus


class Trip(BaseModel):
    """Рейс, созданный по принятой ставке."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID рейса")
    load_id: str = Field(..., description="UUID груза")
    bid_id: str = Field(..., description="UUID принятой ставки")
    driver_id: str = Field(..., description="ID водителя")
    owner_id: str = Field(..., description="ID грузовладельца")
    vehicle_id: Optional[str] = None

    agreed_price: float = Field(..., gt=0, allow_inf_nan=False, description="Согласованная цена (цена ставки)")
    currency: str = "USD"
    status: TripStatus = TripStatus.SCHEDULED

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    last_location_at: Optional[datetime] = None

    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status in (TripStatus.SCHEDULED, TripStatus.IN_PROGRESS)

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.driver_id, self.owner_id)


class RoutePoint(BaseModel):
    """Точка маршрута. sequence строго возрастает в пределах рейса."""

    trip_id: str
    sequence: int = Field(..., ge=1)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    recorded_at: datetime = Field(default_factory=utc_now)


class LocationDTO(BaseModel):
    """Координаты от водителя."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TripCompleteDTO(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class TripCancelDTO(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

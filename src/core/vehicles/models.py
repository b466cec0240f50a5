# src/core/vehicles/models.py
"""
Модели транспорта.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import VehicleType
from src.common.clock import utc_now


class Vehicle(BaseModel):
    """Транспортное средство водителя или владельца автопарка."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID транспорта")
    owner_id: str = Field(..., description="ID владельца")
    vehicle_type: VehicleType = Field(..., description="Тип транспорта")
    plate_number: str = Field(..., min_length=1, max_length=20, description="Госномер")
    capacity_kg: float = Field(..., gt=0, description="Грузоподъёмность, кг")
    make: Optional[str] = Field(None, description="Марка")
    model: Optional[str] = Field(None, description="Модель")
    is_active: bool = Field(True, description="Доступен для ставок")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class VehicleCreateDTO(BaseModel):
    """DTO для регистрации транспорта."""

    vehicle_type: VehicleType
    plate_number: str = Field(..., min_length=1, max_length=20)
    capacity_kg: float = Field(..., gt=0)
    make: Optional[str] = None
    model: Optional[str] = None

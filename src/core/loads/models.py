# src/core/loads/models.py
"""
Модели грузов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.common.clock import utc_now
from src.common.constants import LoadStatus, VehicleType


class Load(BaseModel):
    """Груз, опубликованный грузовладельцем."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID груза")
    owner_id: str = Field(..., description="ID грузовладельца")

    title: str = Field(..., description="Название")
    description: Optional[str] = Field(None, description="Описание")
    cargo_type: str = Field(..., description="Тип груза")
    weight_kg: float = Field(..., gt=0, allow_inf_nan=False, description="Вес, кг")
    volume_m3: Optional[float] = Field(None, gt=0, description="Объём, м³")

    # Маршрут
    pickup_address: str = Field(..., description="Адрес погрузки")
    pickup_latitude: Optional[float] = Field(None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(None, ge=-180, le=180)
    delivery_address: str = Field(..., description="Адрес выгрузки")
    delivery_latitude: Optional[float] = Field(None, ge=-90, le=90)
    delivery_longitude: Optional[float] = Field(None, ge=-180, le=180)

    # Окно погрузки и доставки
    pickup_date: datetime = Field(..., description="Дата погрузки")
    delivery_date: Optional[datetime] = Field(None, description="Крайний срок доставки")

    suggested_price: Optional[float] = Field(None, gt=0, allow_inf_nan=False, description="Рекомендуемая цена")
    currency: str = Field("USD", description="Валюта")
    vehicle_types: list[VehicleType] = Field(default_factory=list, description="Допустимые типы транспорта")
    is_fragile: bool = False
    requires_insurance: bool = False

    status: LoadStatus = Field(LoadStatus.DRAFT, description="Статус груза")
    expires_at: Optional[datetime] = Field(None, description="Снятие с биржи")
    published_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status == LoadStatus.OPEN

    def accepts_vehicle(self, vehicle_type: VehicleType) -> bool:
        """Пустой список типов означает, что подходит любой транспорт."""
        return not self.vehicle_types or vehicle_type in self.vehicle_types


class LoadCreateDTO(BaseModel):
    """DTO для создания груза."""

    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    cargo_type: str = Field(..., min_length=1, max_length=100)
    weight_kg: float = Field(..., gt=0, allow_inf_nan=False)
    volume_m3: Optional[float] = Field(None, gt=0)

    pickup_address: str = Field(..., min_length=1)
    pickup_latitude: Optional[float] = Field(None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(None, ge=-180, le=180)
    delivery_address: str = Field(..., min_length=1)
    delivery_latitude: Optional[float] = Field(None, ge=-90, le=90)
    delivery_longitude: Optional[float] = Field(None, ge=-180, le=180)

    pickup_date: datetime
    delivery_date: Optional[datetime] = None

    suggested_price: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    vehicle_types: list[VehicleType] = Field(default_factory=list)
    is_fragile: bool = False
    requires_insurance: bool = False
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self) -> "LoadCreateDTO":
        """Доставка не раньше погрузки."""
        if self.delivery_date is not None and self.delivery_date < self.pickup_date:
            raise ValueError("delivery_date не может быть раньше pickup_date")
        return self


class LoadUpdateDTO(BaseModel):
    """DTO для частичного обновления груза (только DRAFT или OPEN)."""

    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    cargo_type: Optional[str] = Field(None, min_length=1, max_length=100)
    weight_kg: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    volume_m3: Optional[float] = Field(None, gt=0)
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    suggested_price: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    vehicle_types: Optional[list[VehicleType]] = None
    is_fragile: Optional[bool] = None
    requires_insurance: Optional[bool] = None
    expires_at: Optional[datetime] = None


class LoadSearchFilters(BaseModel):
    """Фильтры поиска открытых грузов."""

    vehicle_type: Optional[VehicleType] = None
    cargo_type: Optional[str] = None
    max_weight_kg: Optional[float] = Field(None, gt=0)
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)


class LoadStats(BaseModel):
    """Количество грузов владельца по статусам."""

    total: int = 0
    by_status: dict[LoadStatus, int] = Field(default_factory=dict)

# src/core/bids/models.py
"""
Модели ставок.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.clock import utc_now
from src.common.constants import BidStatus, ErrorCode


class Bid(BaseModel):
    """Ставка водителя на груз."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID ставки")
    load_id: str = Field(..., description="UUID груза")
    driver_id: str = Field(..., description="ID водителя")
    vehicle_id: Optional[str] = Field(None, description="UUID транспорта")

    price: float = Field(..., gt=0, allow_inf_nan=False, description="Предложенная цена")
    currency: str = Field("USD", description="Валюта")
    message: Optional[str] = Field(None, description="Комментарий водителя")
    estimated_duration_hours: Optional[float] = Field(None, gt=0, description="Оценка длительности рейса")

    status: BidStatus = Field(BidStatus.PENDING, description="Статус ставки")
    expires_at: Optional[datetime] = Field(None, description="Срок действия ставки")
    rejection_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_pending(self) -> bool:
        return self.status == BidStatus.PENDING


class BidCreateDTO(BaseModel):
    """DTO для размещения ставки."""

    load_id: str
    price: float = Field(..., allow_inf_nan=False)
    vehicle_id: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    message: Optional[str] = Field(None, max_length=1000)
    estimated_duration_hours: Optional[float] = Field(None, gt=0)
    expires_at: Optional[datetime] = None


class BidUpdateDTO(BaseModel):
    """DTO для изменения ожидающей ставки."""

    price: Optional[float] = Field(None, allow_inf_nan=False)
    vehicle_id: Optional[str] = None
    message: Optional[str] = Field(None, max_length=1000)
    estimated_duration_hours: Optional[float] = Field(None, gt=0)
    expires_at: Optional[datetime] = None


class BidStats(BaseModel):
    """Статистика ставок по грузу. Цены считаются только по ожидающим ставкам."""

    load_id: str
    total: int = 0
    pending: int = 0
    accepted: int = 0
    rejected: int = 0
    withdrawn: int = 0
    lowest_price: Optional[float] = None
    highest_price: Optional[float] = None
    average_price: Optional[float] = None


class DriverBidStats(BaseModel):
    """Статистика ставок водителя."""

    driver_id: str
    total: int = 0
    pending: int = 0
    accepted: int = 0
    rejected: int = 0
    withdrawn: int = 0
    acceptance_rate: int = Field(0, description="Доля принятых ставок, %")
    average_price: Optional[float] = Field(None, description="Средняя цена ожидающих и принятых ставок")


class BidEligibility(BaseModel):
    """Может ли водитель сделать ставку на груз."""

    can_bid: bool
    reason: Optional[ErrorCode] = None

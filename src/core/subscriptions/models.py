# src/core/subscriptions/models.py
"""
Модели подписки и решения гейта квот.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.clock import add_months, utc_now
from src.common.constants import ErrorCode, PlanType, SubscriptionStatus


class Subscription(BaseModel):
    """Подписка пользователя со счётчиками месячного использования."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID подписки")
    user_id: str = Field(..., description="ID пользователя")
    plan: PlanType = Field(PlanType.FREE, description="Тарифный план")
    status: SubscriptionStatus = Field(SubscriptionStatus.ACTIVE, description="Статус подписки")

    start_date: datetime = Field(default_factory=utc_now, description="Начало периода")
    end_date: Optional[datetime] = Field(None, description="Конец оплаченного периода")
    trial_end_date: Optional[datetime] = Field(None, description="Конец пробного периода")

    loads_posted_this_month: int = Field(0, ge=0, description="Опубликовано грузов за период")
    bids_placed_this_month: int = Field(0, ge=0, description="Сделано ставок за период")
    last_reset_date: datetime = Field(default_factory=utc_now, description="Якорь месячного сброса")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_usable(self) -> bool:
        """Даёт ли подписка право на действия."""
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)

    @property
    def next_reset_date(self) -> datetime:
        return add_months(self.last_reset_date, 1)

    def is_lapsed(self, now: datetime) -> bool:
        """Истёк ли оплаченный или пробный период."""
        if self.status == SubscriptionStatus.ACTIVE and self.end_date is not None:
            return self.end_date <= now
        if self.status == SubscriptionStatus.TRIAL and self.trial_end_date is not None:
            return self.trial_end_date <= now
        return False


class QuotaDecision(BaseModel):
    """
    Результат проверки квоты.

    remaining и limit равны None для безлимитного тарифа.
    """

    allowed: bool
    reason: Optional[ErrorCode] = None
    remaining: Optional[int] = None
    limit: Optional[int] = None
    plan: Optional[PlanType] = None
    upgrade_to: Optional[PlanType] = None


class UsageSummary(BaseModel):
    """Сводка использования тарифа."""

    plan: PlanType
    status: SubscriptionStatus
    loads_posted_this_month: int
    bids_placed_this_month: int
    active_vehicles: int
    max_loads_per_month: int
    max_bids_per_month: int
    max_vehicles: int
    max_team_members: int
    remaining_loads: Optional[int] = None
    remaining_bids: Optional[int] = None
    remaining_vehicles: Optional[int] = None
    last_reset_date: datetime
    next_reset_date: datetime
    trial_end_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class PlanPricing(BaseModel):
    """Цена и лимиты тарифа для витрины."""

    plan: PlanType
    price: float
    currency: str
    max_loads_per_month: int
    max_bids_per_month: int
    max_vehicles: int
    max_team_members: int

# src/services/marketplace/schemas.py
"""
Модели запросов и ответов Marketplace API.
Доменные модели (Load, Bid, Trip ...) отдаются как есть, здесь только обёртки HTTP-слоя.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from src.common.constants import PlanType
from src.core.bids.models import Bid
from src.core.loads.models import Load
from src.core.trips.models import Trip

DependencyState = Literal["healthy", "unhealthy"]


class PaginationParams(BaseModel):
    """Страница выдачи списка."""

    page: int = Field(default=1, ge=1, description="Номер страницы")
    page_size: int = Field(default=20, ge=1, le=100, description="Размер страницы")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class ErrorResponse(BaseModel):
    """
    Тело ответа для доменной ошибки.
    error_code из таксономии ErrorCode, по нему клиент выбирает сценарий.
    """

    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None


class HealthStatus(BaseModel):
    service: str
    status: Literal["healthy", "degraded"] = "healthy"
    version: Optional[str] = None
    dependencies: dict[str, DependencyState] = Field(default_factory=dict)


class ReasonRequest(BaseModel):
    """Необязательная причина отмены или отклонения."""

    reason: Optional[str] = Field(None, max_length=500)


class UpgradeRequest(BaseModel):
    plan: PlanType


class AssignmentResponse(BaseModel):
    """Результат принятия ставки."""

    accepted_bid: Bid
    trip: Trip
    load: Load
    rejected_bid_ids: list[str]

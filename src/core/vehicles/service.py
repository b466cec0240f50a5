# src/core/vehicles/service.py
"""
Сервис транспорта.
Регистрация машины учитывается в лимите тарифа ADD_VEHICLE.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from src.common.constants import ErrorCode, QuotaAction, TypeMsg
from src.common.exceptions import NotFoundError, UnauthorizedError
from src.common.logger import log_info
from src.core.vehicles.models import Vehicle, VehicleCreateDTO
from src.core.vehicles.repository import VehicleRepository
from src.infra.database import DatabaseManager

if TYPE_CHECKING:
    from src.core.subscriptions.service import SubscriptionService


class VehicleService:
    """Сервис транспорта."""

    def __init__(
        self,
        db: DatabaseManager,
        subscriptions: SubscriptionService,
        repository: Optional[VehicleRepository] = None,
    ) -> None:
        self._db = db
        self._subscriptions = subscriptions
        self._repo = repository or VehicleRepository(db)

    async def get_vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = await self._repo.get_by_id(vehicle_id)
        if vehicle is None:
            raise NotFoundError(ErrorCode.VEHICLE_NOT_FOUND, details={"vehicle_id": vehicle_id})
        return vehicle

    async def list_vehicles(self, owner_id: str, active_only: bool = False) -> list[Vehicle]:
        return await self._repo.list_by_owner(owner_id, active_only)

    async def register_vehicle(self, owner_id: str, dto: VehicleCreateDTO) -> Vehicle:
        """
        Регистрирует транспорт владельца.

        Raises:
            QuotaExceededError: Тариф не позволяет больше активных машин
        """
        await self._subscriptions.ensure_quota(owner_id, QuotaAction.ADD_VEHICLE)

        vehicle = Vehicle(owner_id=owner_id, **dto.model_dump())
        async with self._db.transaction() as conn:
            await self._subscriptions.consume_quota(owner_id, QuotaAction.ADD_VEHICLE, conn)
            created = await self._repo.create(vehicle, conn)

        await log_info(
            f"Транспорт {created.id} ({created.vehicle_type.value}) зарегистрирован владельцем {owner_id}",
            type_msg=TypeMsg.INFO,
        )
        return created

    async def deactivate_vehicle(self, vehicle_id: str, owner_id: str) -> Vehicle:
        """Снимает транспорт с линии; новые ставки с ним невозможны."""
        vehicle = await self.get_vehicle(vehicle_id)
        if vehicle.owner_id != owner_id:
            raise UnauthorizedError(ErrorCode.NOT_VEHICLE_OWNER, details={"vehicle_id": vehicle_id})

        updated = await self._repo.deactivate(vehicle_id, owner_id)
        if updated is None:
            raise NotFoundError(ErrorCode.VEHICLE_NOT_FOUND, details={"vehicle_id": vehicle_id})

        await log_info(f"Транспорт {vehicle_id} деактивирован", type_msg=TypeMsg.INFO)
        return updated

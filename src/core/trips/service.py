# src/core/trips/service.py
"""
Трекер рейсов.
Старт, точки маршрута, завершение и отмена рейса.
Старт рейса переводит груз в IN_TRANSIT, завершение в DELIVERED.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Optional

from asyncpg import Connection

from src.common.clock import utc_now
from src.common.constants import ErrorCode, LoadStatus, TripStatus, TypeMsg
from src.common.exceptions import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from src.common.logger import log_error, log_info
from src.core.loads.models import Load
from src.core.loads.service import LoadService
from src.core.notifications.service import NotificationService
from src.core.state_machine import TripStateMachine
from src.core.trips.models import RoutePoint, Trip
from src.core.trips.repository import TripRepository
from src.infra.database import DatabaseManager
from src.infra.event_bus import DomainEvent, EventBus, EventTypes


def validate_coordinates(latitude: float, longitude: float) -> None:
    """
    Raises:
        ValidationError: Координаты вне допустимого диапазона
    """
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        raise ValidationError(
            ErrorCode.INVALID_LOCATION,
            details={"latitude": latitude, "longitude": longitude},
        )


class TripService:
    """Сервис рейсов."""

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        loads: LoadService,
        notifications: NotificationService,
        repository: Optional[TripRepository] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._event_bus = event_bus
        self._loads = loads
        self._notifications = notifications
        self._repo = repository or TripRepository(db)
        self._clock = clock

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_trip(self, trip_id: str, user_id: Optional[str] = None) -> Trip:
        """
        Получает рейс. Если задан user_id, он должен быть участником рейса.

        Raises:
            NotFoundError, UnauthorizedError
        """
        trip = await self._repo.get_by_id(trip_id)
        if trip is None:
            raise NotFoundError(ErrorCode.TRIP_NOT_FOUND, details={"trip_id": trip_id})
        if user_id is not None and not trip.is_participant(user_id):
            raise UnauthorizedError(ErrorCode.NOT_TRIP_PARTICIPANT, details={"trip_id": trip_id})
        return trip

    async def get_trip_by_load(self, load_id: str) -> Trip:
        trip = await self._repo.get_by_load(load_id)
        if trip is None:
            raise NotFoundError(ErrorCode.TRIP_NOT_FOUND, details={"load_id": load_id})
        return trip

    async def get_route(self, trip_id: str, user_id: Optional[str] = None) -> list[RoutePoint]:
        """Маршрут рейса в порядке номеров точек."""
        await self.get_trip(trip_id, user_id)
        return await self._repo.get_route(trip_id)

    async def list_driver_trips(
        self,
        driver_id: str,
        status: Optional[TripStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Trip]:
        return await self._repo.list_by_driver(driver_id, status, limit, offset)

    async def list_owner_trips(
        self,
        owner_id: str,
        status: Optional[TripStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Trip]:
        return await self._repo.list_by_owner(owner_id, status, limit, offset)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start_trip(
        self,
        trip_id: str,
        driver_id: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        driver_name: Optional[str] = None,
    ) -> Trip:
        """
        Явный старт рейса (SCHEDULED → IN_PROGRESS), груз переходит в IN_TRANSIT.

        Args:
            latitude, longitude: Первая точка маршрута; задаются вместе или не задаются

        Raises:
            ValidationError: Координаты вне диапазона или заданы не парой
            InvalidTransitionError: Рейс уже начат или закрыт
        """
        if (latitude is None) != (longitude is None):
            raise ValidationError(
                ErrorCode.INVALID_LOCATION,
                details={"latitude": latitude, "longitude": longitude},
            )
        if latitude is not None:
            validate_coordinates(latitude, longitude)

        point: Optional[RoutePoint] = None
        async with self._db.transaction() as conn:
            trip = await self._lock_for_driver(trip_id, driver_id, conn)
            TripStateMachine.validate_transition(trip.status, TripStatus.IN_PROGRESS)
            started, load = await self._start(trip, conn)
            if latitude is not None:
                point = await self._repo.append_location(trip_id, latitude, longitude, self._clock(), conn)
                started = started.model_copy(update={
                    "current_latitude": point.latitude,
                    "current_longitude": point.longitude,
                    "last_location_at": point.recorded_at,
                })

        await self._after_start(started, load, driver_name)
        if point is not None:
            await self._publish_location(driver_id, point)
        return started

    async def append_location(
        self,
        trip_id: str,
        driver_id: str,
        latitude: float,
        longitude: float,
        driver_name: Optional[str] = None,
    ) -> RoutePoint:
        """
        Добавляет точку маршрута. Первая точка запланированного рейса стартует его.

        Args:
            trip_id: UUID рейса
            driver_id: ID водителя рейса
            latitude: Широта [-90, 90]
            longitude: Долгота [-180, 180]
            driver_name: Имя водителя для уведомления о старте

        Returns:
            Точка маршрута с присвоенным номером

        Raises:
            ValidationError: Координаты вне диапазона
            UnauthorizedError: Не водитель рейса
            InvalidStateError: Рейс завершён или отменён
        """
        validate_coordinates(latitude, longitude)
        started: Optional[Trip] = None
        load: Optional[Load] = None

        async with self._db.transaction() as conn:
            trip = await self._lock_for_driver(trip_id, driver_id, conn)
            if not trip.is_active:
                raise InvalidStateError(
                    ErrorCode.TRIP_NOT_ACTIVE,
                    details={"trip_id": trip_id, "status": trip.status.value},
                )
            if trip.status == TripStatus.SCHEDULED:
                started, load = await self._start(trip, conn)

            point = await self._repo.append_location(
                trip_id, latitude, longitude, self._clock(), conn,
            )

        if started is not None and load is not None:
            await self._after_start(started, load, driver_name)

        await self._publish_location(driver_id, point)
        return point

    async def complete_trip(self, trip_id: str, driver_id: str, notes: Optional[str] = None) -> Trip:
        """
        Завершает рейс (IN_PROGRESS → COMPLETED), груз переходит в DELIVERED.

        Raises:
            InvalidStateError: Рейс не в пути
        """
        async with self._db.transaction() as conn:
            trip = await self._lock_for_driver(trip_id, driver_id, conn)
            if trip.status != TripStatus.IN_PROGRESS:
                raise InvalidStateError(
                    ErrorCode.TRIP_NOT_IN_PROGRESS,
                    details={"trip_id": trip_id, "status": trip.status.value},
                )
            completed = await self._repo.transition(
                trip_id, TripStatus.COMPLETED, [TripStatus.IN_PROGRESS], conn, notes=notes,
            )
            if completed is None:
                raise InvalidStateError(ErrorCode.TRIP_NOT_IN_PROGRESS, details={"trip_id": trip_id})
            load = await self._loads.transition_status(trip.load_id, LoadStatus.DELIVERED, conn)

        await self._loads.invalidate_cache(load.id)
        await log_info(f"Рейс {trip_id} завершён, груз {load.id} доставлен", type_msg=TypeMsg.INFO)
        await self._publish_event(EventTypes.TRIP_COMPLETED, {
            "trip_id": trip_id,
            "load_id": load.id,
            "driver_id": driver_id,
            "owner_id": completed.owner_id,
            "agreed_price": completed.agreed_price,
        })
        await self._notifications.notify_trip_completed(completed.owner_id, load.title, trip_id)
        return completed

    async def cancel_trip(self, trip_id: str, user_id: str, reason: Optional[str] = None) -> Trip:
        """
        Отменяет рейс из SCHEDULED или IN_PROGRESS. Отменить может водитель
        или грузовладелец. Статус груза не меняется.

        Raises:
            UnauthorizedError: Не участник рейса
            InvalidTransitionError: Рейс уже закрыт
        """
        async with self._db.transaction() as conn:
            trip = await self._repo.get_for_update(trip_id, conn)
            if trip is None:
                raise NotFoundError(ErrorCode.TRIP_NOT_FOUND, details={"trip_id": trip_id})
            if not trip.is_participant(user_id):
                raise UnauthorizedError(ErrorCode.NOT_TRIP_PARTICIPANT, details={"trip_id": trip_id})
            TripStateMachine.validate_transition(trip.status, TripStatus.CANCELLED)

            cancelled = await self._repo.transition(
                trip_id,
                TripStatus.CANCELLED,
                TripStateMachine.sources_for(TripStatus.CANCELLED),
                conn,
                cancellation_reason=reason,
                cancelled_by=user_id,
            )
            if cancelled is None:
                raise InvalidStateError(ErrorCode.TRIP_NOT_ACTIVE, details={"trip_id": trip_id})

        await log_info(
            f"Рейс {trip_id} отменён пользователем {user_id}, груз {trip.load_id} "
            f"остаётся в статусе назначения",
            type_msg=TypeMsg.WARNING,
        )
        await self._publish_event(EventTypes.TRIP_CANCELLED, {
            "trip_id": trip_id,
            "load_id": trip.load_id,
            "cancelled_by": user_id,
            "reason": reason,
        })

        counterpart = trip.owner_id if user_id == trip.driver_id else trip.driver_id
        load = await self._loads.get_load(trip.load_id)
        await self._notifications.notify_trip_cancelled(counterpart, load.title, trip_id, reason)
        return cancelled

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _lock_for_driver(self, trip_id: str, driver_id: str, conn: Connection) -> Trip:
        trip = await self._repo.get_for_update(trip_id, conn)
        if trip is None:
            raise NotFoundError(ErrorCode.TRIP_NOT_FOUND, details={"trip_id": trip_id})
        if trip.driver_id != driver_id:
            raise UnauthorizedError(ErrorCode.NOT_TRIP_DRIVER, details={"trip_id": trip_id})
        return trip

    async def _start(self, trip: Trip, conn: Connection) -> tuple[Trip, Load]:
        started = await self._repo.transition(
            trip.id, TripStatus.IN_PROGRESS, [TripStatus.SCHEDULED], conn,
        )
        if started is None:
            raise InvalidStateError(ErrorCode.TRIP_NOT_ACTIVE, details={"trip_id": trip.id})
        load = await self._loads.transition_status(trip.load_id, LoadStatus.IN_TRANSIT, conn)
        return started, load

    async def _after_start(self, trip: Trip, load: Load, driver_name: Optional[str]) -> None:
        await self._loads.invalidate_cache(load.id)
        await log_info(f"Рейс {trip.id} начат, груз {load.id} в пути", type_msg=TypeMsg.INFO)
        await self._publish_event(EventTypes.TRIP_STARTED, {
            "trip_id": trip.id,
            "load_id": load.id,
            "driver_id": trip.driver_id,
            "owner_id": trip.owner_id,
        })
        await self._notifications.notify_trip_started(
            trip.owner_id, load.title, driver_name or trip.driver_id, trip.id,
        )

    async def _publish_location(self, driver_id: str, point: RoutePoint) -> None:
        await self._publish_event(EventTypes.TRIP_LOCATION_UPDATED, {
            "trip_id": point.trip_id,
            "driver_id": driver_id,
            "sequence": point.sequence,
            "latitude": point.latitude,
            "longitude": point.longitude,
        })

    async def _publish_event(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

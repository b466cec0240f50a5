# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.

Репозитории подменяются хранилищем в памяти с теми же сигнатурами.
Транзакция держит построчные блокировки до выхода из блока и откатывает
свои изменения при любой ошибке, поэтому гонки и откаты проверяются
без PostgreSQL.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.common.clock import add_months
from src.common.constants import (
    BidStatus,
    ErrorCode,
    LoadStatus,
    PlanType,
    QuotaAction,
    SubscriptionStatus,
    TripStatus,
    VehicleType,
)
from src.common.exceptions import ConflictError
from src.config.loader import SubscriptionSettings
from src.core.assignment.service import AssignmentService
from src.core.bids.models import Bid, BidStats, DriverBidStats
from src.core.bids.repository import UPDATABLE_FIELDS as BID_UPDATABLE_FIELDS
from src.core.bids.service import BidService
from src.core.container import ServiceContainer
from src.core.loads.models import Load, LoadCreateDTO, LoadSearchFilters
from src.core.loads.repository import UPDATABLE_FIELDS as LOAD_UPDATABLE_FIELDS
from src.core.loads.service import LoadService
from src.core.state_machine import BidStateMachine
from src.core.notifications.service import NotificationService
from src.core.subscriptions.models import Subscription
from src.core.subscriptions.repository import USAGE_COLUMNS
from src.core.subscriptions.service import SubscriptionService
from src.core.trips.models import RoutePoint, Trip
from src.core.trips.service import TripService
from src.core.vehicles.models import Vehicle
from src.core.vehicles.service import VehicleService


# =============================================================================
# ЧАСЫ
# =============================================================================

class FrozenClock:
    """Управляемые часы: сервисы получают время только отсюда."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


# =============================================================================
# ХРАНИЛИЩЕ В ПАМЯТИ
# =============================================================================

class FakeStore:
    """Таблицы в памяти. Записи неизменяемы: обновление заменяет объект целиком."""

    def __init__(self, clock: FrozenClock) -> None:
        self.clock = clock
        self.subscriptions: dict[str, Subscription] = {}
        self.vehicles: dict[str, Vehicle] = {}
        self.loads: dict[str, Load] = {}
        self.bids: dict[str, Bid] = {}
        self.trips: dict[str, Trip] = {}
        self.routes: dict[str, list[RoutePoint]] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def row_lock(self, table: str, key: str) -> asyncio.Lock:
        return self._locks.setdefault((table, key), asyncio.Lock())


class FakeConnection:
    """Соединение внутри транзакции: блокировки строк и журнал отката."""

    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self._held: list[asyncio.Lock] = []
        self._undo: list[tuple[dict[str, Any], str, Any]] = []

    async def lock_row(self, table: str, key: str) -> None:
        lock = self.store.row_lock(table, key)
        if any(held is lock for held in self._held):
            return
        await lock.acquire()
        self._held.append(lock)

    def remember(self, table: dict[str, Any], key: str) -> None:
        self._undo.append((table, key, table.get(key)))

    def rollback(self) -> None:
        for table, key, previous in reversed(self._undo):
            if previous is None:
                table.pop(key, None)
            else:
                table[key] = previous
        self._undo.clear()

    def release(self) -> None:
        for lock in self._held:
            lock.release()
        self._held.clear()


class FakeDatabase:
    """Замена DatabaseManager: транзакция с commit/rollback в памяти."""

    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self, isolation: str = "read_committed") -> AsyncGenerator[FakeConnection, None]:
        conn = FakeConnection(self.store)
        try:
            yield conn
        except BaseException:
            conn.rollback()
            self.rollbacks += 1
            raise
        finally:
            conn.release()

    async def health_check(self) -> bool:
        return True


def _put(table: dict[str, Any], key: str, value: Any, conn: Optional[FakeConnection]) -> None:
    if conn is not None:
        conn.remember(table, key)
    table[key] = value


async def _lock(conn: Optional[FakeConnection], table: str, key: str) -> None:
    if conn is not None:
        await conn.lock_row(table, key)


# =============================================================================
# РЕПОЗИТОРИИ В ПАМЯТИ
# =============================================================================

class FakeSubscriptionRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows = store.subscriptions

    async def get_by_user(self, user_id: str, conn: Optional[FakeConnection] = None) -> Optional[Subscription]:
        await asyncio.sleep(0)
        return self.rows.get(user_id)

    async def get_for_update(self, user_id: str, conn: FakeConnection) -> Optional[Subscription]:
        await _lock(conn, "subscriptions", user_id)
        return self.rows.get(user_id)

    async def create(self, subscription: Subscription, conn: Optional[FakeConnection] = None) -> Subscription:
        await asyncio.sleep(0)
        if subscription.user_id in self.rows:
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"user_id": subscription.user_id})
        _put(self.rows, subscription.user_id, subscription, conn)
        return subscription

    async def reset_usage_if_due(
        self,
        user_id: str,
        now: datetime,
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Subscription]:
        await asyncio.sleep(0)
        current = self.rows.get(user_id)
        if current is None or add_months(current.last_reset_date, 1) > now:
            return None
        updated = current.model_copy(update={
            "loads_posted_this_month": 0,
            "bids_placed_this_month": 0,
            "last_reset_date": now,
            "updated_at": now,
        })
        _put(self.rows, user_id, updated, conn)
        return updated

    async def expire_if_lapsed(
        self,
        user_id: str,
        now: datetime,
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Subscription]:
        await asyncio.sleep(0)
        current = self.rows.get(user_id)
        if current is None or not current.is_lapsed(now):
            return None
        updated = current.model_copy(update={
            "plan": PlanType.FREE,
            "status": SubscriptionStatus.EXPIRED,
            "updated_at": now,
        })
        _put(self.rows, user_id, updated, conn)
        return updated

    async def increment_usage(
        self,
        user_id: str,
        action: QuotaAction,
        limit: int,
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Subscription]:
        await asyncio.sleep(0)
        column = USAGE_COLUMNS[action]
        current = self.rows.get(user_id)
        if current is None or not current.is_usable:
            return None
        used = getattr(current, column)
        if limit >= 0 and used >= limit:
            return None
        updated = current.model_copy(update={column: used + 1, "updated_at": self.store.clock()})
        _put(self.rows, user_id, updated, conn)
        return updated

    async def update_plan(
        self,
        user_id: str,
        plan: PlanType,
        status: SubscriptionStatus,
        start_date: datetime,
        end_date: Optional[datetime],
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Subscription]:
        current = self.rows.get(user_id)
        if current is None:
            return None
        updated = current.model_copy(update={
            "plan": plan,
            "status": status,
            "start_date": start_date,
            "end_date": end_date,
            "updated_at": self.store.clock(),
        })
        _put(self.rows, user_id, updated, conn)
        return updated

    async def update_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Subscription]:
        current = self.rows.get(user_id)
        if current is None:
            return None
        updated = current.model_copy(update={"status": status, "updated_at": self.store.clock()})
        _put(self.rows, user_id, updated, conn)
        return updated


class FakeVehicleRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows = store.vehicles

    async def get_by_id(self, vehicle_id: str, conn: Optional[FakeConnection] = None) -> Optional[Vehicle]:
        await asyncio.sleep(0)
        return self.rows.get(vehicle_id)

    async def list_by_owner(self, owner_id: str, active_only: bool = False) -> list[Vehicle]:
        return sorted(
            (v for v in self.rows.values() if v.owner_id == owner_id and (v.is_active or not active_only)),
            key=lambda v: v.created_at,
        )

    async def count_active(self, owner_id: str, conn: Optional[FakeConnection] = None) -> int:
        await asyncio.sleep(0)
        return sum(1 for v in self.rows.values() if v.owner_id == owner_id and v.is_active)

    async def create(self, vehicle: Vehicle, conn: Optional[FakeConnection] = None) -> Vehicle:
        await asyncio.sleep(0)
        _put(self.rows, vehicle.id, vehicle, conn)
        return vehicle

    async def deactivate(self, vehicle_id: str, owner_id: str) -> Optional[Vehicle]:
        current = self.rows.get(vehicle_id)
        if current is None or current.owner_id != owner_id:
            return None
        updated = current.model_copy(update={"is_active": False, "updated_at": self.store.clock()})
        self.rows[vehicle_id] = updated
        return updated


class FakeLoadRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows = store.loads

    async def get_by_id(self, load_id: str, conn: Optional[FakeConnection] = None) -> Optional[Load]:
        await asyncio.sleep(0)
        return self.rows.get(load_id)

    async def get_for_update(self, load_id: str, conn: FakeConnection) -> Optional[Load]:
        await _lock(conn, "loads", load_id)
        return self.rows.get(load_id)

    async def get_for_share(self, load_id: str, conn: FakeConnection) -> Optional[Load]:
        # Разделяемая блокировка моделируется эксклюзивной: порядок тот же
        await _lock(conn, "loads", load_id)
        return self.rows.get(load_id)

    async def create(self, load: Load, conn: Optional[FakeConnection] = None) -> Load:
        await asyncio.sleep(0)
        _put(self.rows, load.id, load, conn)
        return load

    async def update_fields(
        self,
        load_id: str,
        fields: dict[str, Any],
        allowed_statuses: list[LoadStatus],
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Load]:
        unknown = set(fields) - LOAD_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Поля груза нельзя обновлять: {sorted(unknown)}")
        current = self.rows.get(load_id)
        if current is None or current.status not in allowed_statuses:
            return None
        updated = current.model_copy(update={**fields, "updated_at": self.store.clock()})
        _put(self.rows, load_id, updated, conn)
        return updated

    async def transition(
        self,
        load_id: str,
        to_status: LoadStatus,
        from_statuses: list[LoadStatus],
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Load]:
        await asyncio.sleep(0)
        current = self.rows.get(load_id)
        if current is None or current.status not in from_statuses:
            return None
        now = self.store.clock()
        update: dict[str, Any] = {"status": to_status, "updated_at": now}
        if to_status == LoadStatus.OPEN:
            update["published_at"] = now
        if to_status == LoadStatus.ASSIGNED:
            update["assigned_at"] = now
        updated = current.model_copy(update=update)
        _put(self.rows, load_id, updated, conn)
        return updated

    async def delete_draft(self, load_id: str, owner_id: str) -> bool:
        current = self.rows.get(load_id)
        if current is None or current.owner_id != owner_id or current.status != LoadStatus.DRAFT:
            return False
        del self.rows[load_id]
        return True

    async def expire_due(self, now: datetime, conn: Optional[FakeConnection] = None) -> list[Load]:
        expired = []
        for load in list(self.rows.values()):
            if load.status == LoadStatus.OPEN and load.expires_at is not None and load.expires_at <= now:
                updated = load.model_copy(update={"status": LoadStatus.EXPIRED, "updated_at": now})
                _put(self.rows, load.id, updated, conn)
                expired.append(updated)
        return expired

    async def list_by_owner(
        self,
        owner_id: str,
        status: Optional[LoadStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Load]:
        rows = [
            load for load in self.rows.values()
            if load.owner_id == owner_id and (status is None or load.status == status)
        ]
        rows.sort(key=lambda load: load.created_at, reverse=True)
        return rows[offset:offset + limit]

    async def search_open(self, filters: LoadSearchFilters, limit: int = 20, offset: int = 0) -> list[Load]:
        def matches(load: Load) -> bool:
            if load.status != LoadStatus.OPEN:
                return False
            if filters.vehicle_type is not None and not load.accepts_vehicle(filters.vehicle_type):
                return False
            if filters.cargo_type is not None and load.cargo_type != filters.cargo_type:
                return False
            if filters.max_weight_kg is not None and load.weight_kg > filters.max_weight_kg:
                return False
            if filters.min_price is not None and (
                load.suggested_price is None or load.suggested_price < filters.min_price
            ):
                return False
            if filters.max_price is not None and (
                load.suggested_price is None or load.suggested_price > filters.max_price
            ):
                return False
            return True

        rows = [load for load in self.rows.values() if matches(load)]
        rows.sort(key=lambda load: load.published_at or load.created_at, reverse=True)
        return rows[offset:offset + limit]

    async def count_by_status(self, owner_id: str) -> dict[LoadStatus, int]:
        counts: dict[LoadStatus, int] = {}
        for load in self.rows.values():
            if load.owner_id == owner_id:
                counts[load.status] = counts.get(load.status, 0) + 1
        return counts


class FakeBidRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows = store.bids

    async def get_by_id(self, bid_id: str, conn: Optional[FakeConnection] = None) -> Optional[Bid]:
        await asyncio.sleep(0)
        return self.rows.get(bid_id)

    async def get_for_update(self, bid_id: str, conn: FakeConnection) -> Optional[Bid]:
        await _lock(conn, "bids", bid_id)
        return self.rows.get(bid_id)

    async def get_pending_by_driver(
        self,
        load_id: str,
        driver_id: str,
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Bid]:
        await asyncio.sleep(0)
        for bid in self.rows.values():
            if bid.load_id == load_id and bid.driver_id == driver_id and bid.status == BidStatus.PENDING:
                return bid
        return None

    async def create(self, bid: Bid, conn: Optional[FakeConnection] = None) -> Bid:
        await asyncio.sleep(0)
        # Частичный уникальный индекс (load_id, driver_id) WHERE status = 'pending'
        if bid.status == BidStatus.PENDING and any(
            b.load_id == bid.load_id and b.driver_id == bid.driver_id and b.status == BidStatus.PENDING
            for b in self.rows.values()
        ):
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"reason": "UniqueViolationError"})
        _put(self.rows, bid.id, bid, conn)
        return bid

    async def update_fields(
        self,
        bid_id: str,
        fields: dict[str, Any],
        conn: Optional[FakeConnection] = None,
    ) -> Optional[Bid]:
        unknown = set(fields) - BID_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Поля ставки нельзя обновлять: {sorted(unknown)}")
        current = self.rows.get(bid_id)
        if current is None or current.status != BidStatus.PENDING:
            return None
        updated = current.model_copy(update={**fields, "updated_at": self.store.clock()})
        _put(self.rows, bid_id, updated, conn)
        return updated

    async def transition(
        self,
        bid_id: str,
        to_status: BidStatus,
        conn: Optional[FakeConnection] = None,
        reason: Optional[str] = None,
    ) -> Optional[Bid]:
        await asyncio.sleep(0)
        current = self.rows.get(bid_id)
        if current is None or not BidStateMachine.can_transition(current.status, to_status):
            return None
        updated = current.model_copy(update={
            "status": to_status,
            "rejection_reason": reason if reason is not None else current.rejection_reason,
            "updated_at": self.store.clock(),
        })
        _put(self.rows, bid_id, updated, conn)
        return updated

    def _reject_where(self, predicate, reason: Optional[str], conn: Optional[FakeConnection]) -> list[Bid]:
        rejected = []
        for bid in list(self.rows.values()):
            if bid.status == BidStatus.PENDING and predicate(bid):
                updated = bid.model_copy(update={
                    "status": BidStatus.REJECTED,
                    "rejection_reason": reason,
                    "updated_at": self.store.clock(),
                })
                _put(self.rows, bid.id, updated, conn)
                rejected.append(updated)
        return rejected

    async def reject_pending_for_load(
        self,
        load_id: str,
        conn: Optional[FakeConnection] = None,
        exclude_bid_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> list[Bid]:
        return self._reject_where(
            lambda b: b.load_id == load_id and b.id != exclude_bid_id, reason, conn,
        )

    async def reject_pending_for_loads(
        self,
        load_ids: list[str],
        conn: Optional[FakeConnection] = None,
        reason: Optional[str] = None,
    ) -> list[Bid]:
        if not load_ids:
            return []
        ids = set(load_ids)
        return self._reject_where(lambda b: b.load_id in ids, reason, conn)

    async def expire_due(self, now: datetime, conn: Optional[FakeConnection] = None) -> list[Bid]:
        return self._reject_where(
            lambda b: b.expires_at is not None and b.expires_at <= now, "expired", conn,
        )

    async def list_for_load(self, load_id: str, status: Optional[BidStatus] = BidStatus.PENDING) -> list[Bid]:
        rows = [b for b in self.rows.values() if b.load_id == load_id and (status is None or b.status == status)]
        rows.sort(key=lambda b: (b.price, b.created_at))
        return rows

    async def list_for_driver(
        self,
        driver_id: str,
        status: Optional[BidStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Bid]:
        rows = [b for b in self.rows.values() if b.driver_id == driver_id and (status is None or b.status == status)]
        rows.sort(key=lambda b: b.created_at, reverse=True)
        return rows[offset:offset + limit]

    async def list_received(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[Bid]:
        loads = self.store.loads
        rows = [
            b for b in self.rows.values()
            if b.status == BidStatus.PENDING
            and b.load_id in loads
            and loads[b.load_id].owner_id == owner_id
            and loads[b.load_id].status == LoadStatus.OPEN
        ]
        rows.sort(key=lambda b: b.created_at, reverse=True)
        return rows[offset:offset + limit]

    async def stats_for_load(self, load_id: str) -> BidStats:
        bids = [b for b in self.rows.values() if b.load_id == load_id]
        pending = [b.price for b in bids if b.status == BidStatus.PENDING]
        return BidStats(
            load_id=load_id,
            total=len(bids),
            pending=len(pending),
            accepted=sum(1 for b in bids if b.status == BidStatus.ACCEPTED),
            rejected=sum(1 for b in bids if b.status == BidStatus.REJECTED),
            withdrawn=sum(1 for b in bids if b.status == BidStatus.WITHDRAWN),
            lowest_price=min(pending) if pending else None,
            highest_price=max(pending) if pending else None,
            average_price=sum(pending) / len(pending) if pending else None,
        )

    async def stats_for_driver(self, driver_id: str) -> DriverBidStats:
        bids = [b for b in self.rows.values() if b.driver_id == driver_id]
        accepted = sum(1 for b in bids if b.status == BidStatus.ACCEPTED)
        priced = [b.price for b in bids if b.status in (BidStatus.PENDING, BidStatus.ACCEPTED)]
        return DriverBidStats(
            driver_id=driver_id,
            total=len(bids),
            pending=sum(1 for b in bids if b.status == BidStatus.PENDING),
            accepted=accepted,
            rejected=sum(1 for b in bids if b.status == BidStatus.REJECTED),
            withdrawn=sum(1 for b in bids if b.status == BidStatus.WITHDRAWN),
            acceptance_rate=round(accepted * 100 / len(bids)) if bids else 0,
            average_price=sum(priced) / len(priced) if priced else None,
        )


class FakeTripRepository:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.rows = store.trips

    async def get_by_id(self, trip_id: str, conn: Optional[FakeConnection] = None) -> Optional[Trip]:
        await asyncio.sleep(0)
        return self.rows.get(trip_id)

    async def get_for_update(self, trip_id: str, conn: FakeConnection) -> Optional[Trip]:
        await _lock(conn, "trips", trip_id)
        return self.rows.get(trip_id)

    async def get_by_load(self, load_id: str) -> Optional[Trip]:
        return next((t for t in self.rows.values() if t.load_id == load_id), None)

    async def create(self, trip: Trip, conn: Optional[FakeConnection] = None) -> Trip:
        await asyncio.sleep(0)
        if any(t.load_id == trip.load_id for t in self.rows.values()):
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"reason": "UniqueViolationError"})
        _put(self.rows, trip.id, trip, conn)
        return trip

    async def transition(
        self,
        trip_id: str,
        to_status: TripStatus,
        from_statuses: list[TripStatus],
        conn: Optional[FakeConnection] = None,
        notes: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
        cancelled_by: Optional[str] = None,
    ) -> Optional[Trip]:
        current = self.rows.get(trip_id)
        if current is None or current.status not in from_statuses:
            return None
        now = self.store.clock()
        update: dict[str, Any] = {"status": to_status, "updated_at": now}
        if to_status == TripStatus.IN_PROGRESS:
            update["start_time"] = current.start_time or now
        if to_status in (TripStatus.COMPLETED, TripStatus.CANCELLED):
            update["end_time"] = now
        if notes is not None:
            update["notes"] = notes
        if cancellation_reason is not None:
            update["cancellation_reason"] = cancellation_reason
        if cancelled_by is not None:
            update["cancelled_by"] = cancelled_by
        updated = current.model_copy(update=update)
        _put(self.rows, trip_id, updated, conn)
        return updated

    async def append_location(
        self,
        trip_id: str,
        latitude: float,
        longitude: float,
        recorded_at: datetime,
        conn: FakeConnection,
    ) -> RoutePoint:
        route = self.store.routes.get(trip_id, [])
        point = RoutePoint(
            trip_id=trip_id,
            sequence=len(route) + 1,
            latitude=latitude,
            longitude=longitude,
            recorded_at=recorded_at,
        )
        _put(self.store.routes, trip_id, [*route, point], conn)
        trip = self.rows[trip_id].model_copy(update={
            "current_latitude": latitude,
            "current_longitude": longitude,
            "last_location_at": recorded_at,
        })
        _put(self.rows, trip_id, trip, conn)
        return point

    async def get_route(self, trip_id: str) -> list[RoutePoint]:
        return list(self.store.routes.get(trip_id, []))

    async def list_by_driver(
        self,
        driver_id: str,
        status: Optional[TripStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Trip]:
        return self._list(lambda t: t.driver_id == driver_id, status, limit, offset)

    async def list_by_owner(
        self,
        owner_id: str,
        status: Optional[TripStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Trip]:
        return self._list(lambda t: t.owner_id == owner_id, status, limit, offset)

    def _list(self, predicate, status: Optional[TripStatus], limit: int, offset: int) -> list[Trip]:
        rows = [t for t in self.rows.values() if predicate(t) and (status is None or t.status == status)]
        rows.sort(key=lambda t: t.created_at, reverse=True)
        return rows[offset:offset + limit]


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def catalog() -> SubscriptionSettings:
    """Каталог тарифов по умолчанию: FREE 3/3/1, STARTER безлимит с одной машиной."""
    return SubscriptionSettings()


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.acquire_lock = AsyncMock(return_value="token")
    redis.release_lock = AsyncMock(return_value=True)
    redis.health_check = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.health_check = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ ДОМЕНА
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FrozenClock) -> FakeStore:
    return FakeStore(clock)


@pytest.fixture
def fake_db(store: FakeStore) -> FakeDatabase:
    return FakeDatabase(store)


@dataclass
class Marketplace:
    """Сервисы поверх хранилища в памяти и помощники для подготовки данных."""

    services: ServiceContainer
    store: FakeStore
    db: FakeDatabase
    clock: FrozenClock
    event_bus: AsyncMock
    redis: AsyncMock

    def subscribe(
        self,
        user_id: str,
        plan: PlanType = PlanType.FREE,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        **fields: Any,
    ) -> Subscription:
        """Кладёт подписку прямо в хранилище."""
        now = self.clock()
        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=status,
            start_date=now,
            last_reset_date=now,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.store.subscriptions[user_id] = subscription
        return subscription

    def add_vehicle(
        self,
        owner_id: str,
        vehicle_type: VehicleType = VehicleType.LARGE_TRUCK,
        is_active: bool = True,
    ) -> Vehicle:
        vehicle = Vehicle(
            owner_id=owner_id,
            vehicle_type=vehicle_type,
            plate_number="AA1234BB",
            capacity_kg=20000,
            is_active=is_active,
        )
        self.store.vehicles[vehicle.id] = vehicle
        return vehicle

    async def open_load(self, owner_id: str = "owner-1", **overrides: Any) -> Load:
        """Публикует груз от имени владельца (подписка создаётся при необходимости)."""
        if owner_id not in self.store.subscriptions:
            self.subscribe(owner_id, PlanType.STARTER)
        return await self.services.loads.create_load(owner_id, make_load_dto(**overrides), publish=True)

    def event_types(self) -> list[str]:
        return [c.args[0].event_type for c in self.event_bus.publish.call_args_list]

    def events(self, event_type: str) -> list[dict[str, Any]]:
        return [
            c.args[0].payload for c in self.event_bus.publish.call_args_list
            if c.args[0].event_type == event_type
        ]


def make_load_dto(**overrides: Any) -> LoadCreateDTO:
    """DTO груза с разумными значениями по умолчанию."""
    data: dict[str, Any] = {
        "title": "Трубы стальные",
        "cargo_type": "metal",
        "weight_kg": 12000,
        "pickup_address": "Киев, ул. Складская, 1",
        "delivery_address": "Львов, ул. Промышленная, 5",
        "pickup_date": datetime(2026, 3, 15, 8, 0, tzinfo=timezone.utc),
        "delivery_date": datetime(2026, 3, 16, 18, 0, tzinfo=timezone.utc),
        "suggested_price": 1500,
        "vehicle_types": [VehicleType.LARGE_TRUCK, VehicleType.FLATBED],
    }
    data.update(overrides)
    return LoadCreateDTO(**data)


@pytest.fixture
def load_dto_factory():
    return make_load_dto


@pytest.fixture
def marketplace(
    fake_db: FakeDatabase,
    store: FakeStore,
    clock: FrozenClock,
    mock_redis: AsyncMock,
    mock_event_bus: AsyncMock,
    catalog: SubscriptionSettings,
) -> Marketplace:
    """Полный набор доменных сервисов поверх хранилища в памяти."""
    sub_repo = FakeSubscriptionRepository(store)
    vehicle_repo = FakeVehicleRepository(store)
    load_repo = FakeLoadRepository(store)
    bid_repo = FakeBidRepository(store)
    trip_repo = FakeTripRepository(store)

    notifications = NotificationService(mock_event_bus, language="ru")
    subscriptions = SubscriptionService(
        fake_db,
        repository=sub_repo,
        vehicle_repository=vehicle_repo,
        catalog=catalog,
        clock=clock,
        currency="USD",
    )
    loads = LoadService(
        fake_db,
        mock_redis,
        mock_event_bus,
        subscriptions,
        repository=load_repo,
        bid_repository=bid_repo,
        clock=clock,
        cache_ttl=60,
        currency="USD",
    )
    services = ServiceContainer(
        subscriptions=subscriptions,
        vehicles=VehicleService(fake_db, subscriptions, repository=vehicle_repo),
        loads=loads,
        bids=BidService(
            fake_db,
            mock_event_bus,
            subscriptions,
            notifications,
            repository=bid_repo,
            load_repository=load_repo,
            vehicle_repository=vehicle_repo,
            clock=clock,
            min_price=0.01,
        ),
        assignment=AssignmentService(
            fake_db,
            mock_event_bus,
            loads,
            notifications,
            bid_repository=bid_repo,
            load_repository=load_repo,
            trip_repository=trip_repo,
            clock=clock,
        ),
        trips=TripService(fake_db, mock_event_bus, loads, notifications, repository=trip_repo, clock=clock),
        notifications=notifications,
    )
    return Marketplace(
        services=services,
        store=store,
        db=fake_db,
        clock=clock,
        event_bus=mock_event_bus,
        redis=mock_redis,
    )

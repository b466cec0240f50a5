# src/core/trips/repository.py
"""
Репозиторий рейсов и точек маршрута.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from asyncpg import Connection, Record

from src.common.constants import TripStatus
from src.core.trips.models import RoutePoint, Trip
from src.infra.database import BaseRepository

_COLUMNS = """
    id, load_id, bid_id, driver_id, owner_id, vehicle_id, agreed_price, currency,
    status, start_time, end_time, current_latitude, current_longitude, last_location_at,
    notes, cancellation_reason, cancelled_by, created_at, updated_at
"""


class TripRepository(BaseRepository):
    """Репозиторий рейсов."""

    async def get_by_id(self, trip_id: str, conn: Optional[Connection] = None) -> Optional[Trip]:
        if not self._is_id(trip_id):
            return None
        row = await self._executor(conn).fetchrow(
            f"SELECT {_COLUMNS} FROM trips WHERE id = $1",
            trip_id,
        )
        return self._row_to_trip(row) if row else None

    async def get_for_update(self, trip_id: str, conn: Connection) -> Optional[Trip]:
        """Блокирует рейс; под этой блокировкой назначается номер точки маршрута."""
        if not self._is_id(trip_id):
            return None
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM trips WHERE id = $1 FOR UPDATE",
            trip_id,
        )
        return self._row_to_trip(row) if row else None

    async def get_by_load(self, load_id: str) -> Optional[Trip]:
        if not self._is_id(load_id):
            return None
        row = await self._db.fetchrow(
            f"SELECT {_COLUMNS} FROM trips WHERE load_id = $1",
            load_id,
        )
        return self._row_to_trip(row) if row else None

    async def create(self, trip: Trip, conn: Optional[Connection] = None) -> Trip:
        """Создаёт рейс. На один груз допускается один рейс (UNIQUE load_id)."""
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO trips (
                id, load_id, bid_id, driver_id, owner_id, vehicle_id,
                agreed_price, currency, status, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING {_COLUMNS}
            """,
            trip.id,
            trip.load_id,
            trip.bid_id,
            trip.driver_id,
            trip.owner_id,
            trip.vehicle_id,
            trip.agreed_price,
            trip.currency,
            trip.status.value,
            trip.created_at,
            trip.updated_at,
        )
        return self._row_to_trip(row)

    async def transition(
        self,
        trip_id: str,
        to_status: TripStatus,
        from_statuses: list[TripStatus],
        conn: Optional[Connection] = None,
        notes: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
        cancelled_by: Optional[str] = None,
    ) -> Optional[Trip]:
        """
        Условный переход статуса рейса.
        start_time ставится при старте, end_time при завершении или отмене.
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE trips
            SET status = $2,
                start_time = CASE WHEN $2 = 'in_progress' THEN COALESCE(start_time, NOW()) ELSE start_time END,
                end_time = CASE WHEN $2 IN ('completed', 'cancelled') THEN NOW() ELSE end_time END,
                notes = COALESCE($4, notes),
                cancellation_reason = COALESCE($5, cancellation_reason),
                cancelled_by = COALESCE($6, cancelled_by),
                updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {_COLUMNS}
            """,
            trip_id,
            to_status.value,
            [s.value for s in from_statuses],
            notes,
            cancellation_reason,
            cancelled_by,
        )
        return self._row_to_trip(row) if row else None

    async def append_location(
        self,
        trip_id: str,
        latitude: float,
        longitude: float,
        recorded_at: datetime,
        conn: Connection,
    ) -> RoutePoint:
        """
        Добавляет точку маршрута со следующим номером и обновляет текущую позицию.
        Вызывается под блокировкой строки рейса.
        """
        row = await conn.fetchrow(
            """
            INSERT INTO trip_locations (trip_id, sequence, latitude, longitude, recorded_at)
            VALUES (
                $1,
                COALESCE((SELECT MAX(sequence) FROM trip_locations WHERE trip_id = $1), 0) + 1,
                $2, $3, $4
            )
            RETURNING trip_id, sequence, latitude, longitude, recorded_at
            """,
            trip_id,
            latitude,
            longitude,
            recorded_at,
        )
        await conn.execute(
            """
            UPDATE trips
            SET current_latitude = $2, current_longitude = $3, last_location_at = $4, updated_at = NOW()
            WHERE id = $1
            """,
            trip_id,
            latitude,
            longitude,
            recorded_at,
        )
        return self._row_to_point(row)

    async def get_route(self, trip_id: str) -> list[RoutePoint]:
        rows = await self._db.fetch(
            """
            SELECT trip_id, sequence, latitude, longitude, recorded_at
            FROM trip_locations WHERE trip_id = $1
            ORDER BY sequence ASC
            """,
            trip_id,
        )
        return [self._row_to_point(r) for r in rows]

    async def list_by_driver(
        self,
        driver_id: str,
        status: Optional[TripStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Trip]:
        return await self._list("driver_id", driver_id, status, limit, offset)

    async def list_by_owner(
        self,
        owner_id: str,
        status: Optional[TripStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Trip]:
        return await self._list("owner_id", owner_id, status, limit, offset)

    async def _list(
        self,
        column: str,
        user_id: str,
        status: Optional[TripStatus],
        limit: int,
        offset: int,
    ) -> list[Trip]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM trips
            WHERE {column} = $1 AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            user_id,
            status.value if status else None,
            limit,
            offset,
        )
        return [self._row_to_trip(r) for r in rows]

    @staticmethod
    def _row_to_trip(row: Record | dict[str, Any]) -> Trip:
        return Trip(
            id=str(row["id"]),
            load_id=str(row["load_id"]),
            bid_id=str(row["bid_id"]),
            driver_id=str(row["driver_id"]),
            owner_id=str(row["owner_id"]),
            vehicle_id=str(row["vehicle_id"]) if row["vehicle_id"] else None,
            agreed_price=float(row["agreed_price"]),
            currency=row["currency"],
            status=TripStatus(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            current_latitude=row["current_latitude"],
            current_longitude=row["current_longitude"],
            last_location_at=row["last_location_at"],
            notes=row["notes"],
            cancellation_reason=row["cancellation_reason"],
            cancelled_by=row["cancelled_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_point(row: Record | dict[str, Any]) -> RoutePoint:
        return RoutePoint(
            trip_id=str(row["trip_id"]),
            sequence=row["sequence"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            recorded_at=row["recorded_at"],
        )

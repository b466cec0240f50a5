# src/core/vehicles/repository.py
"""
Репозиторий транспорта.
"""

from __future__ import annotations

from typing import Any, Optional

from asyncpg import Connection, Record

from src.common.constants import VehicleType
from src.core.vehicles.models import Vehicle
from src.infra.database import BaseRepository

_COLUMNS = """
    id, owner_id, vehicle_type, plate_number, capacity_kg, make, model,
    is_active, created_at, updated_at
"""


class VehicleRepository(BaseRepository):
    """Репозиторий транспорта."""

    async def get_by_id(
        self,
        vehicle_id: str,
        conn: Optional[Connection] = None,
    ) -> Optional[Vehicle]:
        if not self._is_id(vehicle_id):
            return None
        row = await self._executor(conn).fetchrow(
            f"SELECT {_COLUMNS} FROM vehicles WHERE id = $1",
            vehicle_id,
        )
        return self._row_to_vehicle(row) if row else None

    async def list_by_owner(self, owner_id: str, active_only: bool = False) -> list[Vehicle]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM vehicles
            WHERE owner_id = $1 AND ($2 = FALSE OR is_active)
            ORDER BY created_at
            """,
            owner_id,
            active_only,
        )
        return [self._row_to_vehicle(r) for r in rows]

    async def count_active(self, owner_id: str, conn: Optional[Connection] = None) -> int:
        return await self._executor(conn).fetchval(
            "SELECT COUNT(*) FROM vehicles WHERE owner_id = $1 AND is_active",
            owner_id,
        )

    async def create(self, vehicle: Vehicle, conn: Optional[Connection] = None) -> Vehicle:
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO vehicles (
                id, owner_id, vehicle_type, plate_number, capacity_kg, make, model,
                is_active, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING {_COLUMNS}
            """,
            vehicle.id,
            vehicle.owner_id,
            vehicle.vehicle_type.value,
            vehicle.plate_number,
            vehicle.capacity_kg,
            vehicle.make,
            vehicle.model,
            vehicle.is_active,
            vehicle.created_at,
            vehicle.updated_at,
        )
        return self._row_to_vehicle(row)

    async def deactivate(self, vehicle_id: str, owner_id: str) -> Optional[Vehicle]:
        """Снимает транспорт с линии (только владелец)."""
        row = await self._db.fetchrow(
            f"""
            UPDATE vehicles SET is_active = FALSE, updated_at = NOW()
            WHERE id = $1 AND owner_id = $2
            RETURNING {_COLUMNS}
            """,
            vehicle_id,
            owner_id,
        )
        return self._row_to_vehicle(row) if row else None

    @staticmethod
    def _row_to_vehicle(row: Record | dict[str, Any]) -> Vehicle:
        return Vehicle(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            vehicle_type=VehicleType(row["vehicle_type"]),
            plate_number=row["plate_number"],
            capacity_kg=float(row["capacity_kg"]),
            make=row["make"],
            model=row["model"],
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

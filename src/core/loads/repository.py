# src/core/loads/repository.py
"""
Репозиторий грузов.
Смена статуса выполняется условным UPDATE по списку допустимых исходных статусов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from asyncpg import Connection, Record

from src.common.constants import LoadStatus, VehicleType
from src.core.loads.models import Load, LoadSearchFilters
from src.infra.database import BaseRepository

_COLUMNS = """
    id, owner_id, title, description, cargo_type, weight_kg, volume_m3,
    pickup_address, pickup_latitude, pickup_longitude,
    delivery_address, delivery_latitude, delivery_longitude,
    pickup_date, delivery_date, suggested_price, currency, vehicle_types,
    is_fragile, requires_insurance, status, expires_at, published_at, assigned_at,
    created_at, updated_at
"""

# Поля, которые владелец может менять через update_load
UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "title", "description", "cargo_type", "weight_kg", "volume_m3",
    "pickup_address", "delivery_address", "pickup_date", "delivery_date",
    "suggested_price", "vehicle_types", "is_fragile", "requires_insurance", "expires_at",
})


class LoadRepository(BaseRepository):
    """Репозиторий грузов."""

    async def get_by_id(
        self,
        load_id: str,
        conn: Optional[Connection] = None,
    ) -> Optional[Load]:
        if not self._is_id(load_id):
            return None
        row = await self._executor(conn).fetchrow(
            f"SELECT {_COLUMNS} FROM loads WHERE id = $1",
            load_id,
        )
        return self._row_to_load(row) if row else None

    async def get_for_update(self, load_id: str, conn: Connection) -> Optional[Load]:
        """Читает груз с эксклюзивной блокировкой строки до конца транзакции."""
        if not self._is_id(load_id):
            return None
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM loads WHERE id = $1 FOR UPDATE",
            load_id,
        )
        return self._row_to_load(row) if row else None

    async def get_for_share(self, load_id: str, conn: Connection) -> Optional[Load]:
        """
        Читает груз с разделяемой блокировкой.
        Ставки на один груз не блокируют друг друга, но ждут принятия ставки.
        """
        if not self._is_id(load_id):
            return None
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM loads WHERE id = $1 FOR SHARE",
            load_id,
        )
        return self._row_to_load(row) if row else None

    async def create(self, load: Load, conn: Optional[Connection] = None) -> Load:
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO loads (
                id, owner_id, title, description, cargo_type, weight_kg, volume_m3,
                pickup_address, pickup_latitude, pickup_longitude,
                delivery_address, delivery_latitude, delivery_longitude,
                pickup_date, delivery_date, suggested_price, currency, vehicle_types,
                is_fragile, requires_insurance, status, expires_at, published_at, assigned_at,
                created_at, updated_at
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13,
                $14, $15, $16, $17, $18, $19, $20, $21, $22, $23, $24, $25, $26
            )
            RETURNING {_COLUMNS}
            """,
            load.id,
            load.owner_id,
            load.title,
            load.description,
            load.cargo_type,
            load.weight_kg,
            load.volume_m3,
            load.pickup_address,
            load.pickup_latitude,
            load.pickup_longitude,
            load.delivery_address,
            load.delivery_latitude,
            load.delivery_longitude,
            load.pickup_date,
            load.delivery_date,
            load.suggested_price,
            load.currency,
            [vt.value for vt in load.vehicle_types],
            load.is_fragile,
            load.requires_insurance,
            load.status.value,
            load.expires_at,
            load.published_at,
            load.assigned_at,
            load.created_at,
            load.updated_at,
        )
        return self._row_to_load(row)

    async def update_fields(
        self,
        load_id: str,
        fields: dict[str, Any],
        allowed_statuses: list[LoadStatus],
        conn: Optional[Connection] = None,
    ) -> Optional[Load]:
        """
        Обновляет поля груза, если он всё ещё в одном из allowed_statuses.

        Returns:
            Обновлённый груз или None, если статус не подходит
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Поля груза нельзя обновлять: {sorted(unknown)}")

        assignments = []
        values: list[Any] = [load_id, [s.value for s in allowed_statuses]]
        for name, value in fields.items():
            if name == "vehicle_types":
                value = [vt.value for vt in value]
            values.append(value)
            assignments.append(f"{name} = ${len(values)}")
        assignments.append("updated_at = NOW()")

        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE loads SET {", ".join(assignments)}
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING {_COLUMNS}
            """,
            *values,
        )
        return self._row_to_load(row) if row else None

    async def transition(
        self,
        load_id: str,
        to_status: LoadStatus,
        from_statuses: list[LoadStatus],
        conn: Optional[Connection] = None,
    ) -> Optional[Load]:
        """
        Условный переход статуса. Отметки published_at и assigned_at
        ставятся при переходе в OPEN и ASSIGNED соответственно.

        Returns:
            Груз после перехода или None, если текущий статус не из from_statuses
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE loads
            SET status = $2,
                published_at = CASE WHEN $2 = 'open' THEN NOW() ELSE published_at END,
                assigned_at = CASE WHEN $2 = 'assigned' THEN NOW() ELSE assigned_at END,
                updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {_COLUMNS}
            """,
            load_id,
            to_status.value,
            [s.value for s in from_statuses],
        )
        return self._row_to_load(row) if row else None

    async def delete_draft(self, load_id: str, owner_id: str) -> bool:
        """Удаляет черновик владельца. Опубликованные грузы не удаляются."""
        result = await self._db.execute(
            "DELETE FROM loads WHERE id = $1 AND owner_id = $2 AND status = $3",
            load_id,
            owner_id,
            LoadStatus.DRAFT.value,
        )
        return result.endswith(" 1")

    async def expire_due(self, now: datetime, conn: Optional[Connection] = None) -> list[Load]:
        """Переводит просроченные открытые грузы в EXPIRED. Повторный вызов ничего не меняет."""
        rows = await self._executor(conn).fetch(
            f"""
            UPDATE loads SET status = $2, updated_at = NOW()
            WHERE status = $3 AND expires_at IS NOT NULL AND expires_at <= $1
            RETURNING {_COLUMNS}
            """,
            now,
            LoadStatus.EXPIRED.value,
            LoadStatus.OPEN.value,
        )
        return [self._row_to_load(r) for r in rows]

    async def list_by_owner(
        self,
        owner_id: str,
        status: Optional[LoadStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Load]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM loads
            WHERE owner_id = $1 AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            owner_id,
            status.value if status else None,
            limit,
            offset,
        )
        return [self._row_to_load(r) for r in rows]

    async def search_open(
        self,
        filters: LoadSearchFilters,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Load]:
        """Открытые грузы по фильтрам, свежие первыми."""
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM loads
            WHERE status = $1
              AND ($2::text IS NULL OR cardinality(vehicle_types) = 0 OR $2 = ANY(vehicle_types))
              AND ($3::text IS NULL OR cargo_type = $3)
              AND ($4::float8 IS NULL OR weight_kg <= $4)
              AND ($5::float8 IS NULL OR suggested_price >= $5)
              AND ($6::float8 IS NULL OR suggested_price <= $6)
            ORDER BY published_at DESC NULLS LAST
            LIMIT $7 OFFSET $8
            """,
            LoadStatus.OPEN.value,
            filters.vehicle_type.value if filters.vehicle_type else None,
            filters.cargo_type,
            filters.max_weight_kg,
            filters.min_price,
            filters.max_price,
            limit,
            offset,
        )
        return [self._row_to_load(r) for r in rows]

    async def count_by_status(self, owner_id: str) -> dict[LoadStatus, int]:
        rows = await self._db.fetch(
            "SELECT status, COUNT(*) AS cnt FROM loads WHERE owner_id = $1 GROUP BY status",
            owner_id,
        )
        return {LoadStatus(r["status"]): r["cnt"] for r in rows}

    @staticmethod
    def _row_to_load(row: Record | dict[str, Any]) -> Load:
        def num(value: Any) -> Optional[float]:
            return float(value) if value is not None else None

        return Load(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            title=row["title"],
            description=row["description"],
            cargo_type=row["cargo_type"],
            weight_kg=float(row["weight_kg"]),
            volume_m3=num(row["volume_m3"]),
            pickup_address=row["pickup_address"],
            pickup_latitude=row["pickup_latitude"],
            pickup_longitude=row["pickup_longitude"],
            delivery_address=row["delivery_address"],
            delivery_latitude=row["delivery_latitude"],
            delivery_longitude=row["delivery_longitude"],
            pickup_date=row["pickup_date"],
            delivery_date=row["delivery_date"],
            suggested_price=num(row["suggested_price"]),
            currency=row["currency"],
            vehicle_types=[VehicleType(v) for v in (row["vehicle_types"] or [])],
            is_fragile=row["is_fragile"],
            requires_insurance=row["requires_insurance"],
            status=LoadStatus(row["status"]),
            expires_at=row["expires_at"],
            published_at=row["published_at"],
            assigned_at=row["assigned_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

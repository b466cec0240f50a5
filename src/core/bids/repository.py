# src/core/bids/repository.py
"""
Репозиторий ставок.
Любой выход ставки из PENDING выполняется условным UPDATE ... WHERE status = 'pending',
поэтому конкурентные переходы не перезаписывают друг друга.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from asyncpg import Connection, Record

from src.common.constants import BidStatus, LoadStatus
from src.core.bids.models import Bid, BidStats, DriverBidStats
from src.core.state_machine import BidStateMachine
from src.infra.database import BaseRepository

_COLUMNS = """
    id, load_id, driver_id, vehicle_id, price, currency, message,
    estimated_duration_hours, status, expires_at, rejection_reason,
    created_at, updated_at
"""

UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "price", "vehicle_id", "message", "estimated_duration_hours", "expires_at",
})


class BidRepository(BaseRepository):
    """Репозиторий ставок."""

    async def get_by_id(self, bid_id: str, conn: Optional[Connection] = None) -> Optional[Bid]:
        if not self._is_id(bid_id):
            return None
        row = await self._executor(conn).fetchrow(
            f"SELECT {_COLUMNS} FROM bids WHERE id = $1",
            bid_id,
        )
        return self._row_to_bid(row) if row else None

    async def get_for_update(self, bid_id: str, conn: Connection) -> Optional[Bid]:
        if not self._is_id(bid_id):
            return None
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM bids WHERE id = $1 FOR UPDATE",
            bid_id,
        )
        return self._row_to_bid(row) if row else None

    async def get_pending_by_driver(
        self,
        load_id: str,
        driver_id: str,
        conn: Optional[Connection] = None,
    ) -> Optional[Bid]:
        """Ожидающая ставка водителя на груз (не больше одной)."""
        row = await self._executor(conn).fetchrow(
            f"""
            SELECT {_COLUMNS} FROM bids
            WHERE load_id = $1 AND driver_id = $2 AND status = $3
            """,
            load_id,
            driver_id,
            BidStatus.PENDING.value,
        )
        return self._row_to_bid(row) if row else None

    async def create(self, bid: Bid, conn: Optional[Connection] = None) -> Bid:
        """
        Создаёт ставку. Вторая ожидающая ставка того же водителя на тот же груз
        отсекается частичным уникальным индексом.
        """
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO bids (
                id, load_id, driver_id, vehicle_id, price, currency, message,
                estimated_duration_hours, status, expires_at, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING {_COLUMNS}
            """,
            bid.id,
            bid.load_id,
            bid.driver_id,
            bid.vehicle_id,
            bid.price,
            bid.currency,
            bid.message,
            bid.estimated_duration_hours,
            bid.status.value,
            bid.expires_at,
            bid.created_at,
            bid.updated_at,
        )
        return self._row_to_bid(row)

    async def update_fields(
        self,
        bid_id: str,
        fields: dict[str, Any],
        conn: Optional[Connection] = None,
    ) -> Optional[Bid]:
        """Меняет поля ставки, пока она PENDING."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Поля ставки нельзя обновлять: {sorted(unknown)}")

        assignments = []
        values: list[Any] = [bid_id, BidStatus.PENDING.value]
        for name, value in fields.items():
            values.append(value)
            assignments.append(f"{name} = ${len(values)}")
        assignments.append("updated_at = NOW()")

        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE bids SET {", ".join(assignments)}
            WHERE id = $1 AND status = $2
            RETURNING {_COLUMNS}
            """,
            *values,
        )
        return self._row_to_bid(row) if row else None

    async def transition(
        self,
        bid_id: str,
        to_status: BidStatus,
        conn: Optional[Connection] = None,
        reason: Optional[str] = None,
    ) -> Optional[Bid]:
        """
        Переводит ставку в to_status, если её текущий статус допускает переход
        по BidStateMachine (на практике только из PENDING).

        Returns:
            Ставка после перехода или None, если её статус уже сменился
        """
        sources = BidStateMachine.sources_for(to_status)
        if not sources:
            raise ValueError(f"В статус ставки {to_status.value} перейти нельзя")

        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE bids
            SET status = $2, rejection_reason = COALESCE($4, rejection_reason), updated_at = NOW()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING {_COLUMNS}
            """,
            bid_id,
            to_status.value,
            [s.value for s in sources],
            reason,
        )
        return self._row_to_bid(row) if row else None

    async def reject_pending_for_load(
        self,
        load_id: str,
        conn: Optional[Connection] = None,
        exclude_bid_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> list[Bid]:
        """Отклоняет все ожидающие ставки груза, кроме exclude_bid_id."""
        rows = await self._executor(conn).fetch(
            f"""
            UPDATE bids
            SET status = $2, rejection_reason = $5, updated_at = NOW()
            WHERE load_id = $1 AND status = $3 AND ($4::uuid IS NULL OR id <> $4)
            RETURNING {_COLUMNS}
            """,
            load_id,
            BidStatus.REJECTED.value,
            BidStatus.PENDING.value,
            exclude_bid_id,
            reason,
        )
        return [self._row_to_bid(r) for r in rows]

    async def reject_pending_for_loads(
        self,
        load_ids: list[str],
        conn: Optional[Connection] = None,
        reason: Optional[str] = None,
    ) -> list[Bid]:
        if not load_ids:
            return []
        rows = await self._executor(conn).fetch(
            f"""
            UPDATE bids
            SET status = $2, rejection_reason = $4, updated_at = NOW()
            WHERE load_id = ANY($1::uuid[]) AND status = $3
            RETURNING {_COLUMNS}
            """,
            load_ids,
            BidStatus.REJECTED.value,
            BidStatus.PENDING.value,
            reason,
        )
        return [self._row_to_bid(r) for r in rows]

    async def expire_due(self, now: datetime, conn: Optional[Connection] = None) -> list[Bid]:
        """
        Отклоняет ожидающие ставки с истёкшим сроком.
        Повторный вызов с тем же now ничего не меняет.
        """
        rows = await self._executor(conn).fetch(
            f"""
            UPDATE bids
            SET status = $2, rejection_reason = 'expired', updated_at = NOW()
            WHERE status = $3 AND expires_at IS NOT NULL AND expires_at <= $1
            RETURNING {_COLUMNS}
            """,
            now,
            BidStatus.REJECTED.value,
            BidStatus.PENDING.value,
        )
        return [self._row_to_bid(r) for r in rows]

    async def list_for_load(
        self,
        load_id: str,
        status: Optional[BidStatus] = BidStatus.PENDING,
    ) -> list[Bid]:
        """Ставки груза: сначала дешёвые, при равной цене более ранние."""
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM bids
            WHERE load_id = $1 AND ($2::text IS NULL OR status = $2)
            ORDER BY price ASC, created_at ASC
            """,
            load_id,
            status.value if status else None,
        )
        return [self._row_to_bid(r) for r in rows]

    async def list_for_driver(
        self,
        driver_id: str,
        status: Optional[BidStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Bid]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM bids
            WHERE driver_id = $1 AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            driver_id,
            status.value if status else None,
            limit,
            offset,
        )
        return [self._row_to_bid(r) for r in rows]

    async def list_received(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[Bid]:
        """Ожидающие ставки на открытые грузы владельца."""
        rows = await self._db.fetch(
            f"""
            SELECT {", ".join(f"b.{c.strip()}" for c in _COLUMNS.split(","))}
            FROM bids b
            JOIN loads l ON l.id = b.load_id
            WHERE l.owner_id = $1 AND l.status = $2 AND b.status = $3
            ORDER BY b.created_at DESC
            LIMIT $4 OFFSET $5
            """,
            owner_id,
            LoadStatus.OPEN.value,
            BidStatus.PENDING.value,
            limit,
            offset,
        )
        return [self._row_to_bid(r) for r in rows]

    async def stats_for_load(self, load_id: str) -> BidStats:
        row = await self._db.fetchrow(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE status = 'pending') AS pending,
                COUNT(*) FILTER (WHERE status = 'accepted') AS accepted,
                COUNT(*) FILTER (WHERE status = 'rejected') AS rejected,
                COUNT(*) FILTER (WHERE status = 'withdrawn') AS withdrawn,
                MIN(price) FILTER (WHERE status = 'pending') AS lowest_price,
                MAX(price) FILTER (WHERE status = 'pending') AS highest_price,
                AVG(price) FILTER (WHERE status = 'pending') AS average_price
            FROM bids WHERE load_id = $1
            """,
            load_id,
        )
        return BidStats(
            load_id=load_id,
            total=row["total"],
            pending=row["pending"],
            accepted=row["accepted"],
            rejected=row["rejected"],
            withdrawn=row["withdrawn"],
            lowest_price=_num(row["lowest_price"]),
            highest_price=_num(row["highest_price"]),
            average_price=_num(row["average_price"]),
        )

    async def stats_for_driver(self, driver_id: str) -> DriverBidStats:
        row = await self._db.fetchrow(
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE status = 'pending') AS pending,
                COUNT(*) FILTER (WHERE status = 'accepted') AS accepted,
                COUNT(*) FILTER (WHERE status = 'rejected') AS rejected,
                COUNT(*) FILTER (WHERE status = 'withdrawn') AS withdrawn,
                AVG(price) FILTER (WHERE status IN ('pending', 'accepted')) AS average_price
            FROM bids WHERE driver_id = $1
            """,
            driver_id,
        )
        total = row["total"]
        return DriverBidStats(
            driver_id=driver_id,
            total=total,
            pending=row["pending"],
            accepted=row["accepted"],
            rejected=row["rejected"],
            withdrawn=row["withdrawn"],
            acceptance_rate=round(row["accepted"] * 100 / total) if total else 0,
            average_price=_num(row["average_price"]),
        )

    @staticmethod
    def _row_to_bid(row: Record | dict[str, Any]) -> Bid:
        return Bid(
            id=str(row["id"]),
            load_id=str(row["load_id"]),
            driver_id=str(row["driver_id"]),
            vehicle_id=str(row["vehicle_id"]) if row["vehicle_id"] else None,
            price=float(row["price"]),
            currency=row["currency"],
            message=row["message"],
            estimated_duration_hours=_num(row["estimated_duration_hours"]),
            status=BidStatus(row["status"]),
            expires_at=row["expires_at"],
            rejection_reason=row["rejection_reason"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _num(value: Any) -> Optional[float]:
    return float(value) if value is not None else None

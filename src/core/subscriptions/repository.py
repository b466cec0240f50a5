# src/core/subscriptions/repository.py
"""
Репозиторий подписок.
Счётчики использования меняются только условными UPDATE, без чтения перед записью.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from asyncpg import Connection, Record

from src.common.constants import PlanType, QuotaAction, SubscriptionStatus
from src.core.subscriptions.models import Subscription
from src.infra.database import BaseRepository

_COLUMNS = """
    id, user_id, plan, status, start_date, end_date, trial_end_date,
    loads_posted_this_month, bids_placed_this_month, last_reset_date,
    created_at, updated_at
"""

# Колонка счётчика для действий с месячным лимитом
USAGE_COLUMNS: dict[QuotaAction, str] = {
    QuotaAction.POST_LOAD: "loads_posted_this_month",
    QuotaAction.PLACE_BID: "bids_placed_this_month",
}


class SubscriptionRepository(BaseRepository):
    """Репозиторий подписок."""

    async def get_by_user(
        self,
        user_id: str,
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        row = await self._executor(conn).fetchrow(
            f"SELECT {_COLUMNS} FROM subscriptions WHERE user_id = $1",
            user_id,
        )
        return self._row_to_subscription(row) if row else None

    async def get_for_update(self, user_id: str, conn: Connection) -> Optional[Subscription]:
        """Читает подписку с блокировкой строки до конца транзакции."""
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM subscriptions WHERE user_id = $1 FOR UPDATE",
            user_id,
        )
        return self._row_to_subscription(row) if row else None

    async def create(
        self,
        subscription: Subscription,
        conn: Optional[Connection] = None,
    ) -> Subscription:
        row = await self._executor(conn).fetchrow(
            f"""
            INSERT INTO subscriptions (
                id, user_id, plan, status, start_date, end_date, trial_end_date,
                loads_posted_this_month, bids_placed_this_month, last_reset_date,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            RETURNING {_COLUMNS}
            """,
            subscription.id,
            subscription.user_id,
            subscription.plan.value,
            subscription.status.value,
            subscription.start_date,
            subscription.end_date,
            subscription.trial_end_date,
            subscription.loads_posted_this_month,
            subscription.bids_placed_this_month,
            subscription.last_reset_date,
            subscription.created_at,
            subscription.updated_at,
        )
        return self._row_to_subscription(row)

    async def reset_usage_if_due(
        self,
        user_id: str,
        now: datetime,
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        """
        Обнуляет счётчики, если с последнего сброса прошёл месяц.
        Условие в WHERE делает сброс идемпотентным: из двух конкурентных
        запросов сбросит только один, второй увидит новый last_reset_date.

        Returns:
            Подписка после сброса или None, если сброс не нужен
        """
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE subscriptions
            SET loads_posted_this_month = 0,
                bids_placed_this_month = 0,
                last_reset_date = $2,
                updated_at = $2
            WHERE user_id = $1
              AND last_reset_date + INTERVAL '1 month' <= $2
            RETURNING {_COLUMNS}
            """,
            user_id,
            now,
        )
        return self._row_to_subscription(row) if row else None

    async def expire_if_lapsed(
        self,
        user_id: str,
        now: datetime,
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        """Переводит истёкшую ACTIVE/TRIAL подписку в FREE/EXPIRED."""
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE subscriptions
            SET plan = $3, status = $4, updated_at = $2
            WHERE user_id = $1
              AND (
                    (status = $5 AND end_date IS NOT NULL AND end_date <= $2)
                 OR (status = $6 AND trial_end_date IS NOT NULL AND trial_end_date <= $2)
              )
            RETURNING {_COLUMNS}
            """,
            user_id,
            now,
            PlanType.FREE.value,
            SubscriptionStatus.EXPIRED.value,
            SubscriptionStatus.ACTIVE.value,
            SubscriptionStatus.TRIAL.value,
        )
        return self._row_to_subscription(row) if row else None

    async def increment_usage(
        self,
        user_id: str,
        action: QuotaAction,
        limit: int,
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        """
        Атомарно увеличивает счётчик, только если лимит не исчерпан.

        Args:
            user_id: ID пользователя
            action: POST_LOAD или PLACE_BID
            limit: Лимит плана (отрицательный означает безлимит)

        Returns:
            Подписка после инкремента или None, если лимит исчерпан
        """
        column = USAGE_COLUMNS[action]
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE subscriptions
            SET {column} = {column} + 1, updated_at = NOW()
            WHERE user_id = $1
              AND status = ANY($3::text[])
              AND ($2 < 0 OR {column} < $2)
            RETURNING {_COLUMNS}
            """,
            user_id,
            limit,
            [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value],
        )
        return self._row_to_subscription(row) if row else None

    async def update_plan(
        self,
        user_id: str,
        plan: PlanType,
        status: SubscriptionStatus,
        start_date: datetime,
        end_date: Optional[datetime],
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE subscriptions
            SET plan = $2, status = $3, start_date = $4, end_date = $5, updated_at = NOW()
            WHERE user_id = $1
            RETURNING {_COLUMNS}
            """,
            user_id,
            plan.value,
            status.value,
            start_date,
            end_date,
        )
        return self._row_to_subscription(row) if row else None

    async def update_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        row = await self._executor(conn).fetchrow(
            f"""
            UPDATE subscriptions
            SET status = $2, updated_at = NOW()
            WHERE user_id = $1
            RETURNING {_COLUMNS}
            """,
            user_id,
            status.value,
        )
        return self._row_to_subscription(row) if row else None

    @staticmethod
    def _row_to_subscription(row: Record | dict[str, Any]) -> Subscription:
        return Subscription(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            plan=PlanType(row["plan"]),
            status=SubscriptionStatus(row["status"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            trial_end_date=row["trial_end_date"],
            loads_posted_this_month=row["loads_posted_this_month"],
            bids_placed_this_month=row["bids_placed_this_month"],
            last_reset_date=row["last_reset_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

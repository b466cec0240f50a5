# src/core/subscriptions/service.py
"""
Сервис подписок и гейт квот.
Решает, разрешает ли тариф пользователя опубликовать груз, сделать ставку
или добавить транспорт, и атомарно учитывает использование.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from asyncpg import Connection

from src.common.clock import add_months, utc_now
from src.common.constants import (
    UNLIMITED,
    ErrorCode,
    PlanType,
    QuotaAction,
    SubscriptionStatus,
    TypeMsg,
)
from src.common.exceptions import NotFoundError, QuotaExceededError
from src.common.logger import log_info
from src.config.loader import PlanLimits, SubscriptionSettings
from src.core.subscriptions.models import (
    PlanPricing,
    QuotaDecision,
    Subscription,
    UsageSummary,
)
from src.core.subscriptions.repository import SubscriptionRepository
from src.core.vehicles.repository import VehicleRepository
from src.infra.database import DatabaseManager

_LIMIT_REASONS: dict[QuotaAction, ErrorCode] = {
    QuotaAction.POST_LOAD: ErrorCode.MONTHLY_LOAD_LIMIT_REACHED,
    QuotaAction.PLACE_BID: ErrorCode.MONTHLY_BID_LIMIT_REACHED,
    QuotaAction.ADD_VEHICLE: ErrorCode.VEHICLE_LIMIT_REACHED,
}


def plan_limit(limits: PlanLimits, action: QuotaAction) -> int:
    """Лимит плана для действия."""
    if action == QuotaAction.POST_LOAD:
        return limits.max_loads_per_month
    if action == QuotaAction.PLACE_BID:
        return limits.max_bids_per_month
    return limits.max_vehicles


def _is_larger(candidate: int, current: int) -> bool:
    if current == UNLIMITED:
        return False
    return candidate == UNLIMITED or candidate > current


class SubscriptionService:
    """Сервис подписок и квот."""

    def __init__(
        self,
        db: DatabaseManager,
        repository: Optional[SubscriptionRepository] = None,
        vehicle_repository: Optional[VehicleRepository] = None,
        catalog: Optional[SubscriptionSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        currency: Optional[str] = None,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            repository: Репозиторий подписок
            vehicle_repository: Репозиторий транспорта (для лимита ADD_VEHICLE)
            catalog: Каталог тарифов (по умолчанию из настроек)
            clock: Источник текущего времени
            currency: Валюта цен тарифов
        """
        if catalog is None or currency is None:
            from src.config import settings
            catalog = catalog or settings.subscriptions
            currency = currency or settings.domain.DEFAULT_CURRENCY

        self._db = db
        self._repo = repository or SubscriptionRepository(db)
        self._vehicles = vehicle_repository or VehicleRepository(db)
        self._catalog = catalog
        self._clock = clock
        self._currency = currency

    # =========================================================================
    # КАТАЛОГ ТАРИФОВ
    # =========================================================================

    def suggest_upgrade(self, plan: PlanType, action: QuotaAction) -> Optional[PlanType]:
        """
        Следующий по порядку тариф со строго большим лимитом для действия.

        Returns:
            Тариф или None, если расти некуда
        """
        order = self._catalog.UPGRADE_ORDER
        current = plan_limit(self._catalog.limits_for(plan), action)
        start = order.index(plan) + 1 if plan in order else 0

        for candidate in order[start:]:
            if _is_larger(plan_limit(self._catalog.limits_for(candidate), action), current):
                return candidate
        return None

    def get_plan_pricing(self) -> list[PlanPricing]:
        """Цены и лимиты всех тарифов в порядке апгрейда."""
        result = []
        for plan in self._catalog.UPGRADE_ORDER:
            limits = self._catalog.limits_for(plan)
            result.append(PlanPricing(
                plan=plan,
                price=limits.price,
                currency=self._currency,
                max_loads_per_month=limits.max_loads_per_month,
                max_bids_per_month=limits.max_bids_per_month,
                max_vehicles=limits.max_vehicles,
                max_team_members=limits.max_team_members,
            ))
        return result

    # =========================================================================
    # ГЕЙТ КВОТ
    # =========================================================================

    async def check_quota(self, user_id: str, action: QuotaAction) -> QuotaDecision:
        """
        Проверяет, разрешено ли действие (без учёта использования).
        Единственная запись, которую может сделать проверка, это ленивый
        месячный сброс или понижение истёкшей подписки.

        Args:
            user_id: ID пользователя
            action: Проверяемое действие

        Returns:
            Решение гейта
        """
        subscription = await self._refresh(user_id, self._clock())
        if subscription is None:
            return QuotaDecision(allowed=False, reason=ErrorCode.SUBSCRIPTION_NOT_FOUND)
        return await self._evaluate(subscription, action)

    async def ensure_quota(self, user_id: str, action: QuotaAction) -> QuotaDecision:
        """Как check_quota, но при отказе бросает QuotaExceededError."""
        decision = await self.check_quota(user_id, action)
        if not decision.allowed:
            await self._log_denial(user_id, action, decision)
            raise QuotaExceededError(decision)
        return decision

    async def consume_quota(
        self,
        user_id: str,
        action: QuotaAction,
        conn: Connection,
    ) -> QuotaDecision:
        """
        Атомарно учитывает действие в рамках транзакции вызывающего кода.

        Для месячных лимитов это один условный UPDATE с проверкой лимита,
        поэтому конкурентные запросы не могут превысить лимит. Для транспорта
        строка подписки блокируется на время подсчёта активных машин.

        Raises:
            QuotaExceededError: Лимит исчерпан или подписка неактивна
        """
        subscription = await self._refresh(user_id, self._clock(), conn)
        if subscription is None:
            decision = QuotaDecision(allowed=False, reason=ErrorCode.SUBSCRIPTION_NOT_FOUND)
            await self._log_denial(user_id, action, decision)
            raise QuotaExceededError(decision)

        if action == QuotaAction.ADD_VEHICLE:
            locked = await self._repo.get_for_update(user_id, conn)
            decision = await self._evaluate(locked or subscription, action, conn)
            if not decision.allowed:
                await self._log_denial(user_id, action, decision)
                raise QuotaExceededError(decision)
            return decision

        if not subscription.is_usable:
            decision = await self._evaluate(subscription, action)
            await self._log_denial(user_id, action, decision)
            raise QuotaExceededError(decision)

        limit = plan_limit(self._catalog.limits_for(subscription.plan), action)
        updated = await self._repo.increment_usage(user_id, action, limit, conn)
        if updated is None:
            current = await self._repo.get_by_user(user_id, conn) or subscription
            decision = await self._evaluate(current, action)
            if decision.allowed:
                # Статус подписки сменился между чтением и инкрементом
                decision = self._denied(current, action, limit)
            await self._log_denial(user_id, action, decision)
            raise QuotaExceededError(decision)

        if limit == UNLIMITED:
            return QuotaDecision(allowed=True, plan=updated.plan)
        # Действие уже учтено: остаток может быть нулевым
        used = await self._used(updated, action)
        return QuotaDecision(
            allowed=True,
            remaining=max(limit - used, 0),
            limit=limit,
            plan=updated.plan,
        )

    async def record_usage(self, user_id: str, action: QuotaAction) -> QuotaDecision:
        """Учитывает действие в отдельной транзакции."""
        async with self._db.transaction() as conn:
            return await self.consume_quota(user_id, action, conn)

    async def _evaluate(
        self,
        subscription: Subscription,
        action: QuotaAction,
        conn: Optional[Connection] = None,
    ) -> QuotaDecision:
        if not subscription.is_usable:
            return QuotaDecision(
                allowed=False,
                reason=ErrorCode.SUBSCRIPTION_INACTIVE,
                plan=subscription.plan,
                upgrade_to=self.suggest_upgrade(subscription.plan, action),
            )

        limit = plan_limit(self._catalog.limits_for(subscription.plan), action)
        if limit == UNLIMITED:
            return QuotaDecision(allowed=True, plan=subscription.plan)

        used = await self._used(subscription, action, conn)
        remaining = max(limit - used, 0)
        if remaining == 0:
            return self._denied(subscription, action, limit)

        return QuotaDecision(allowed=True, remaining=remaining, limit=limit, plan=subscription.plan)

    def _denied(self, subscription: Subscription, action: QuotaAction, limit: int) -> QuotaDecision:
        return QuotaDecision(
            allowed=False,
            reason=_LIMIT_REASONS[action],
            remaining=0,
            limit=limit,
            plan=subscription.plan,
            upgrade_to=self.suggest_upgrade(subscription.plan, action),
        )

    async def _used(
        self,
        subscription: Subscription,
        action: QuotaAction,
        conn: Optional[Connection] = None,
    ) -> int:
        if action == QuotaAction.POST_LOAD:
            return subscription.loads_posted_this_month
        if action == QuotaAction.PLACE_BID:
            return subscription.bids_placed_this_month
        return await self._vehicles.count_active(subscription.user_id, conn)

    async def _refresh(
        self,
        user_id: str,
        now: datetime,
        conn: Optional[Connection] = None,
    ) -> Optional[Subscription]:
        """Применяет ленивое понижение истёкшей подписки и месячный сброс."""
        expired = await self._repo.expire_if_lapsed(user_id, now, conn)
        if expired is not None:
            await log_info(
                f"Подписка пользователя {user_id} истекла, тариф понижен до {expired.plan.value}",
                type_msg=TypeMsg.INFO,
            )

        reset = await self._repo.reset_usage_if_due(user_id, now, conn)
        if reset is not None:
            await log_info(f"Месячные счётчики пользователя {user_id} сброшены", type_msg=TypeMsg.INFO)
            return reset

        return await self._repo.get_by_user(user_id, conn)

    async def _log_denial(self, user_id: str, action: QuotaAction, decision: QuotaDecision) -> None:
        reason = decision.reason.value if decision.reason else "-"
        upgrade = decision.upgrade_to.value if decision.upgrade_to else "-"
        await log_info(
            f"Квота отклонена: пользователь {user_id}, действие {action.value}, "
            f"причина {reason}, апгрейд {upgrade}",
            type_msg=TypeMsg.WARNING,
        )

    # =========================================================================
    # УПРАВЛЕНИЕ ПОДПИСКОЙ
    # =========================================================================

    async def get_subscription(self, user_id: str) -> Subscription:
        """
        Возвращает актуальную подписку пользователя.

        Raises:
            NotFoundError: Подписки нет
        """
        subscription = await self._refresh(user_id, self._clock())
        if subscription is None:
            raise NotFoundError(ErrorCode.SUBSCRIPTION_NOT_FOUND, details={"user_id": user_id})
        return subscription

    async def create_subscription(self, user_id: str, plan: PlanType = PlanType.FREE) -> Subscription:
        """Создаёт активную подписку (по умолчанию бесплатную)."""
        now = self._clock()
        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            end_date=None if plan == PlanType.FREE else add_months(now, 1),
            last_reset_date=now,
            created_at=now,
            updated_at=now,
        )
        async with self._db.transaction() as conn:
            created = await self._repo.create(subscription, conn)

        await log_info(f"Подписка {plan.value} создана для {user_id}", type_msg=TypeMsg.INFO)
        return created

    async def create_trial_subscription(self, user_id: str) -> Subscription:
        """Создаёт пробную подписку STARTER на TRIAL_DAYS дней."""
        now = self._clock()
        subscription = Subscription(
            user_id=user_id,
            plan=PlanType.STARTER,
            status=SubscriptionStatus.TRIAL,
            start_date=now,
            trial_end_date=now + timedelta(days=self._catalog.TRIAL_DAYS),
            last_reset_date=now,
            created_at=now,
            updated_at=now,
        )
        async with self._db.transaction() as conn:
            created = await self._repo.create(subscription, conn)

        await log_info(f"Пробная подписка создана для {user_id}", type_msg=TypeMsg.INFO)
        return created

    async def upgrade_plan(self, user_id: str, plan: PlanType) -> Subscription:
        """Переводит пользователя на тариф с оплаченным периодом в один месяц."""
        current = await self.get_subscription(user_id)
        now = self._clock()
        updated = await self._repo.update_plan(
            user_id, plan, SubscriptionStatus.ACTIVE, now, add_months(now, 1),
        )
        if updated is None:
            raise NotFoundError(ErrorCode.SUBSCRIPTION_NOT_FOUND, details={"user_id": user_id})

        await log_info(
            f"Тариф пользователя {user_id}: {current.plan.value} -> {plan.value}",
            type_msg=TypeMsg.INFO,
        )
        return updated

    async def renew_subscription(self, user_id: str) -> Subscription:
        """Продлевает текущий тариф ещё на месяц."""
        current = await self.get_subscription(user_id)
        now = self._clock()
        updated = await self._repo.update_plan(
            user_id, current.plan, SubscriptionStatus.ACTIVE, now, add_months(now, 1),
        )
        if updated is None:
            raise NotFoundError(ErrorCode.SUBSCRIPTION_NOT_FOUND, details={"user_id": user_id})
        await log_info(f"Подписка {user_id} продлена до {updated.end_date}", type_msg=TypeMsg.INFO)
        return updated

    async def downgrade_plan(self, user_id: str) -> Subscription:
        """Возвращает пользователя на бесплатный тариф."""
        current = await self.get_subscription(user_id)
        updated = await self._repo.update_plan(
            user_id, PlanType.FREE, SubscriptionStatus.ACTIVE, self._clock(), None,
        )
        if updated is None:
            raise NotFoundError(ErrorCode.SUBSCRIPTION_NOT_FOUND, details={"user_id": user_id})
        await log_info(
            f"Тариф пользователя {user_id} понижен: {current.plan.value} -> free",
            type_msg=TypeMsg.INFO,
        )
        return updated

    async def cancel_subscription(self, user_id: str) -> Subscription:
        """Отменяет подписку; дальнейшие действия по квотам запрещены."""
        updated = await self._repo.update_status(user_id, SubscriptionStatus.CANCELLED)
        if updated is None:
            raise NotFoundError(ErrorCode.SUBSCRIPTION_NOT_FOUND, details={"user_id": user_id})
        await log_info(f"Подписка пользователя {user_id} отменена", type_msg=TypeMsg.INFO)
        return updated

    async def get_usage_summary(self, user_id: str) -> UsageSummary:
        """Сводка: тариф, счётчики, лимиты и остаток."""
        subscription = await self.get_subscription(user_id)
        limits = self._catalog.limits_for(subscription.plan)
        vehicles = await self._vehicles.count_active(user_id)

        def remaining(limit: int, used: int) -> Optional[int]:
            return None if limit == UNLIMITED else max(limit - used, 0)

        return UsageSummary(
            plan=subscription.plan,
            status=subscription.status,
            loads_posted_this_month=subscription.loads_posted_this_month,
            bids_placed_this_month=subscription.bids_placed_this_month,
            active_vehicles=vehicles,
            max_loads_per_month=limits.max_loads_per_month,
            max_bids_per_month=limits.max_bids_per_month,
            max_vehicles=limits.max_vehicles,
            max_team_members=limits.max_team_members,
            remaining_loads=remaining(limits.max_loads_per_month, subscription.loads_posted_this_month),
            remaining_bids=remaining(limits.max_bids_per_month, subscription.bids_placed_this_month),
            remaining_vehicles=remaining(limits.max_vehicles, vehicles),
            last_reset_date=subscription.last_reset_date,
            next_reset_date=subscription.next_reset_date,
            trial_end_date=subscription.trial_end_date,
            end_date=subscription.end_date,
        )

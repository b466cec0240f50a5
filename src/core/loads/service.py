# src/core/loads/service.py
"""
Реестр грузов.
Жизненный цикл груза: публикация, редактирование, отмена и снятие по сроку.
Все смены статуса проходят через LoadStateMachine.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from asyncpg import Connection

from src.common.clock import utc_now
from src.common.constants import ErrorCode, LoadStatus, QuotaAction, TypeMsg
from src.common.exceptions import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from src.common.logger import log_error, log_info
from src.core.bids.repository import BidRepository
from src.core.loads.models import (
    Load,
    LoadCreateDTO,
    LoadSearchFilters,
    LoadStats,
    LoadUpdateDTO,
)
from src.core.loads.repository import LoadRepository
from src.core.state_machine import LoadStateMachine
from src.infra.database import DatabaseManager
from src.infra.event_bus import DomainEvent, EventBus, EventTypes
from src.infra.redis_client import RedisClient

if TYPE_CHECKING:
    from src.core.subscriptions.service import SubscriptionService

# Груз можно редактировать, пока на него не принята ставка
EDITABLE_STATUSES: tuple[LoadStatus, ...] = (LoadStatus.DRAFT, LoadStatus.OPEN)


class LoadService:
    """Сервис грузов."""

    def __init__(
        self,
        db: DatabaseManager,
        redis: RedisClient,
        event_bus: EventBus,
        subscriptions: SubscriptionService,
        repository: Optional[LoadRepository] = None,
        bid_repository: Optional[BidRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        cache_ttl: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            redis: Клиент Redis (кэш карточек грузов)
            event_bus: Шина событий
            subscriptions: Гейт квот (POST_LOAD)
            repository: Репозиторий грузов
            bid_repository: Репозиторий ставок (отклонение при отмене и снятии)
            clock: Источник текущего времени
            cache_ttl: TTL кэша груза, сек
            currency: Валюта по умолчанию
        """
        if cache_ttl is None or currency is None:
            from src.config import settings
            cache_ttl = cache_ttl if cache_ttl is not None else settings.redis_ttl.LOAD_TTL
            currency = currency or settings.domain.DEFAULT_CURRENCY

        self._db = db
        self._redis = redis
        self._event_bus = event_bus
        self._subscriptions = subscriptions
        self._repo = repository or LoadRepository(db)
        self._bids = bid_repository or BidRepository(db)
        self._clock = clock
        self._cache_ttl = cache_ttl
        self._currency = currency

    @staticmethod
    def _load_cache_key(load_id: str) -> str:
        return f"load:{load_id}"

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_load(self, load_id: str) -> Load:
        """
        Получает груз по ID (через кэш).

        Raises:
            NotFoundError: Груза нет
        """
        cache_key = self._load_cache_key(load_id)
        try:
            cached = await self._redis.get_model(cache_key, Load)
        except Exception as e:
            await log_error(f"Ошибка чтения кэша груза {load_id}: {e}")
            cached = None
        if cached is not None:
            return cached

        load = await self._repo.get_by_id(load_id)
        if load is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": load_id})

        try:
            await self._redis.set_model(cache_key, load, ttl=self._cache_ttl)
        except Exception as e:
            await log_error(f"Ошибка записи кэша груза {load_id}: {e}")
        return load

    async def list_owner_loads(
        self,
        owner_id: str,
        status: Optional[LoadStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Load]:
        return await self._repo.list_by_owner(owner_id, status, limit, offset)

    async def search_open_loads(
        self,
        filters: Optional[LoadSearchFilters] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Load]:
        """Биржа: открытые грузы по фильтрам."""
        return await self._repo.search_open(filters or LoadSearchFilters(), limit, offset)

    async def get_owner_stats(self, owner_id: str) -> LoadStats:
        by_status = await self._repo.count_by_status(owner_id)
        return LoadStats(total=sum(by_status.values()), by_status=by_status)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def create_load(
        self,
        owner_id: str,
        dto: LoadCreateDTO,
        publish: bool = False,
    ) -> Load:
        """
        Создаёт груз. Черновик не расходует квоту; с publish=True груз
        сразу выходит на биржу и учитывается в лимите POST_LOAD.

        Args:
            owner_id: ID грузовладельца
            dto: Данные груза
            publish: Опубликовать сразу

        Raises:
            QuotaExceededError: Лимит публикаций исчерпан
            ValidationError: Срок снятия в прошлом
        """
        now = self._clock()
        self._check_expiry(dto.expires_at, now)

        await self._subscriptions.ensure_quota(owner_id, QuotaAction.POST_LOAD)

        data = dto.model_dump(exclude={"currency"})
        load = Load(
            owner_id=owner_id,
            currency=dto.currency or self._currency,
            status=LoadStatus.OPEN if publish else LoadStatus.DRAFT,
            published_at=now if publish else None,
            created_at=now,
            updated_at=now,
            **data,
        )

        async with self._db.transaction() as conn:
            if publish:
                await self._subscriptions.consume_quota(owner_id, QuotaAction.POST_LOAD, conn)
            created = await self._repo.create(load, conn)

        await log_info(
            f"Груз {created.id} создан владельцем {owner_id} ({created.status.value})",
            type_msg=TypeMsg.INFO,
        )
        if publish:
            await self._publish_event(EventTypes.LOAD_PUBLISHED, self._load_payload(created))
        return created

    async def publish_load(self, load_id: str, owner_id: str) -> Load:
        """
        Публикует черновик на бирже (DRAFT → OPEN), расходуя квоту POST_LOAD
        в той же транзакции.

        Raises:
            NotFoundError, UnauthorizedError, InvalidTransitionError, QuotaExceededError
        """
        async with self._db.transaction() as conn:
            load = await self._lock_owned(load_id, owner_id, conn)
            LoadStateMachine.validate_transition(load.status, LoadStatus.OPEN)
            if load.expires_at is not None and load.expires_at <= self._clock():
                raise ValidationError(ErrorCode.INVALID_EXPIRY, details={"load_id": load_id})

            await self._subscriptions.consume_quota(owner_id, QuotaAction.POST_LOAD, conn)
            published = await self.transition_status(load_id, LoadStatus.OPEN, conn)

        await self.invalidate_cache(load_id)
        await log_info(f"Груз {load_id} опубликован", type_msg=TypeMsg.INFO)
        await self._publish_event(EventTypes.LOAD_PUBLISHED, self._load_payload(published))
        return published

    async def update_load(self, load_id: str, owner_id: str, dto: LoadUpdateDTO) -> Load:
        """
        Редактирует груз в статусе DRAFT или OPEN.

        Raises:
            InvalidStateError: Груз уже назначен или закрыт
        """
        fields = dto.model_dump(exclude_unset=True)
        if not fields:
            return await self.get_load(load_id)

        async with self._db.transaction() as conn:
            load = await self._lock_owned(load_id, owner_id, conn)
            if load.status not in EDITABLE_STATUSES:
                raise InvalidStateError(
                    ErrorCode.LOAD_NOT_EDITABLE,
                    details={"load_id": load_id, "status": load.status.value},
                )
            self._check_window(load, fields)
            if "expires_at" in fields:
                self._check_expiry(fields["expires_at"], self._clock())

            updated = await self._repo.update_fields(load_id, fields, list(EDITABLE_STATUSES), conn)
            if updated is None:
                raise InvalidStateError(ErrorCode.LOAD_NOT_EDITABLE, details={"load_id": load_id})

        await self.invalidate_cache(load_id)
        await log_info(f"Груз {load_id} обновлён: {sorted(fields)}", type_msg=TypeMsg.DEBUG)
        return updated

    async def delete_load(self, load_id: str, owner_id: str) -> None:
        """Удаляет черновик. Опубликованный груз можно только отменить."""
        load = await self._repo.get_by_id(load_id)
        if load is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": load_id})
        if load.owner_id != owner_id:
            raise UnauthorizedError(ErrorCode.NOT_LOAD_OWNER, details={"load_id": load_id})
        if load.status != LoadStatus.DRAFT:
            raise InvalidStateError(
                ErrorCode.LOAD_NOT_EDITABLE,
                details={"load_id": load_id, "status": load.status.value},
            )

        if not await self._repo.delete_draft(load_id, owner_id):
            raise InvalidStateError(ErrorCode.LOAD_NOT_EDITABLE, details={"load_id": load_id})

        await self.invalidate_cache(load_id)
        await log_info(f"Черновик груза {load_id} удалён", type_msg=TypeMsg.INFO)

    async def cancel_load(self, load_id: str, owner_id: str, reason: Optional[str] = None) -> Load:
        """
        Снимает открытый груз с биржи (OPEN → CANCELLED).
        Все ожидающие ставки отклоняются в той же транзакции.
        """
        async with self._db.transaction() as conn:
            load = await self._lock_owned(load_id, owner_id, conn)
            LoadStateMachine.validate_transition(load.status, LoadStatus.CANCELLED)
            cancelled = await self.transition_status(load_id, LoadStatus.CANCELLED, conn)
            rejected = await self._bids.reject_pending_for_load(
                load_id, conn, reason=reason or "load_cancelled",
            )

        await self.invalidate_cache(load_id)
        await log_info(
            f"Груз {load_id} отменён владельцем, отклонено ставок: {len(rejected)}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish_event(EventTypes.LOAD_CANCELLED, {
            "load_id": load_id,
            "owner_id": owner_id,
            "reason": reason,
            "rejected_bid_ids": [b.id for b in rejected],
        })
        return cancelled

    async def expire_loads(self) -> int:
        """
        Снимает открытые грузы с истёкшим сроком (OPEN → EXPIRED)
        и отклоняет их ожидающие ставки. Идемпотентно.

        Returns:
            Количество снятых грузов
        """
        now = self._clock()
        async with self._db.transaction() as conn:
            expired = await self._repo.expire_due(now, conn)
            rejected = await self._bids.reject_pending_for_loads(
                [load.id for load in expired], conn, reason="load_expired",
            )

        if not expired:
            return 0

        for load in expired:
            await self.invalidate_cache(load.id)

        await log_info(
            f"Снято по сроку грузов: {len(expired)}, отклонено ставок: {len(rejected)}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish_event(EventTypes.LOADS_EXPIRED, {
            "load_ids": [load.id for load in expired],
            "rejected_bid_ids": [b.id for b in rejected],
        })
        return len(expired)

    # =========================================================================
    # ПЕРЕХОДЫ ДЛЯ ДРУГИХ ДОМЕНОВ
    # =========================================================================

    async def transition_status(
        self,
        load_id: str,
        to_status: LoadStatus,
        conn: Connection,
    ) -> Load:
        """
        Условный переход статуса в транзакции вызывающего кода.

        Raises:
            NotFoundError: Груза нет
            InvalidTransitionError: Текущий статус не допускает перехода
        """
        sources = LoadStateMachine.sources_for(to_status)
        updated = await self._repo.transition(load_id, to_status, sources, conn)
        if updated is not None:
            return updated

        current = await self._repo.get_by_id(load_id, conn)
        if current is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": load_id})
        raise InvalidTransitionError("load", current.status.value, to_status.value)

    async def invalidate_cache(self, load_id: str) -> None:
        """Инвалидирует кэш груза."""
        try:
            await self._redis.delete(self._load_cache_key(load_id))
        except Exception as e:
            await log_error(f"Ошибка инвалидации кэша груза {load_id}: {e}")

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _lock_owned(self, load_id: str, owner_id: str, conn: Connection) -> Load:
        load = await self._repo.get_for_update(load_id, conn)
        if load is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": load_id})
        if load.owner_id != owner_id:
            raise UnauthorizedError(ErrorCode.NOT_LOAD_OWNER, details={"load_id": load_id})
        return load

    @staticmethod
    def _check_expiry(expires_at: Optional[datetime], now: datetime) -> None:
        if expires_at is not None and expires_at <= now:
            raise ValidationError(
                ErrorCode.INVALID_EXPIRY,
                details={"expires_at": expires_at.isoformat()},
            )

    @staticmethod
    def _check_window(load: Load, fields: dict[str, Any]) -> None:
        pickup = fields.get("pickup_date", load.pickup_date)
        delivery = fields.get("delivery_date", load.delivery_date)
        if pickup is not None and delivery is not None and delivery < pickup:
            raise ValidationError(
                ErrorCode.INVALID_LOAD_DATA,
                details={"pickup_date": pickup.isoformat(), "delivery_date": delivery.isoformat()},
            )

    @staticmethod
    def _load_payload(load: Load) -> dict[str, Any]:
        return {
            "load_id": load.id,
            "owner_id": load.owner_id,
            "title": load.title,
            "vehicle_types": [vt.value for vt in load.vehicle_types],
            "suggested_price": load.suggested_price,
            "currency": load.currency,
        }

    async def _publish_event(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

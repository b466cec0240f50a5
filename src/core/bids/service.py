# src/core/bids/service.py
"""
Журнал ставок.
Размещение, изменение, отзыв и отклонение ставок, а также аналитика по ним.
Принятие ставки выполняет AssignmentService.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from asyncpg import Connection

from src.common.clock import utc_now
from src.common.constants import BidStatus, ErrorCode, LoadStatus, QuotaAction, TypeMsg
from src.common.exceptions import (
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from src.common.logger import log_error, log_info
from src.core.bids.models import (
    Bid,
    BidCreateDTO,
    BidEligibility,
    BidStats,
    BidUpdateDTO,
    DriverBidStats,
)
from src.core.bids.repository import BidRepository
from src.core.loads.models import Load
from src.core.loads.repository import LoadRepository
from src.core.notifications.service import NotificationService
from src.core.vehicles.repository import VehicleRepository
from src.infra.database import DatabaseManager
from src.infra.event_bus import DomainEvent, EventBus, EventTypes

if TYPE_CHECKING:
    from src.core.subscriptions.service import SubscriptionService


class BidService:
    """Сервис ставок."""

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        subscriptions: SubscriptionService,
        notifications: NotificationService,
        repository: Optional[BidRepository] = None,
        load_repository: Optional[LoadRepository] = None,
        vehicle_repository: Optional[VehicleRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        min_price: Optional[float] = None,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            event_bus: Шина событий
            subscriptions: Гейт квот (PLACE_BID)
            notifications: Сервис уведомлений
            repository: Репозиторий ставок
            load_repository: Репозиторий грузов
            vehicle_repository: Репозиторий транспорта
            clock: Источник текущего времени
            min_price: Минимальная цена ставки
        """
        if min_price is None:
            from src.config import settings
            min_price = settings.marketplace.MIN_BID_PRICE

        self._db = db
        self._event_bus = event_bus
        self._subscriptions = subscriptions
        self._notifications = notifications
        self._repo = repository or BidRepository(db)
        self._loads = load_repository or LoadRepository(db)
        self._vehicles = vehicle_repository or VehicleRepository(db)
        self._clock = clock
        self._min_price = min_price

    # =========================================================================
    # РАЗМЕЩЕНИЕ И ИЗМЕНЕНИЕ
    # =========================================================================

    async def place_bid(
        self,
        driver_id: str,
        dto: BidCreateDTO,
        bidder_name: Optional[str] = None,
    ) -> Bid:
        """
        Размещает ставку водителя на открытый груз.

        Порядок проверок: квота, груз существует и открыт, водитель не владелец,
        нет другой ожидающей ставки, транспорт подходит. Квота расходуется
        в той же транзакции, что и вставка ставки.

        Args:
            driver_id: ID водителя
            dto: Данные ставки
            bidder_name: Отображаемое имя для уведомления владельцу

        Returns:
            Созданная ставка в статусе PENDING

        Raises:
            QuotaExceededError: Лимит ставок исчерпан
            NotFoundError: Груза или транспорта нет
            InvalidStateError: Груз не открыт, ставка на свой груз или дубль
            ValidationError: Цена, срок или транспорт некорректны
        """
        now = self._clock()
        self._check_price(dto.price)
        self._check_expiry(dto.expires_at, now)

        await self._subscriptions.ensure_quota(driver_id, QuotaAction.PLACE_BID)

        async with self._db.transaction() as conn:
            load = await self._loads.get_for_share(dto.load_id, conn)
            self._check_biddable(load, dto.load_id, driver_id)

            existing = await self._repo.get_pending_by_driver(dto.load_id, driver_id, conn)
            if existing is not None:
                raise InvalidStateError(
                    ErrorCode.DUPLICATE_PENDING_BID,
                    details={"load_id": dto.load_id, "bid_id": existing.id},
                )

            if dto.vehicle_id is not None:
                await self._check_vehicle(dto.vehicle_id, driver_id, load, conn)

            await self._subscriptions.consume_quota(driver_id, QuotaAction.PLACE_BID, conn)

            bid = await self._repo.create(Bid(
                load_id=dto.load_id,
                driver_id=driver_id,
                vehicle_id=dto.vehicle_id,
                price=dto.price,
                currency=dto.currency or load.currency,
                message=dto.message,
                estimated_duration_hours=dto.estimated_duration_hours,
                expires_at=dto.expires_at,
                created_at=now,
                updated_at=now,
            ), conn)

        await log_info(
            f"Ставка {bid.id} на груз {load.id}: водитель {driver_id}, цена {bid.price}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish_event(EventTypes.BID_PLACED, self._bid_payload(bid, load.owner_id))
        await self._notifications.notify_new_bid(
            owner_id=load.owner_id,
            load_id=load.id,
            load_title=load.title,
            bidder_name=bidder_name or driver_id,
            price=bid.price,
            currency=bid.currency,
        )
        return bid

    async def update_bid(self, bid_id: str, driver_id: str, dto: BidUpdateDTO) -> Bid:
        """
        Изменяет ожидающую ставку, пока груз открыт.

        Raises:
            InvalidStateError: Ставка не PENDING или груз не OPEN
        """
        fields = dto.model_dump(exclude_unset=True)
        bid = await self._get_owned(bid_id, driver_id)
        if not fields:
            return bid

        if "price" in fields:
            self._check_price(fields["price"])
        if "expires_at" in fields:
            self._check_expiry(fields["expires_at"], self._clock())

        async with self._db.transaction() as conn:
            # Блокировки в порядке груз → ставка, как при принятии ставки
            load = await self._loads.get_for_share(bid.load_id, conn)
            if load is None:
                raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": bid.load_id})
            if load.status != LoadStatus.OPEN:
                raise InvalidStateError(
                    ErrorCode.LOAD_NOT_OPEN,
                    details={"load_id": load.id, "status": load.status.value},
                )

            locked = await self._repo.get_for_update(bid_id, conn)
            if locked is None or locked.status != BidStatus.PENDING:
                raise InvalidStateError(ErrorCode.BID_NOT_PENDING, details={"bid_id": bid_id})

            if fields.get("vehicle_id") is not None:
                await self._check_vehicle(fields["vehicle_id"], driver_id, load, conn)

            updated = await self._repo.update_fields(bid_id, fields, conn)
            if updated is None:
                raise InvalidStateError(ErrorCode.BID_NOT_PENDING, details={"bid_id": bid_id})

        await log_info(f"Ставка {bid_id} изменена: {sorted(fields)}", type_msg=TypeMsg.DEBUG)
        return updated

    async def withdraw_bid(self, bid_id: str, driver_id: str) -> Bid:
        """
        Отзывает ожидающую ставку (PENDING → WITHDRAWN).
        Израсходованная квота не возвращается.
        """
        bid = await self._get_owned(bid_id, driver_id)
        if bid.status != BidStatus.PENDING:
            raise InvalidStateError(
                ErrorCode.BID_NOT_PENDING,
                details={"bid_id": bid_id, "status": bid.status.value},
            )

        withdrawn = await self._repo.transition(bid_id, BidStatus.WITHDRAWN)
        if withdrawn is None:
            raise InvalidStateError(ErrorCode.BID_NOT_PENDING, details={"bid_id": bid_id})

        await log_info(f"Ставка {bid_id} отозвана водителем {driver_id}", type_msg=TypeMsg.INFO)
        await self._publish_event(EventTypes.BID_WITHDRAWN, {
            "bid_id": bid_id,
            "load_id": withdrawn.load_id,
            "driver_id": driver_id,
        })
        return withdrawn

    async def reject_bid(self, bid_id: str, owner_id: str, reason: Optional[str] = None) -> Bid:
        """Владелец груза отклоняет ожидающую ставку."""
        bid = await self.get_bid(bid_id)
        load = await self._loads.get_by_id(bid.load_id)
        if load is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": bid.load_id})
        if load.owner_id != owner_id:
            raise UnauthorizedError(ErrorCode.NOT_LOAD_OWNER, details={"load_id": load.id})

        rejected = await self._repo.transition(bid_id, BidStatus.REJECTED, reason=reason)
        if rejected is None:
            raise InvalidStateError(ErrorCode.BID_NOT_PENDING, details={"bid_id": bid_id})

        await log_info(f"Ставка {bid_id} отклонена владельцем {owner_id}", type_msg=TypeMsg.INFO)
        await self._publish_event(EventTypes.BID_REJECTED, {
            "bid_ids": [bid_id],
            "load_id": load.id,
            "reason": reason,
        })
        await self._notifications.notify_bid_rejected(
            driver_id=rejected.driver_id,
            load_title=load.title,
            bid_id=bid_id,
            reason=reason,
        )
        return rejected

    async def expire_bids(self) -> int:
        """
        Отклоняет ожидающие ставки с истёкшим сроком. Идемпотентно.

        Returns:
            Количество затронутых ставок
        """
        expired = await self._repo.expire_due(self._clock())
        if not expired:
            return 0

        await log_info(f"Истёк срок ставок: {len(expired)}", type_msg=TypeMsg.INFO)
        await self._publish_event(EventTypes.BIDS_EXPIRED, {
            "bid_ids": [b.id for b in expired],
            "load_ids": sorted({b.load_id for b in expired}),
        })
        return len(expired)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_bid(self, bid_id: str) -> Bid:
        bid = await self._repo.get_by_id(bid_id)
        if bid is None:
            raise NotFoundError(ErrorCode.BID_NOT_FOUND, details={"bid_id": bid_id})
        return bid

    async def list_load_bids(
        self,
        load_id: str,
        owner_id: Optional[str] = None,
        status: Optional[BidStatus] = BidStatus.PENDING,
    ) -> list[Bid]:
        """
        Ставки груза по возрастанию цены.

        Args:
            load_id: UUID груза
            owner_id: Если задан, проверяется, что груз принадлежит ему
            status: Фильтр по статусу (None = все)
        """
        await self._get_load(load_id, owner_id)
        return await self._repo.list_for_load(load_id, status)

    async def list_driver_bids(
        self,
        driver_id: str,
        status: Optional[BidStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Bid]:
        return await self._repo.list_for_driver(driver_id, status, limit, offset)

    async def get_bid_history(self, driver_id: str, limit: int = 20) -> list[Bid]:
        """Последние ставки водителя во всех статусах."""
        return await self._repo.list_for_driver(driver_id, None, limit, 0)

    async def list_received_bids(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[Bid]:
        """Ожидающие ставки на открытые грузы владельца."""
        return await self._repo.list_received(owner_id, limit, offset)

    async def get_bid_stats(self, load_id: str, owner_id: Optional[str] = None) -> BidStats:
        await self._get_load(load_id, owner_id)
        return await self._repo.stats_for_load(load_id)

    async def get_driver_stats(self, driver_id: str) -> DriverBidStats:
        return await self._repo.stats_for_driver(driver_id)

    async def can_bid_on_load(self, driver_id: str, load_id: str) -> BidEligibility:
        """Проверка без побочных эффектов: пройдёт ли place_bid по грузу и квоте."""
        load = await self._loads.get_by_id(load_id)
        try:
            self._check_biddable(load, load_id, driver_id)
        except MarketplaceError as e:
            return BidEligibility(can_bid=False, reason=e.code)

        if await self._repo.get_pending_by_driver(load_id, driver_id) is not None:
            return BidEligibility(can_bid=False, reason=ErrorCode.DUPLICATE_PENDING_BID)

        decision = await self._subscriptions.check_quota(driver_id, QuotaAction.PLACE_BID)
        if not decision.allowed:
            return BidEligibility(can_bid=False, reason=decision.reason)
        return BidEligibility(can_bid=True)

    # =========================================================================
    # ПРОВЕРКИ
    # =========================================================================

    async def _get_owned(self, bid_id: str, driver_id: str) -> Bid:
        bid = await self.get_bid(bid_id)
        if bid.driver_id != driver_id:
            raise UnauthorizedError(ErrorCode.NOT_BID_OWNER, details={"bid_id": bid_id})
        return bid

    async def _get_load(self, load_id: str, owner_id: Optional[str]) -> Load:
        load = await self._loads.get_by_id(load_id)
        if load is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": load_id})
        if owner_id is not None and load.owner_id != owner_id:
            raise UnauthorizedError(ErrorCode.NOT_LOAD_OWNER, details={"load_id": load_id})
        return load

    @staticmethod
    def _check_biddable(load: Optional[Load], load_id: str, driver_id: str) -> None:
        if load is None:
            raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": load_id})
        if load.status != LoadStatus.OPEN:
            raise InvalidStateError(
                ErrorCode.LOAD_NOT_OPEN,
                details={"load_id": load_id, "status": load.status.value},
            )
        if load.owner_id == driver_id:
            raise InvalidStateError(ErrorCode.SELF_BID, details={"load_id": load_id})

    async def _check_vehicle(
        self,
        vehicle_id: str,
        driver_id: str,
        load: Load,
        conn: Connection,
    ) -> None:
        vehicle = await self._vehicles.get_by_id(vehicle_id, conn)
        if vehicle is None:
            raise NotFoundError(ErrorCode.VEHICLE_NOT_FOUND, details={"vehicle_id": vehicle_id})
        if vehicle.owner_id != driver_id:
            raise UnauthorizedError(ErrorCode.NOT_VEHICLE_OWNER, details={"vehicle_id": vehicle_id})
        if not vehicle.is_active:
            raise ValidationError(ErrorCode.INVALID_VEHICLE, details={"vehicle_id": vehicle_id})
        if not load.accepts_vehicle(vehicle.vehicle_type):
            raise ValidationError(
                ErrorCode.VEHICLE_TYPE_MISMATCH,
                details={
                    "vehicle_type": vehicle.vehicle_type.value,
                    "accepted": [vt.value for vt in load.vehicle_types],
                },
            )

    def _check_price(self, price: Optional[float]) -> None:
        if price is None or not math.isfinite(price) or price <= 0 or price < self._min_price:
            raise ValidationError(
                ErrorCode.INVALID_PRICE,
                details={
                    "price": price if price is None or math.isfinite(price) else str(price),
                    "min_price": self._min_price,
                },
            )

    @staticmethod
    def _check_expiry(expires_at: Optional[datetime], now: datetime) -> None:
        if expires_at is not None and expires_at <= now:
            raise ValidationError(
                ErrorCode.INVALID_EXPIRY,
                details={"expires_at": expires_at.isoformat()},
            )

    @staticmethod
    def _bid_payload(bid: Bid, owner_id: str) -> dict[str, Any]:
        return {
            "bid_id": bid.id,
            "load_id": bid.load_id,
            "driver_id": bid.driver_id,
            "owner_id": owner_id,
            "price": bid.price,
            "currency": bid.currency,
        }

    async def _publish_event(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

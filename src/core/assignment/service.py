# src/core/assignment/service.py
"""
Движок назначения.
Принятие ставки: в одной транзакции ставка становится ACCEPTED, остальные
ожидающие ставки груза REJECTED, груз ASSIGNED и создаётся рейс.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from src.common.clock import utc_now
from src.common.constants import BidStatus, ErrorCode, LoadStatus, TypeMsg
from src.common.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from src.common.logger import log_error, log_info
from src.core.bids.models import Bid
from src.core.bids.repository import BidRepository
from src.core.loads.models import Load
from src.core.loads.repository import LoadRepository
from src.core.loads.service import LoadService
from src.core.notifications.service import NotificationService
from src.core.trips.models import Trip
from src.core.trips.repository import TripRepository
from src.infra.database import DatabaseManager
from src.infra.event_bus import DomainEvent, EventBus, EventTypes

# Статусы, в которых груз уже отдан другому перевозчику
_ASSIGNED_STATUSES = frozenset({LoadStatus.ASSIGNED, LoadStatus.IN_TRANSIT, LoadStatus.DELIVERED})


@dataclass
class AssignmentResult:
    """Итог принятия ставки."""
    accepted_bid: Bid
    trip: Trip
    load: Load
    rejected_bid_ids: list[str] = field(default_factory=list)


class AssignmentService:
    """Сервис принятия ставок."""

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        loads: LoadService,
        notifications: NotificationService,
        bid_repository: Optional[BidRepository] = None,
        load_repository: Optional[LoadRepository] = None,
        trip_repository: Optional[TripRepository] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._event_bus = event_bus
        self._loads = loads
        self._notifications = notifications
        self._bids = bid_repository or BidRepository(db)
        self._load_repo = load_repository or LoadRepository(db)
        self._trips = trip_repository or TripRepository(db)
        self._clock = clock

    async def accept_bid(self, bid_id: str, owner_id: str) -> AssignmentResult:
        """
        Принимает ставку владельцем груза.

        Строка груза блокируется FOR UPDATE до конца транзакции, поэтому из
        конкурентных принятий ставок на один груз успешно только одно,
        остальные видят груз уже назначенным.

        Args:
            bid_id: UUID ставки
            owner_id: ID владельца груза

        Returns:
            Принятая ставка, созданный рейс и ID отклонённых ставок

        Raises:
            NotFoundError: Ставки или груза нет
            UnauthorizedError: Груз принадлежит другому пользователю
            ConflictError: Груз уже назначен
            InvalidStateError: Груз не открыт или ставка не PENDING
        """
        async with self._db.transaction() as conn:
            bid = await self._bids.get_by_id(bid_id, conn)
            if bid is None:
                raise NotFoundError(ErrorCode.BID_NOT_FOUND, details={"bid_id": bid_id})

            load = await self._load_repo.get_for_update(bid.load_id, conn)
            if load is None:
                raise NotFoundError(ErrorCode.LOAD_NOT_FOUND, details={"load_id": bid.load_id})
            if load.owner_id != owner_id:
                raise UnauthorizedError(ErrorCode.NOT_LOAD_OWNER, details={"load_id": load.id})

            if load.status in _ASSIGNED_STATUSES:
                raise ConflictError(
                    ErrorCode.LOAD_ALREADY_ASSIGNED,
                    details={"load_id": load.id, "status": load.status.value},
                )
            if load.status != LoadStatus.OPEN:
                raise InvalidStateError(
                    ErrorCode.LOAD_NOT_OPEN,
                    details={"load_id": load.id, "status": load.status.value},
                )

            # Перечитываем под блокировкой груза: ставку могли отозвать
            bid = await self._bids.get_for_update(bid_id, conn)
            if bid is None or bid.status != BidStatus.PENDING:
                raise InvalidStateError(
                    ErrorCode.BID_NOT_PENDING,
                    details={"bid_id": bid_id, "status": bid.status.value if bid else None},
                )

            accepted = await self._bids.transition(bid_id, BidStatus.ACCEPTED, conn)
            if accepted is None:
                raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"bid_id": bid_id})

            rejected = await self._bids.reject_pending_for_load(
                load.id, conn, exclude_bid_id=bid_id, reason="another_bid_accepted",
            )
            assigned = await self._loads.transition_status(load.id, LoadStatus.ASSIGNED, conn)

            now = self._clock()
            trip = await self._trips.create(Trip(
                load_id=load.id,
                bid_id=accepted.id,
                driver_id=accepted.driver_id,
                owner_id=load.owner_id,
                vehicle_id=accepted.vehicle_id,
                agreed_price=accepted.price,
                currency=accepted.currency,
                created_at=now,
                updated_at=now,
            ), conn)

        result = AssignmentResult(
            accepted_bid=accepted,
            trip=trip,
            load=assigned,
            rejected_bid_ids=[b.id for b in rejected],
        )
        await self._after_commit(result)
        return result

    async def _after_commit(self, result: AssignmentResult) -> None:
        """Кэш, события и уведомления. Ошибки здесь не откатывают назначение."""
        load = result.load
        bid = result.accepted_bid

        await self._loads.invalidate_cache(load.id)
        await log_info(
            f"Ставка {bid.id} принята: груз {load.id} назначен водителю {bid.driver_id}, "
            f"рейс {result.trip.id}, отклонено ставок: {len(result.rejected_bid_ids)}",
            type_msg=TypeMsg.INFO,
        )

        await self._publish_event(EventTypes.BID_ACCEPTED, {
            "bid_id": bid.id,
            "load_id": load.id,
            "driver_id": bid.driver_id,
            "owner_id": load.owner_id,
            "price": bid.price,
        })
        await self._publish_event(EventTypes.TRIP_CREATED, {
            "trip_id": result.trip.id,
            "load_id": load.id,
            "bid_id": bid.id,
            "driver_id": bid.driver_id,
            "agreed_price": result.trip.agreed_price,
        })
        if result.rejected_bid_ids:
            await self._publish_event(EventTypes.BID_REJECTED, {
                "bid_ids": result.rejected_bid_ids,
                "load_id": load.id,
                "reason": "another_bid_accepted",
            })

        await self._notifications.notify_bid_accepted(
            driver_id=bid.driver_id,
            load_title=load.title,
            bid_id=bid.id,
            trip_id=result.trip.id,
        )

    async def _publish_event(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as pub_error:
            await log_error(f"Не удалось опубликовать {event_type}: {pub_error}")

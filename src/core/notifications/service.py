# src/core/notifications/service.py
"""
Уведомления участникам сделки.

Сервис только формирует локализованный текст и публикует NOTIFICATION_SEND;
канал доставки (почта, push, мессенджер) выбирает подписчик события.
Сбой публикации логируется и не влияет на операцию, которая его вызвала.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info, log_error
from src.common.localization import get_text
from src.infra.event_bus import EventBus, DomainEvent, EventTypes


@dataclass
class NotificationData:
    user_id: str
    message_key: str
    language: Optional[str] = None
    kwargs: dict[str, Any] = field(default_factory=dict)
    # Идентификаторы груза, ставки или рейса для перехода из уведомления
    reference: dict[str, Any] = field(default_factory=dict)


class NotificationService:
    def __init__(self, event_bus: EventBus, language: Optional[str] = None) -> None:
        """
        Args:
            event_bus: Шина событий
            language: Язык текстов, если у уведомления он не задан
        """
        if language is None:
            from src.config import settings
            language = settings.domain.DEFAULT_LANGUAGE

        self._event_bus = event_bus
        self._language = language

    async def send_notification(self, data: NotificationData) -> bool:
        """
        Returns:
            False, если событие не удалось опубликовать
        """
        language = data.language or self._language
        payload = {
            "user_id": data.user_id,
            "message_key": data.message_key,
            "language": language,
            "text": get_text(data.message_key, language, **data.kwargs),
            "reference": data.reference,
        }
        try:
            await self._event_bus.publish(DomainEvent(event_type=EventTypes.NOTIFICATION_SEND, payload=payload))
        except Exception as e:
            await log_error(f"Уведомление {data.message_key} для {data.user_id} не отправлено: {e}")
            return False

        await log_info(f"Уведомление {data.message_key} -> {data.user_id}", type_msg=TypeMsg.DEBUG)
        return True

    async def _notify(self, user_id: str, key: str, reference: dict[str, Any], **kwargs: Any) -> bool:
        return await self.send_notification(
            NotificationData(user_id=user_id, message_key=key, kwargs=kwargs, reference=reference)
        )

    async def notify_new_bid(
        self,
        owner_id: str,
        load_id: str,
        load_title: str,
        bidder_name: str,
        price: float,
        currency: str,
    ) -> bool:
        """Грузовладельцу: новая ставка на его груз."""
        return await self._notify(
            owner_id, "NOTIFY_NEW_BID", {"load_id": load_id},
            load_title=load_title, bidder_name=bidder_name, price=f"{price:.2f}", currency=currency,
        )

    async def notify_bid_accepted(self, driver_id: str, load_title: str, bid_id: str, trip_id: str) -> bool:
        """Водителю: ставка принята, рейс создан."""
        return await self._notify(
            driver_id, "NOTIFY_BID_ACCEPTED", {"bid_id": bid_id, "trip_id": trip_id}, load_title=load_title,
        )

    async def notify_bid_rejected(
        self,
        driver_id: str,
        load_title: str,
        bid_id: str,
        reason: Optional[str] = None,
    ) -> bool:
        return await self._notify(
            driver_id, "NOTIFY_BID_REJECTED", {"bid_id": bid_id}, load_title=load_title, reason=reason or "-",
        )

    async def notify_trip_started(self, owner_id: str, load_title: str, driver_name: str, trip_id: str) -> bool:
        return await self._notify(
            owner_id, "NOTIFY_TRIP_STARTED", {"trip_id": trip_id}, load_title=load_title, driver_name=driver_name,
        )

    async def notify_trip_completed(self, owner_id: str, load_title: str, trip_id: str) -> bool:
        return await self._notify(owner_id, "NOTIFY_TRIP_COMPLETED", {"trip_id": trip_id}, load_title=load_title)

    async def notify_trip_cancelled(
        self,
        user_id: str,
        load_title: str,
        trip_id: str,
        reason: Optional[str] = None,
    ) -> bool:
        """Второй стороне рейса: рейс отменён."""
        return await self._notify(
            user_id, "NOTIFY_TRIP_CANCELLED", {"trip_id": trip_id}, load_title=load_title, reason=reason or "-",
        )

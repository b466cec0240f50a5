# src/infra/event_bus.py
"""
Публикация доменных событий в RabbitMQ (aio-pika).

Все события идут в один durable topic exchange, routing key равен типу события,
поэтому потребитель подписывается шаблоном вида "bid.*" или "trip.#".
Доставка best-effort: сбой брокера логируется и не откатывает бизнес-операцию.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info

DEFAULT_EXCHANGE = "freight.events"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class DomainEvent:
    """Факт, случившийся в маркетплейсе. payload содержит только JSON-совместимые значения."""

    event_type: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(default_factory=_timestamp)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, default=str)

    def to_message(self) -> Message:
        return Message(
            body=self.to_json().encode("utf-8"),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            message_id=self.event_id,
            type=self.event_type,
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> DomainEvent:
        raw = json.loads(data)
        event = cls(event_type=raw.get("event_type", ""), payload=raw.get("payload") or {})
        if raw.get("event_id"):
            event.event_id = raw["event_id"]
        if raw.get("timestamp"):
            event.timestamp = raw["timestamp"]
        return event


class EventTypes:
    """Routing keys доменных событий."""

    LOAD_PUBLISHED = "load.published"
    LOAD_CANCELLED = "load.cancelled"
    LOADS_EXPIRED = "loads.expired"

    BID_PLACED = "bid.placed"
    BID_WITHDRAWN = "bid.withdrawn"
    BID_ACCEPTED = "bid.accepted"
    BID_REJECTED = "bid.rejected"
    BIDS_EXPIRED = "bids.expired"

    TRIP_CREATED = "trip.created"
    TRIP_STARTED = "trip.started"
    TRIP_LOCATION_UPDATED = "trip.location_updated"
    TRIP_COMPLETED = "trip.completed"
    TRIP_CANCELLED = "trip.cancelled"

    # Запрос на доставку пользователю, обрабатывается сервисом уведомлений
    NOTIFICATION_SEND = "notification.send"


class EventBus:
    """Публикатор событий, один на процесс. connect_robust сам восстанавливает соединение."""

    _instance: EventBus | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return
        self._initialized = True
        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None
        self._exchange_name = DEFAULT_EXCHANGE

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(
        self,
        url: str,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
    ) -> None:
        """
        Args:
            url: amqp:// URL брокера
            exchange_name: Имя topic exchange (по умолчанию freight.events)
            prefetch_count: QoS канала
        """
        if self.is_connected:
            return
        self._exchange_name = exchange_name or self._exchange_name

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name, ExchangeType.TOPIC, durable=True,
        )
        await log_info(f"Exchange {self._exchange_name} объявлен", type_msg=TypeMsg.DEBUG)

    async def disconnect(self) -> None:
        connection = self._connection
        self._connection, self._channel, self._exchange = None, None, None
        if connection is not None:
            await connection.close()

    async def publish(self, event: DomainEvent) -> None:
        """Отправляет событие; ошибки брокера не пробрасываются."""
        if self._exchange is None or not self.is_connected:
            await log_error(f"RabbitMQ не подключён, событие {event.event_type} потеряно")
            return

        try:
            await self._exchange.publish(event.to_message(), routing_key=event.event_type)
        except Exception as e:
            await log_error(f"Событие {event.event_type} ({event.event_id}) не опубликовано: {e}")
            return
        await log_info(f"-> {event.event_type} {event.event_id}", type_msg=TypeMsg.DEBUG)

    async def health_check(self) -> bool:
        return self.is_connected


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


async def init_event_bus() -> None:
    from src.config import settings

    cfg = settings.rabbitmq
    await get_event_bus().connect(
        url=cfg.url,
        exchange_name=cfg.RABBITMQ_EXCHANGE,
        prefetch_count=cfg.RABBITMQ_PREFETCH_COUNT,
    )
    await log_info(f"RabbitMQ: {cfg.RABBITMQ_HOST}:{cfg.RABBITMQ_PORT}", type_msg=TypeMsg.INFO)


async def close_event_bus() -> None:
    await get_event_bus().disconnect()
    await log_info("RabbitMQ отключён", type_msg=TypeMsg.INFO)

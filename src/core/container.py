# src/core/container.py
"""
Сборка доменных сервисов поверх общей инфраструктуры.
Используется API и воркерами.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.core.assignment.service import AssignmentService
from src.core.bids.service import BidService
from src.core.loads.service import LoadService
from src.core.notifications.service import NotificationService
from src.core.subscriptions.service import SubscriptionService
from src.core.trips.service import TripService
from src.core.vehicles.service import VehicleService
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus
from src.infra.redis_client import RedisClient


@dataclass
class ServiceContainer:
    subscriptions: SubscriptionService
    vehicles: VehicleService
    loads: LoadService
    bids: BidService
    assignment: AssignmentService
    trips: TripService
    notifications: NotificationService


def build_container(
    db: DatabaseManager,
    redis: RedisClient,
    event_bus: EventBus,
) -> ServiceContainer:
    """Создаёт все сервисы с репозиториями по умолчанию."""
    notifications = NotificationService(event_bus)
    subscriptions = SubscriptionService(db)
    loads = LoadService(db, redis, event_bus, subscriptions)

    return ServiceContainer(
        subscriptions=subscriptions,
        vehicles=VehicleService(db, subscriptions),
        loads=loads,
        bids=BidService(db, event_bus, subscriptions, notifications),
        assignment=AssignmentService(db, event_bus, loads, notifications),
        trips=TripService(db, event_bus, loads, notifications),
        notifications=notifications,
    )

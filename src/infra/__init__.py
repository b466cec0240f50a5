# src/infra/__init__.py
"""
Подключения к PostgreSQL (asyncpg), Redis и RabbitMQ (aio-pika).
Каждый клиент живёт одним экземпляром на процесс: init_* при старте, close_* при остановке.
"""

from src.infra.database import BaseRepository, DatabaseManager, close_db, get_db, init_db
from src.infra.event_bus import DomainEvent, EventBus, EventTypes, close_event_bus, get_event_bus, init_event_bus
from src.infra.redis_client import RedisClient, close_redis, get_redis, init_redis

__all__ = [
    "BaseRepository",
    "DatabaseManager",
    "DomainEvent",
    "EventBus",
    "EventTypes",
    "RedisClient",
    "close_db",
    "close_event_bus",
    "close_redis",
    "get_db",
    "get_event_bus",
    "get_redis",
    "init_db",
    "init_event_bus",
    "init_redis",
]

# src/services/marketplace/dependencies.py
"""
Зависимости для Marketplace API.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Optional
from urllib.parse import unquote

from fastapi import Header

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.container import ServiceContainer, build_container
from src.infra.database import close_db, get_db, init_db
from src.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from src.infra.redis_client import close_redis, get_redis, init_redis


_container: Optional[ServiceContainer] = None
_owns_infra: bool = False


@dataclass
class CurrentUser:
    """Пользователь запроса. Аутентификацию выполняет шлюз перед API."""
    user_id: str
    display_name: Optional[str] = None


async def init_dependencies(init_infra: bool = True) -> None:
    """
    Инициализация всех зависимостей сервиса.

    Args:
        init_infra: Подключать ли PostgreSQL, Redis и RabbitMQ
                    (False, если их уже подключил процесс верхнего уровня)
    """
    global _container, _owns_infra

    if init_infra:
        await init_db()
        await init_redis()
        await init_event_bus()
        _owns_infra = True

    _container = build_container(get_db(), get_redis(), get_event_bus())
    await log_info("Marketplace API инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _container, _owns_infra

    _container = None
    if _owns_infra:
        await close_event_bus()
        await close_redis()
        await close_db()
        _owns_infra = False


def set_container(container: Optional[ServiceContainer]) -> None:
    """Подменяет контейнер сервисов (используется в тестах и при встраивании)."""
    global _container
    _container = container


def get_container() -> ServiceContainer:
    if _container is None:
        raise RuntimeError("ServiceContainer не инициализирован")
    return _container


async def get_current_user(
    x_user_id: Annotated[str, Header(alias="X-User-Id", min_length=1)],
    x_user_name: Annotated[Optional[str], Header(alias="X-User-Name")] = None,
) -> CurrentUser:
    """
    Пользователь из заголовков шлюза.

    Значения заголовков передаются в ASCII, поэтому имя (обычно кириллица)
    приходит percent-encoded: X-User-Name: %D0%98%D0%B2%D0%B0%D0%BD
    """
    display_name = unquote(x_user_name) if x_user_name else None
    return CurrentUser(user_id=x_user_id, display_name=display_name)

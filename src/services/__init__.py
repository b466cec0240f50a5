# src/services/__init__.py
"""
Сервисы приложения.

Архитектура:
- marketplace: FastAPI-приложение поверх доменных сервисов src.core
- Общая PostgreSQL, Redis для кэша и распределённых блокировок
- Доменные события публикуются в RabbitMQ
"""

__all__: list[str] = []

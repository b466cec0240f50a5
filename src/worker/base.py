# src/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from src.infra.redis_client import RedisClient, get_redis
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


class BaseWorker(ABC):
    """
    Базовый класс для всех воркеров.
    Выполняет run_once с фиксированным интервалом. Если задан lock_name,
    итерация выполняется только в реплике, захватившей Redis-блокировку.
    """

    def __init__(
        self,
        interval: float,
        redis: Optional[RedisClient] = None,
        lock_name: Optional[str] = None,
        lock_ttl: Optional[int] = None,
    ) -> None:
        """
        Args:
            interval: Пауза между итерациями, сек
            redis: Redis клиент
            lock_name: Имя распределённой блокировки
            lock_ttl: TTL блокировки, сек
        """
        self.interval = interval
        self.redis = redis or get_redis()
        self.lock_name = lock_name
        self.lock_ttl = lock_ttl or max(int(interval) - 1, 1)
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""

    @abstractmethod
    async def run_once(self) -> None:
        """Одна итерация работы."""

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает фоновый цикл."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        await log_info(f"Воркер {self.name} запущен (интервал {self.interval} сек)", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает воркер."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def tick(self) -> bool:
        """
        Выполняет одну итерацию под блокировкой (если она задана).

        Returns:
            True если итерация выполнена этой репликой
        """
        if self.lock_name is None:
            await self.run_once()
            return True

        token = await self.redis.acquire_lock(self.lock_name, self.lock_ttl)
        if token is None:
            await log_info(
                f"Воркер {self.name}: блокировка {self.lock_name} занята, пропуск",
                type_msg=TypeMsg.DEBUG,
            )
            return False

        try:
            await self.run_once()
        finally:
            await self.redis.release_lock(self.lock_name, token)
        return True

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

# tests/worker/test_base.py
"""
Unit тесты для базового класса воркера (src/worker/base.py).
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.worker.base import BaseWorker


class ConcreteWorker(BaseWorker):
    """Конкретная реализация воркера для тестирования."""

    def __init__(self, *args, fail: bool = False, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.runs = 0
        self.fail = fail

    @property
    def name(self) -> str:
        return "test_worker"

    async def run_once(self) -> None:
        self.runs += 1
        if self.fail:
            raise RuntimeError("boom")


class TestBaseWorker:
    """Тесты для BaseWorker."""

    def test_default_lock_ttl(self, mock_redis: AsyncMock) -> None:
        assert ConcreteWorker(interval=60, redis=mock_redis).lock_ttl == 59
        assert ConcreteWorker(interval=0.5, redis=mock_redis).lock_ttl == 1

    @pytest.mark.asyncio
    async def test_tick_without_lock(self, mock_redis: AsyncMock) -> None:
        worker = ConcreteWorker(interval=1, redis=mock_redis)

        assert await worker.tick() is True
        assert worker.runs == 1
        mock_redis.acquire_lock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tick_with_lock(self, mock_redis: AsyncMock) -> None:
        worker = ConcreteWorker(interval=10, redis=mock_redis, lock_name="sweep", lock_ttl=5)

        assert await worker.tick() is True

        mock_redis.acquire_lock.assert_awaited_once_with("sweep", 5)
        mock_redis.release_lock.assert_awaited_once_with("sweep", "token")

    @pytest.mark.asyncio
    async def test_tick_lock_busy(self, mock_redis: AsyncMock) -> None:
        """Проверяет, что реплика без блокировки пропускает итерацию."""
        mock_redis.acquire_lock.return_value = None
        worker = ConcreteWorker(interval=10, redis=mock_redis, lock_name="sweep")

        assert await worker.tick() is False
        assert worker.runs == 0
        mock_redis.release_lock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self, mock_redis: AsyncMock) -> None:
        worker = ConcreteWorker(interval=10, redis=mock_redis, lock_name="sweep", fail=True)

        with pytest.raises(RuntimeError):
            await worker.tick()

        mock_redis.release_lock.assert_awaited_once_with("sweep", "token")

    @pytest.mark.asyncio
    async def test_start_stop(self, mock_redis: AsyncMock) -> None:
        """Проверяет, что цикл переживает ошибку итерации и останавливается."""
        worker = ConcreteWorker(interval=0.01, redis=mock_redis, fail=True)

        await worker.start()
        await worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert worker.runs >= 1
        assert worker.is_running is False
        assert worker._task is None

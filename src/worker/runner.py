# src/worker/runner.py
"""
Процесс фоновых воркеров маркетплейса.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from src.worker.base import BaseWorker
from src.worker.expiry import ExpiryWorker
from src.core.container import ServiceContainer, build_container
from src.infra.database import init_db, close_db, get_db
from src.infra.redis_client import RedisClient, init_redis, close_redis, get_redis
from src.infra.event_bus import init_event_bus, close_event_bus, get_event_bus
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


def build_workers(container: ServiceContainer, redis: RedisClient) -> List[BaseWorker]:
    """
    Набор воркеров процесса.
    Проход по срокам защищён блокировкой в Redis: реплик может быть несколько.
    """
    return [ExpiryWorker(container.bids, container.loads, redis=redis)]


@asynccontextmanager
async def _infrastructure(enabled: bool) -> AsyncIterator[None]:
    if not enabled:
        yield
        return

    await log_info("Подключение воркеров к PostgreSQL, Redis и RabbitMQ", type_msg=TypeMsg.DEBUG)
    await init_db()
    await init_redis()
    await init_event_bus()
    try:
        yield
    finally:
        await close_event_bus()
        await close_redis()
        await close_db()


async def run_workers(init_infra: bool = True) -> None:
    """
    Запускает воркеры и держит их до отмены задачи.

    Args:
        init_infra: False, если инфраструктуру уже поднял общий процесс (main.py в режиме all)
    """
    async with _infrastructure(init_infra):
        redis = get_redis()
        container = build_container(get_db(), redis, get_event_bus())
        workers = build_workers(container, redis)

        for worker in workers:
            await worker.start()
        await log_info(
            f"Воркеры запущены: {', '.join(w.name for w in workers)}",
            type_msg=TypeMsg.INFO,
        )

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            await log_info("Воркеры получили сигнал остановки", type_msg=TypeMsg.INFO)
        except Exception as e:
            await log_error(f"Сбой процесса воркеров: {e}")
        finally:
            for worker in reversed(workers):
                await worker.stop()
            await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)


def main() -> None:
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

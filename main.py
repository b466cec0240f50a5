#!/usr/bin/env python3
# main.py
"""
Запуск Freight Marketplace.

    python main.py [api|worker|all]

Без аргумента режим берётся из COMPONENT_MODE (config.json или окружение).
"""

from __future__ import annotations

import asyncio
import signal
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Coroutine

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg
from src.infra.database import init_db, close_db
from src.infra.redis_client import init_redis, close_redis
from src.infra.event_bus import init_event_bus, close_event_bus

VALID_MODES = ("api", "worker", "all")

USAGE = """\
Freight Marketplace: биржа грузоперевозок

    python main.py [api|worker|all]

    api     HTTP API маркетплейса
    worker  проход по истёкшим ставкам и грузам
    all     оба компонента в одном процессе
"""


@asynccontextmanager
async def infrastructure() -> AsyncIterator[None]:
    """PostgreSQL, Redis и RabbitMQ на время работы процесса."""
    await init_db()
    await init_redis()
    await init_event_bus()
    await log_info("Подключения к PostgreSQL, Redis и RabbitMQ открыты", type_msg=TypeMsg.INFO)
    try:
        yield
    finally:
        for close in (close_event_bus, close_redis, close_db):
            try:
                await close()
            except Exception as e:
                await log_error(f"Ошибка закрытия {close.__name__}: {e}")
        await log_info("Подключения закрыты", type_msg=TypeMsg.INFO)


async def serve_api() -> None:
    import uvicorn
    from src.services.marketplace.app import create_app

    host, port = settings.deployment.API_HOST, settings.deployment.API_PORT
    await log_info(f"Marketplace API слушает {host}:{port}", type_msg=TypeMsg.INFO)

    server = uvicorn.Server(uvicorn.Config(
        create_app(init_infra=False),
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    ))
    try:
        await server.serve()
    except asyncio.CancelledError:
        server.should_exit = True
        raise


async def serve_worker() -> None:
    from src.worker.runner import run_workers
    await run_workers(init_infra=False)


COMPONENTS: dict[str, list[Callable[[], Coroutine]]] = {
    "api": [serve_api],
    "worker": [serve_worker],
    "all": [serve_api, serve_worker],
}


def resolve_mode(argv: list[str]) -> str | None:
    """
    Режим из аргументов командной строки или настроек.

    Returns:
        Режим запуска; None, если запрошена справка
    """
    if argv:
        arg = argv[0].lower()
        if arg in ("-h", "--help"):
            return None
        if arg not in VALID_MODES:
            raise SystemExit(f"Неизвестный режим '{arg}'\n\n{USAGE}")
        return arg
    configured = settings.system.COMPONENT_MODE
    return configured if configured in VALID_MODES else "all"


async def main(mode: str = "all") -> None:
    setup_logging()
    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}, режим '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    async with infrastructure():
        tasks = [asyncio.create_task(component()) for component in COMPONENTS[mode]]
        stopper = asyncio.create_task(stop.wait())

        done, _ = await asyncio.wait([*tasks, stopper], return_when=asyncio.FIRST_COMPLETED)
        if stopper in done:
            await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
        else:
            for task in done:
                if not task.cancelled() and task.exception():
                    await log_error(f"Компонент завершился с ошибкой: {task.exception()}")

        for task in [*tasks, stopper]:
            task.cancel()
        await asyncio.gather(*tasks, stopper, return_exceptions=True)

    await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


if __name__ == "__main__":
    selected = resolve_mode(sys.argv[1:])
    if selected is None:
        print(USAGE)
        sys.exit(0)

    try:
        asyncio.run(main(selected))
    except KeyboardInterrupt:
        pass

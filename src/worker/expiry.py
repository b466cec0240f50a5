# src/worker/expiry.py
"""
Воркер снятия по сроку.
Переводит просроченные ставки и грузы в терминальные статусы.
"""

from __future__ import annotations

from typing import Optional

from src.worker.base import BaseWorker
from src.core.bids.service import BidService
from src.core.loads.service import LoadService
from src.infra.redis_client import RedisClient
from src.common.logger import log_info
from src.common.constants import TypeMsg

SWEEP_LOCK_NAME = "expiry_sweep"


class ExpiryWorker(BaseWorker):
    """
    Периодический проход по истёкшим ставкам и грузам.
    Оба прохода идемпотентны, поэтому пропущенная или повторная итерация безопасна.
    """

    def __init__(
        self,
        bids: BidService,
        loads: LoadService,
        interval: Optional[float] = None,
        redis: Optional[RedisClient] = None,
        lock_ttl: Optional[int] = None,
    ) -> None:
        if interval is None or lock_ttl is None:
            from src.config import settings
            interval = interval or settings.marketplace.EXPIRY_SWEEP_INTERVAL
            lock_ttl = lock_ttl or settings.redis_ttl.SWEEP_LOCK_TTL

        super().__init__(interval=interval, redis=redis, lock_name=SWEEP_LOCK_NAME, lock_ttl=lock_ttl)
        self._bids = bids
        self._loads = loads
        self.last_result: tuple[int, int] = (0, 0)

    @property
    def name(self) -> str:
        return "ExpiryWorker"

    async def run_once(self) -> None:
        expired_bids = await self._bids.expire_bids()
        expired_loads = await self._loads.expire_loads()
        self.last_result = (expired_bids, expired_loads)

        if expired_bids or expired_loads:
            await log_info(
                f"Проход по срокам: ставок {expired_bids}, грузов {expired_loads}",
                type_msg=TypeMsg.INFO,
            )

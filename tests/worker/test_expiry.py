# tests/worker/test_expiry.py
"""
Тесты для воркера снятия по сроку.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.common.constants import BidStatus, LoadStatus, PlanType
from src.core.bids.models import BidCreateDTO
from src.worker.expiry import SWEEP_LOCK_NAME, ExpiryWorker


@pytest.fixture
def worker(marketplace) -> ExpiryWorker:
    return ExpiryWorker(
        marketplace.services.bids,
        marketplace.services.loads,
        interval=60,
        redis=marketplace.redis,
        lock_ttl=30,
    )


class TestExpiryWorker:
    """Тесты для ExpiryWorker."""

    @pytest.mark.asyncio
    async def test_sweep(self, marketplace, worker: ExpiryWorker) -> None:
        """Проверяет снятие просроченных ставок и грузов за одну итерацию."""
        soon = marketplace.clock() + timedelta(hours=1)
        load = await marketplace.open_load(expires_at=soon + timedelta(hours=1))
        other = await marketplace.open_load()
        marketplace.subscribe("driver-1", PlanType.STARTER)
        short = await marketplace.services.bids.place_bid(
            "driver-1", BidCreateDTO(load_id=other.id, price=800, expires_at=soon),
        )
        marketplace.clock.advance(hours=3)

        assert await worker.tick() is True

        assert worker.last_result == (1, 1)
        assert marketplace.store.bids[short.id].status == BidStatus.REJECTED
        assert marketplace.store.loads[load.id].status == LoadStatus.EXPIRED
        assert marketplace.store.loads[other.id].status == LoadStatus.OPEN
        marketplace.redis.acquire_lock.assert_awaited_with(SWEEP_LOCK_NAME, 30)

    @pytest.mark.asyncio
    async def test_repeat_sweep_is_noop(self, marketplace, worker: ExpiryWorker) -> None:
        await marketplace.open_load(expires_at=marketplace.clock() + timedelta(minutes=5))
        marketplace.clock.advance(hours=1)

        await worker.run_once()
        await worker.run_once()

        assert worker.last_result == (0, 0)

    def test_name(self, worker: ExpiryWorker) -> None:
        assert worker.name == "ExpiryWorker"

# tests/core/test_repositories.py
"""
Тесты для репозиториев: маппинг строк и форма условных UPDATE.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock
import uuid

import pytest

from src.common.constants import (
    BidStatus,
    LoadStatus,
    PlanType,
    QuotaAction,
    SubscriptionStatus,
    TripStatus,
    VehicleType,
)
from src.core.bids.repository import BidRepository
from src.core.loads.models import LoadSearchFilters
from src.core.loads.repository import LoadRepository
from src.core.subscriptions.repository import SubscriptionRepository
from src.core.trips.repository import TripRepository

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db() -> MagicMock:
    """Создаёт мок DatabaseManager."""
    db = MagicMock()
    db.fetchrow = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock()
    db.fetchval = AsyncMock()
    return db


@pytest.fixture
def mock_conn() -> MagicMock:
    """Мок соединения внутри транзакции."""
    conn = MagicMock()
    conn.fetchrow = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock()
    return conn


@pytest.fixture
def bid_row() -> Dict[str, Any]:
    return {
        "id": uuid.uuid4(),
        "load_id": uuid.uuid4(),
        "driver_id": "driver-1",
        "vehicle_id": None,
        "price": Decimal("1250.50"),
        "currency": "USD",
        "message": None,
        "estimated_duration_hours": None,
        "status": BidStatus.PENDING.value,
        "expires_at": None,
        "rejection_reason": None,
        "created_at": NOW,
        "updated_at": NOW,
    }


@pytest.fixture
def load_row() -> Dict[str, Any]:
    return {
        "id": uuid.uuid4(),
        "owner_id": "owner-1",
        "title": "Трубы стальные",
        "description": None,
        "cargo_type": "metal",
        "weight_kg": Decimal("12000"),
        "volume_m3": None,
        "pickup_address": "Киев",
        "pickup_latitude": None,
        "pickup_longitude": None,
        "delivery_address": "Львов",
        "delivery_latitude": None,
        "delivery_longitude": None,
        "pickup_date": NOW,
        "delivery_date": None,
        "suggested_price": Decimal("1500"),
        "currency": "USD",
        "vehicle_types": ["flatbed", "large_truck"],
        "is_fragile": False,
        "requires_insurance": False,
        "status": LoadStatus.OPEN.value,
        "expires_at": None,
        "published_at": NOW,
        "assigned_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }


class TestBidRepository:
    """Тесты для BidRepository."""

    @pytest.mark.asyncio
    async def test_row_mapping(self, mock_db: MagicMock, bid_row: Dict[str, Any]) -> None:
        """Проверяет приведение UUID и Decimal из строки БД."""
        mock_db.fetchrow.return_value = bid_row

        bid = await BidRepository(mock_db).get_by_id(str(bid_row["id"]))

        assert bid is not None
        assert bid.id == str(bid_row["id"])
        assert bid.price == 1250.5
        assert isinstance(bid.price, float)
        assert bid.status == BidStatus.PENDING

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = None

        assert await BidRepository(mock_db).get_by_id(str(uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_malformed_id_not_queried(self, mock_db: MagicMock, mock_conn: MagicMock) -> None:
        """Проверяет, что id не в формате UUID не доходит до asyncpg."""
        repository = BidRepository(mock_db)

        assert await repository.get_by_id("abc") is None
        assert await repository.get_for_update("abc", mock_conn) is None
        mock_db.fetchrow.assert_not_awaited()
        mock_conn.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transition_uses_connection(
        self,
        mock_db: MagicMock,
        mock_conn: MagicMock,
        bid_row: Dict[str, Any],
    ) -> None:
        """Проверяет, что переход идёт через соединение транзакции и условен по PENDING."""
        mock_conn.fetchrow.return_value = {**bid_row, "status": BidStatus.ACCEPTED.value}

        bid = await BidRepository(mock_db).transition("bid-1", BidStatus.ACCEPTED, mock_conn)

        assert bid.status == BidStatus.ACCEPTED
        mock_db.fetchrow.assert_not_awaited()
        query, *args = mock_conn.fetchrow.await_args.args
        assert "WHERE id = $1 AND status = ANY($3::text[])" in query
        assert args[:3] == ["bid-1", "accepted", ["pending"]]

    @pytest.mark.asyncio
    async def test_transition_lost_race(self, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = None

        assert await BidRepository(mock_db).transition("bid-1", BidStatus.WITHDRAWN) is None

    @pytest.mark.asyncio
    async def test_transition_to_unreachable_status(self, mock_db: MagicMock) -> None:
        """Проверяет, что источники перехода берутся из BidStateMachine."""
        with pytest.raises(ValueError):
            await BidRepository(mock_db).transition("bid-1", BidStatus.PENDING)

        mock_db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_fields_rejects_unknown(self, mock_db: MagicMock) -> None:
        with pytest.raises(ValueError):
            await BidRepository(mock_db).update_fields("bid-1", {"status": "accepted"})

        mock_db.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_fields_placeholders(self, mock_db: MagicMock, bid_row: Dict[str, Any]) -> None:
        mock_db.fetchrow.return_value = bid_row

        await BidRepository(mock_db).update_fields("bid-1", {"price": 900.0, "message": "Готов"})

        query, *args = mock_db.fetchrow.await_args.args
        assert "price = $3" in query
        assert "message = $4" in query
        assert args == ["bid-1", "pending", 900.0, "Готов"]

    @pytest.mark.asyncio
    async def test_reject_pending_for_loads_empty(self, mock_db: MagicMock) -> None:
        assert await BidRepository(mock_db).reject_pending_for_loads([]) == []
        mock_db.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_driver_stats(self, mock_db: MagicMock) -> None:
        """Проверяет округление процента принятых ставок."""
        mock_db.fetchrow.return_value = {
            "total": 3, "pending": 1, "accepted": 2, "rejected": 0, "withdrawn": 0,
            "average_price": Decimal("1333.3333"),
        }

        stats = await BidRepository(mock_db).stats_for_driver("driver-1")

        assert stats.acceptance_rate == 67
        assert stats.average_price == pytest.approx(1333.3333)

    @pytest.mark.asyncio
    async def test_driver_stats_without_bids(self, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = {
            "total": 0, "pending": 0, "accepted": 0, "rejected": 0, "withdrawn": 0,
            "average_price": None,
        }

        stats = await BidRepository(mock_db).stats_for_driver("driver-1")

        assert stats.acceptance_rate == 0
        assert stats.average_price is None


class TestLoadRepository:
    """Тесты для LoadRepository."""

    @pytest.mark.asyncio
    async def test_row_mapping(self, mock_db: MagicMock, load_row: Dict[str, Any]) -> None:
        mock_db.fetchrow.return_value = load_row

        load = await LoadRepository(mock_db).get_by_id(str(load_row["id"]))

        assert load.vehicle_types == [VehicleType.FLATBED, VehicleType.LARGE_TRUCK]
        assert load.weight_kg == 12000.0
        assert load.suggested_price == 1500.0
        assert load.status == LoadStatus.OPEN

    @pytest.mark.asyncio
    async def test_update_fields_converts_vehicle_types(
        self,
        mock_db: MagicMock,
        load_row: Dict[str, Any],
    ) -> None:
        mock_db.fetchrow.return_value = load_row

        await LoadRepository(mock_db).update_fields(
            "load-1",
            {"vehicle_types": [VehicleType.TANKER]},
            [LoadStatus.DRAFT, LoadStatus.OPEN],
        )

        query, *args = mock_db.fetchrow.await_args.args
        assert "status = ANY($2::text[])" in query
        assert args == ["load-1", ["draft", "open"], ["tanker"]]

    @pytest.mark.asyncio
    async def test_update_fields_rejects_status(self, mock_db: MagicMock) -> None:
        with pytest.raises(ValueError):
            await LoadRepository(mock_db).update_fields("load-1", {"status": "open"}, [LoadStatus.OPEN])

    @pytest.mark.asyncio
    async def test_transition_sources(self, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = None

        result = await LoadRepository(mock_db).transition(
            "load-1", LoadStatus.CANCELLED, [LoadStatus.OPEN, LoadStatus.ASSIGNED],
        )

        assert result is None
        args = mock_db.fetchrow.await_args.args[1:]
        assert args == ("load-1", "cancelled", ["open", "assigned"])

    @pytest.mark.asyncio
    async def test_delete_draft(self, mock_db: MagicMock) -> None:
        mock_db.execute.return_value = "DELETE 1"
        assert await LoadRepository(mock_db).delete_draft("load-1", "owner-1") is True

        mock_db.execute.return_value = "DELETE 0"
        assert await LoadRepository(mock_db).delete_draft("load-1", "owner-1") is False

    @pytest.mark.asyncio
    async def test_search_arguments(self, mock_db: MagicMock) -> None:
        await LoadRepository(mock_db).search_open(
            LoadSearchFilters(vehicle_type=VehicleType.REFRIGERATED, min_price=100),
            limit=10,
        )

        args = mock_db.fetch.await_args.args[1:]
        assert args == ("open", "refrigerated", None, None, 100, None, 10, 0)

    @pytest.mark.asyncio
    async def test_count_by_status(self, mock_db: MagicMock) -> None:
        mock_db.fetch.return_value = [{"status": "open", "cnt": 2}, {"status": "draft", "cnt": 1}]

        counts = await LoadRepository(mock_db).count_by_status("owner-1")

        assert counts == {LoadStatus.OPEN: 2, LoadStatus.DRAFT: 1}


class TestSubscriptionRepository:
    """Тесты для SubscriptionRepository."""

    @pytest.mark.asyncio
    async def test_increment_usage_conditional(self, mock_db: MagicMock) -> None:
        """Проверяет, что инкремент ограничен лимитом в самом UPDATE."""
        mock_db.fetchrow.return_value = None

        result = await SubscriptionRepository(mock_db).increment_usage("user-1", QuotaAction.PLACE_BID, 3)

        assert result is None
        query, *args = mock_db.fetchrow.await_args.args
        assert "bids_placed_this_month = bids_placed_this_month + 1" in query
        assert "bids_placed_this_month < $2" in query
        assert args == ["user-1", 3, ["active", "trial"]]

    @pytest.mark.asyncio
    async def test_expire_if_lapsed_arguments(self, mock_db: MagicMock) -> None:
        mock_db.fetchrow.return_value = None

        await SubscriptionRepository(mock_db).expire_if_lapsed("user-1", NOW)

        args = mock_db.fetchrow.await_args.args[1:]
        assert args == (
            "user-1", NOW, PlanType.FREE.value, SubscriptionStatus.EXPIRED.value,
            SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value,
        )


class TestTripRepository:
    """Тесты для TripRepository."""

    @pytest.mark.asyncio
    async def test_append_location(self, mock_db: MagicMock, mock_conn: MagicMock) -> None:
        """Проверяет, что номер точки назначает БД и позиция рейса обновляется."""
        mock_conn.fetchrow.return_value = {
            "trip_id": "trip-1", "sequence": 4, "latitude": 50.45, "longitude": 30.52, "recorded_at": NOW,
        }

        point = await TripRepository(mock_db).append_location("trip-1", 50.45, 30.52, NOW, mock_conn)

        assert point.sequence == 4
        assert "MAX(sequence)" in mock_conn.fetchrow.await_args.args[0]
        mock_conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_by_status(self, mock_db: MagicMock) -> None:
        await TripRepository(mock_db).list_by_owner("owner-1", TripStatus.IN_PROGRESS)

        query, *args = mock_db.fetch.await_args.args
        assert "owner_id = $1" in query
        assert args == ["owner-1", "in_progress", 20, 0]

    @pytest.mark.asyncio
    async def test_get_by_load_malformed_id(self, mock_db: MagicMock) -> None:
        assert await TripRepository(mock_db).get_by_load("not-a-uuid") is None
        mock_db.fetchrow.assert_not_awaited()

# src/services/marketplace/routes.py
"""
HTTP-маршруты маркетплейса.
Доменные ошибки превращаются в HTTP-ответы обработчиками в app.py.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from src.common.constants import BidStatus, LoadStatus, QuotaAction, TripStatus, VehicleType
from src.core.bids.models import (
    Bid,
    BidCreateDTO,
    BidEligibility,
    BidStats,
    BidUpdateDTO,
    DriverBidStats,
)
from src.core.container import ServiceContainer
from src.core.loads.models import Load, LoadCreateDTO, LoadSearchFilters, LoadStats, LoadUpdateDTO
from src.core.subscriptions.models import PlanPricing, QuotaDecision, Subscription, UsageSummary
from src.core.trips.models import LocationDTO, RoutePoint, Trip, TripCancelDTO, TripCompleteDTO
from src.core.vehicles.models import Vehicle, VehicleCreateDTO
from src.services.marketplace.dependencies import CurrentUser, get_container, get_current_user
from src.services.marketplace.schemas import AssignmentResponse, PaginationParams, ReasonRequest, UpgradeRequest

Services = Annotated[ServiceContainer, Depends(get_container)]
User = Annotated[CurrentUser, Depends(get_current_user)]


def pagination(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size)


Page = Annotated[PaginationParams, Depends(pagination)]


# =============================================================================
# ГРУЗЫ
# =============================================================================

loads_router = APIRouter(prefix="/api/v1/loads", tags=["Loads"])


@loads_router.post("", response_model=Load, status_code=status.HTTP_201_CREATED)
async def create_load(
    dto: LoadCreateDTO,
    services: Services,
    user: User,
    publish: bool = Query(False),
) -> Load:
    return await services.loads.create_load(user.user_id, dto, publish=publish)


@loads_router.get("", response_model=list[Load])
async def search_loads(
    services: Services,
    page: Page,
    vehicle_type: Optional[VehicleType] = None,
    cargo_type: Optional[str] = None,
    max_weight_kg: Optional[float] = Query(None, gt=0),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
) -> list[Load]:
    """Биржа открытых грузов."""
    filters = LoadSearchFilters(
        vehicle_type=vehicle_type,
        cargo_type=cargo_type,
        max_weight_kg=max_weight_kg,
        min_price=min_price,
        max_price=max_price,
    )
    return await services.loads.search_open_loads(filters, page.limit, page.offset)


@loads_router.get("/mine", response_model=list[Load])
async def list_my_loads(
    services: Services,
    user: User,
    page: Page,
    load_status: Optional[LoadStatus] = Query(None, alias="status"),
) -> list[Load]:
    return await services.loads.list_owner_loads(user.user_id, load_status, page.limit, page.offset)


@loads_router.get("/stats", response_model=LoadStats)
async def my_load_stats(services: Services, user: User) -> LoadStats:
    return await services.loads.get_owner_stats(user.user_id)


@loads_router.get("/{load_id}", response_model=Load)
async def get_load(load_id: str, services: Services) -> Load:
    return await services.loads.get_load(load_id)


@loads_router.patch("/{load_id}", response_model=Load)
async def update_load(load_id: str, dto: LoadUpdateDTO, services: Services, user: User) -> Load:
    return await services.loads.update_load(load_id, user.user_id, dto)


@loads_router.delete("/{load_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_load(load_id: str, services: Services, user: User) -> None:
    await services.loads.delete_load(load_id, user.user_id)


@loads_router.post("/{load_id}/publish", response_model=Load)
async def publish_load(load_id: str, services: Services, user: User) -> Load:
    return await services.loads.publish_load(load_id, user.user_id)


@loads_router.post("/{load_id}/cancel", response_model=Load)
async def cancel_load(
    load_id: str,
    services: Services,
    user: User,
    request: Optional[ReasonRequest] = None,
) -> Load:
    reason = request.reason if request else None
    return await services.loads.cancel_load(load_id, user.user_id, reason)


@loads_router.get("/{load_id}/bids", response_model=list[Bid])
async def list_load_bids(
    load_id: str,
    services: Services,
    user: User,
    bid_status: Optional[BidStatus] = Query(BidStatus.PENDING, alias="status"),
) -> list[Bid]:
    """Ставки на груз владельца, дешёвые первыми."""
    return await services.bids.list_load_bids(load_id, user.user_id, bid_status)


@loads_router.get("/{load_id}/bids/stats", response_model=BidStats)
async def load_bid_stats(load_id: str, services: Services, user: User) -> BidStats:
    return await services.bids.get_bid_stats(load_id, user.user_id)


@loads_router.get("/{load_id}/eligibility", response_model=BidEligibility)
async def can_bid(load_id: str, services: Services, user: User) -> BidEligibility:
    return await services.bids.can_bid_on_load(user.user_id, load_id)


@loads_router.get("/{load_id}/trip", response_model=Trip)
async def get_load_trip(load_id: str, services: Services, user: User) -> Trip:
    trip = await services.trips.get_trip_by_load(load_id)
    return await services.trips.get_trip(trip.id, user.user_id)


# =============================================================================
# СТАВКИ
# =============================================================================

bids_router = APIRouter(prefix="/api/v1/bids", tags=["Bids"])


@bids_router.post("", response_model=Bid, status_code=status.HTTP_201_CREATED)
async def place_bid(dto: BidCreateDTO, services: Services, user: User) -> Bid:
    return await services.bids.place_bid(user.user_id, dto, bidder_name=user.display_name)


@bids_router.get("/mine", response_model=list[Bid])
async def list_my_bids(
    services: Services,
    user: User,
    page: Page,
    bid_status: Optional[BidStatus] = Query(None, alias="status"),
) -> list[Bid]:
    return await services.bids.list_driver_bids(user.user_id, bid_status, page.limit, page.offset)


@bids_router.get("/history", response_model=list[Bid])
async def bid_history(
    services: Services,
    user: User,
    limit: int = Query(20, ge=1, le=100),
) -> list[Bid]:
    return await services.bids.get_bid_history(user.user_id, limit)


@bids_router.get("/received", response_model=list[Bid])
async def received_bids(services: Services, user: User, page: Page) -> list[Bid]:
    return await services.bids.list_received_bids(user.user_id, page.limit, page.offset)


@bids_router.get("/stats", response_model=DriverBidStats)
async def my_bid_stats(services: Services, user: User) -> DriverBidStats:
    return await services.bids.get_driver_stats(user.user_id)


@bids_router.get("/{bid_id}", response_model=Bid)
async def get_bid(bid_id: str, services: Services) -> Bid:
    return await services.bids.get_bid(bid_id)


@bids_router.patch("/{bid_id}", response_model=Bid)
async def update_bid(bid_id: str, dto: BidUpdateDTO, services: Services, user: User) -> Bid:
    return await services.bids.update_bid(bid_id, user.user_id, dto)


@bids_router.post("/{bid_id}/withdraw", response_model=Bid)
async def withdraw_bid(bid_id: str, services: Services, user: User) -> Bid:
    return await services.bids.withdraw_bid(bid_id, user.user_id)


@bids_router.post("/{bid_id}/reject", response_model=Bid)
async def reject_bid(
    bid_id: str,
    services: Services,
    user: User,
    request: Optional[ReasonRequest] = None,
) -> Bid:
    reason = request.reason if request else None
    return await services.bids.reject_bid(bid_id, user.user_id, reason)


@bids_router.post("/{bid_id}/accept", response_model=AssignmentResponse)
async def accept_bid(bid_id: str, services: Services, user: User) -> AssignmentResponse:
    result = await services.assignment.accept_bid(bid_id, user.user_id)
    return AssignmentResponse(
        accepted_bid=result.accepted_bid,
        trip=result.trip,
        load=result.load,
        rejected_bid_ids=result.rejected_bid_ids,
    )


# =============================================================================
# РЕЙСЫ
# =============================================================================

trips_router = APIRouter(prefix="/api/v1/trips", tags=["Trips"])


@trips_router.get("/driver", response_model=list[Trip])
async def list_driver_trips(
    services: Services,
    user: User,
    page: Page,
    trip_status: Optional[TripStatus] = Query(None, alias="status"),
) -> list[Trip]:
    return await services.trips.list_driver_trips(user.user_id, trip_status, page.limit, page.offset)


@trips_router.get("/owner", response_model=list[Trip])
async def list_owner_trips(
    services: Services,
    user: User,
    page: Page,
    trip_status: Optional[TripStatus] = Query(None, alias="status"),
) -> list[Trip]:
    return await services.trips.list_owner_trips(user.user_id, trip_status, page.limit, page.offset)


@trips_router.get("/{trip_id}", response_model=Trip)
async def get_trip(trip_id: str, services: Services, user: User) -> Trip:
    return await services.trips.get_trip(trip_id, user.user_id)


@trips_router.get("/{trip_id}/route", response_model=list[RoutePoint])
async def get_route(trip_id: str, services: Services, user: User) -> list[RoutePoint]:
    return await services.trips.get_route(trip_id, user.user_id)


@trips_router.post("/{trip_id}/start", response_model=Trip)
async def start_trip(
    trip_id: str,
    services: Services,
    user: User,
    location: Optional[LocationDTO] = None,
) -> Trip:
    """Старт рейса; тело с координатами записывает первую точку маршрута."""
    latitude = location.latitude if location else None
    longitude = location.longitude if location else None
    return await services.trips.start_trip(
        trip_id, user.user_id, latitude, longitude, driver_name=user.display_name,
    )


@trips_router.post("/{trip_id}/location", response_model=RoutePoint, status_code=status.HTTP_201_CREATED)
async def append_location(
    trip_id: str,
    location: LocationDTO,
    services: Services,
    user: User,
) -> RoutePoint:
    return await services.trips.append_location(
        trip_id, user.user_id, location.latitude, location.longitude, user.display_name,
    )


@trips_router.post("/{trip_id}/complete", response_model=Trip)
async def complete_trip(
    trip_id: str,
    services: Services,
    user: User,
    request: Optional[TripCompleteDTO] = None,
) -> Trip:
    notes = request.notes if request else None
    return await services.trips.complete_trip(trip_id, user.user_id, notes)


@trips_router.post("/{trip_id}/cancel", response_model=Trip)
async def cancel_trip(
    trip_id: str,
    services: Services,
    user: User,
    request: Optional[TripCancelDTO] = None,
) -> Trip:
    reason = request.reason if request else None
    return await services.trips.cancel_trip(trip_id, user.user_id, reason)


# =============================================================================
# ТРАНСПОРТ
# =============================================================================

vehicles_router = APIRouter(prefix="/api/v1/vehicles", tags=["Vehicles"])


@vehicles_router.post("", response_model=Vehicle, status_code=status.HTTP_201_CREATED)
async def register_vehicle(dto: VehicleCreateDTO, services: Services, user: User) -> Vehicle:
    return await services.vehicles.register_vehicle(user.user_id, dto)


@vehicles_router.get("", response_model=list[Vehicle])
async def list_vehicles(
    services: Services,
    user: User,
    active_only: bool = Query(False),
) -> list[Vehicle]:
    return await services.vehicles.list_vehicles(user.user_id, active_only)


@vehicles_router.post("/{vehicle_id}/deactivate", response_model=Vehicle)
async def deactivate_vehicle(vehicle_id: str, services: Services, user: User) -> Vehicle:
    return await services.vehicles.deactivate_vehicle(vehicle_id, user.user_id)


# =============================================================================
# ПОДПИСКИ
# =============================================================================

subscriptions_router = APIRouter(prefix="/api/v1/subscription", tags=["Subscriptions"])


@subscriptions_router.get("/plans", response_model=list[PlanPricing])
async def list_plans(services: Services) -> list[PlanPricing]:
    return services.subscriptions.get_plan_pricing()


@subscriptions_router.get("", response_model=Subscription)
async def get_subscription(services: Services, user: User) -> Subscription:
    return await services.subscriptions.get_subscription(user.user_id)


@subscriptions_router.post("", response_model=Subscription, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    services: Services,
    user: User,
    trial: bool = Query(False),
) -> Subscription:
    if trial:
        return await services.subscriptions.create_trial_subscription(user.user_id)
    return await services.subscriptions.create_subscription(user.user_id)


@subscriptions_router.get("/usage", response_model=UsageSummary)
async def usage(services: Services, user: User) -> UsageSummary:
    return await services.subscriptions.get_usage_summary(user.user_id)


@subscriptions_router.get("/quota/{action}", response_model=QuotaDecision)
async def check_quota(action: QuotaAction, services: Services, user: User) -> QuotaDecision:
    return await services.subscriptions.check_quota(user.user_id, action)


@subscriptions_router.post("/upgrade", response_model=Subscription)
async def upgrade(request: UpgradeRequest, services: Services, user: User) -> Subscription:
    return await services.subscriptions.upgrade_plan(user.user_id, request.plan)


@subscriptions_router.post("/renew", response_model=Subscription)
async def renew(services: Services, user: User) -> Subscription:
    return await services.subscriptions.renew_subscription(user.user_id)


@subscriptions_router.post("/downgrade", response_model=Subscription)
async def downgrade(services: Services, user: User) -> Subscription:
    return await services.subscriptions.downgrade_plan(user.user_id)


@subscriptions_router.post("/cancel", response_model=Subscription)
async def cancel(services: Services, user: User) -> Subscription:
    return await services.subscriptions.cancel_subscription(user.user_id)


ALL_ROUTERS = [
    loads_router,
    bids_router,
    trips_router,
    vehicles_router,
    subscriptions_router,
]

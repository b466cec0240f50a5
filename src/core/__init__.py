# src/core/__init__.py
"""
Доменный слой (Core Domain).
Грузы, ставки, назначение, рейсы, транспорт и тарифные квоты.
"""

from src.core.assignment import AssignmentResult, AssignmentService
from src.core.bids import Bid, BidService
from src.core.container import ServiceContainer, build_container
from src.core.loads import Load, LoadService
from src.core.subscriptions import Subscription, SubscriptionService
from src.core.trips import Trip, TripService
from src.core.vehicles import Vehicle, VehicleService

__all__ = [
    "AssignmentResult",
    "AssignmentService",
    "Bid",
    "BidService",
    "Load",
    "LoadService",
    "ServiceContainer",
    "Subscription",
    "SubscriptionService",
    "Trip",
    "TripService",
    "Vehicle",
    "VehicleService",
]

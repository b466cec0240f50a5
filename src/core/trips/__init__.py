# src/core/trips/__init__.py
"""
Домен рейсов.
Исполнение перевозки по принятой ставке и трекинг маршрута.
"""

from src.core.trips.models import LocationDTO, RoutePoint, Trip, TripCancelDTO, TripCompleteDTO
from src.core.trips.repository import TripRepository
from src.core.trips.service import TripService, validate_coordinates

__all__ = [
    "LocationDTO",
    "RoutePoint",
    "Trip",
    "TripCancelDTO",
    "TripCompleteDTO",
    "TripRepository",
    "TripService",
    "validate_coordinates",
]

# src/core/vehicles/__init__.py
"""
Домен транспорта.
Машины водителей и автопарков, участвующие в ставках.
"""

from src.core.vehicles.models import Vehicle, VehicleCreateDTO
from src.core.vehicles.repository import VehicleRepository
from src.core.vehicles.service import VehicleService

__all__ = [
    "Vehicle",
    "VehicleCreateDTO",
    "VehicleRepository",
    "VehicleService",
]

# src/core/bids/__init__.py
"""
Домен ставок.
Журнал ставок водителей на грузы.
"""

from src.core.bids.models import (
    Bid,
    BidCreateDTO,
    BidEligibility,
    BidStats,
    BidUpdateDTO,
    DriverBidStats,
)
from src.core.bids.repository import BidRepository
from src.core.bids.service import BidService

__all__ = [
    "Bid",
    "BidCreateDTO",
    "BidEligibility",
    "BidStats",
    "BidUpdateDTO",
    "DriverBidStats",
    "BidRepository",
    "BidService",
]

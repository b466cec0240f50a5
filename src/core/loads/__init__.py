# src/core/loads/__init__.py
"""
Домен грузов.
Реестр грузов и их жизненный цикл на бирже.
"""

from src.core.loads.models import (
    Load,
    LoadCreateDTO,
    LoadSearchFilters,
    LoadStats,
    LoadUpdateDTO,
)
from src.core.loads.repository import LoadRepository
from src.core.loads.service import LoadService

__all__ = [
    "Load",
    "LoadCreateDTO",
    "LoadSearchFilters",
    "LoadStats",
    "LoadUpdateDTO",
    "LoadRepository",
    "LoadService",
]

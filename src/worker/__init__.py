# src/worker/__init__.py
"""
Фоновые периодические воркеры.
"""

from src.worker.base import BaseWorker
from src.worker.expiry import ExpiryWorker

__all__ = ["BaseWorker", "ExpiryWorker"]

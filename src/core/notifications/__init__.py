# src/core/notifications/__init__.py
"""
Уведомления грузовладельцам и водителям о ставках и рейсах.
"""

from src.core.notifications.service import NotificationData, NotificationService

__all__ = ["NotificationData", "NotificationService"]

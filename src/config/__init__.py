# src/config/__init__.py
"""
Настройки процесса: config/config.json поверх значений по умолчанию, затем окружение.

    from src.config import settings
    settings.subscriptions.limits_for(PlanType.FREE)
"""

from src.config.loader import PlanLimits, Settings, get_settings, settings

__all__ = ["PlanLimits", "Settings", "get_settings", "settings"]

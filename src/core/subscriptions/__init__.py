# src/core/subscriptions/__init__.py
"""
Домен подписок.
Тарифы, месячные счётчики и гейт квот.
"""

from src.core.subscriptions.models import QuotaDecision, Subscription, UsageSummary
from src.core.subscriptions.repository import SubscriptionRepository
from src.core.subscriptions.service import SubscriptionService

__all__ = [
    "QuotaDecision",
    "Subscription",
    "UsageSummary",
    "SubscriptionRepository",
    "SubscriptionService",
]

# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


# Значение лимита тарифа, означающее «без ограничений»
UNLIMITED = -1


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    CARGO_OWNER = "cargo_owner"
    DRIVER = "driver"
    FLEET_OWNER = "fleet_owner"
    ADMIN = "admin"


class LoadStatus(str, Enum):
    """Статусы груза."""
    DRAFT = "draft"
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BidStatus(str, Enum):
    """Статусы ставки."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class TripStatus(str, Enum):
    """Статусы рейса."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VehicleType(str, Enum):
    """Типы транспорта."""
    SMALL_TRUCK = "small_truck"
    MEDIUM_TRUCK = "medium_truck"
    LARGE_TRUCK = "large_truck"
    FLATBED = "flatbed"
    REFRIGERATED = "refrigerated"
    TANKER = "tanker"
    VAN = "van"
    PICKUP = "pickup"


class PlanType(str, Enum):
    """Тарифные планы подписки."""
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    BUSINESS = "business"


class SubscriptionStatus(str, Enum):
    """Статусы подписки."""
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class QuotaAction(str, Enum):
    """Действия, ограниченные тарифом."""
    POST_LOAD = "post_load"
    PLACE_BID = "place_bid"
    ADD_VEHICLE = "add_vehicle"


class ErrorCode(str, Enum):
    """
    Фиксированная таксономия причин отказа.
    Значение совпадает с ключом текста в lang_dict.json.
    """
    # NotFound
    LOAD_NOT_FOUND = "LOAD_NOT_FOUND"
    BID_NOT_FOUND = "BID_NOT_FOUND"
    TRIP_NOT_FOUND = "TRIP_NOT_FOUND"
    VEHICLE_NOT_FOUND = "VEHICLE_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"

    # Unauthorized
    NOT_LOAD_OWNER = "NOT_LOAD_OWNER"
    NOT_BID_OWNER = "NOT_BID_OWNER"
    NOT_TRIP_DRIVER = "NOT_TRIP_DRIVER"
    NOT_TRIP_PARTICIPANT = "NOT_TRIP_PARTICIPANT"
    NOT_VEHICLE_OWNER = "NOT_VEHICLE_OWNER"

    # InvalidState
    LOAD_NOT_OPEN = "LOAD_NOT_OPEN"
    LOAD_NOT_EDITABLE = "LOAD_NOT_EDITABLE"
    BID_NOT_PENDING = "BID_NOT_PENDING"
    DUPLICATE_PENDING_BID = "DUPLICATE_PENDING_BID"
    SELF_BID = "SELF_BID"
    TRIP_NOT_ACTIVE = "TRIP_NOT_ACTIVE"
    TRIP_NOT_IN_PROGRESS = "TRIP_NOT_IN_PROGRESS"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # QuotaExceeded
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    MONTHLY_LOAD_LIMIT_REACHED = "MONTHLY_LOAD_LIMIT_REACHED"
    MONTHLY_BID_LIMIT_REACHED = "MONTHLY_BID_LIMIT_REACHED"
    VEHICLE_LIMIT_REACHED = "VEHICLE_LIMIT_REACHED"

    # Conflict
    LOAD_ALREADY_ASSIGNED = "LOAD_ALREADY_ASSIGNED"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"

    # Validation
    INVALID_PRICE = "INVALID_PRICE"
    INVALID_VEHICLE = "INVALID_VEHICLE"
    VEHICLE_TYPE_MISMATCH = "VEHICLE_TYPE_MISMATCH"
    INVALID_EXPIRY = "INVALID_EXPIRY"
    INVALID_LOCATION = "INVALID_LOCATION"
    INVALID_LOAD_DATA = "INVALID_LOAD_DATA"
    INVALID_INPUT = "INVALID_INPUT"

    # Хранилище
    TRANSACTION_FAILED = "TRANSACTION_FAILED"

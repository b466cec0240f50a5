# src/core/state_machine.py
"""
Машины состояний грузов, ставок и рейсов.
Все статусы монотонны: терминальные состояния не имеют исходящих переходов.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar

from src.common.constants import BidStatus, LoadStatus, TripStatus
from src.common.exceptions import InvalidTransitionError


class StatusStateMachine:
    """Базовая машина состояний: таблица допустимых переходов."""

    ENTITY: ClassVar[str] = ""
    VALID_TRANSITIONS: ClassVar[dict[Enum, list[Enum]]] = {}

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """Проверяет, допустим ли переход."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """Бросает InvalidTransitionError, если переход недопустим."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(cls.ENTITY, from_status.value, to_status.value)

    @classmethod
    def sources_for(cls, to_status: Enum) -> list[Enum]:
        """Статусы, из которых разрешён переход в to_status (для условного UPDATE)."""
        return [src for src, targets in cls.VALID_TRANSITIONS.items() if to_status in targets]

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)


class LoadStateMachine(StatusStateMachine):
    """
    Переходы груза:
    - draft → open (публикация)
    - open → assigned (принятие ставки), cancelled, expired
    - assigned → in_transit (рейс начат)
    - in_transit → delivered (рейс завершён)
    """

    ENTITY = "load"
    VALID_TRANSITIONS = {
        LoadStatus.DRAFT: [LoadStatus.OPEN],
        LoadStatus.OPEN: [LoadStatus.ASSIGNED, LoadStatus.CANCELLED, LoadStatus.EXPIRED],
        LoadStatus.ASSIGNED: [LoadStatus.IN_TRANSIT],
        LoadStatus.IN_TRANSIT: [LoadStatus.DELIVERED],
        LoadStatus.DELIVERED: [],
        LoadStatus.CANCELLED: [],
        LoadStatus.EXPIRED: [],
    }


class BidStateMachine(StatusStateMachine):
    """PENDING единственное нетерминальное состояние ставки."""

    ENTITY = "bid"
    VALID_TRANSITIONS = {
        BidStatus.PENDING: [BidStatus.ACCEPTED, BidStatus.REJECTED, BidStatus.WITHDRAWN],
        BidStatus.ACCEPTED: [],
        BidStatus.REJECTED: [],
        BidStatus.WITHDRAWN: [],
    }


class TripStateMachine(StatusStateMachine):
    """
    Переходы рейса:
    - scheduled → in_progress, cancelled
    - in_progress → completed, cancelled
    """

    ENTITY = "trip"
    VALID_TRANSITIONS = {
        TripStatus.SCHEDULED: [TripStatus.IN_PROGRESS, TripStatus.CANCELLED],
        TripStatus.IN_PROGRESS: [TripStatus.COMPLETED, TripStatus.CANCELLED],
        TripStatus.COMPLETED: [],
        TripStatus.CANCELLED: [],
    }

# src/common/exceptions.py
"""
Типизированные ошибки маркетплейса.
Каждая ошибка несёт код из фиксированной таксономии ErrorCode,
по которому клиент выбирает сценарий (например, предложить апгрейд тарифа).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.common.constants import ErrorCode
from src.common.localization import get_text

if TYPE_CHECKING:
    from src.core.subscriptions.models import QuotaDecision


class MarketplaceError(Exception):
    """Базовая ошибка доменного слоя."""

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Args:
            code: Код причины из таксономии
            message: Человекочитаемое сообщение (по умолчанию из lang_dict)
            details: Дополнительные данные для клиента
        """
        self.code = code
        self.message = message or get_text(code, default=code.value)
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Сериализует ошибку для ответа клиенту."""
        return {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details or None,
        }


class NotFoundError(MarketplaceError):
    """Груз, ставка, рейс, транспорт или подписка не найдены."""


class UnauthorizedError(MarketplaceError):
    """Пользователь не владеет ресурсом."""


class InvalidStateError(MarketplaceError):
    """Не выполнено условие на статус."""


class InvalidTransitionError(InvalidStateError):
    """Недопустимый переход статуса."""

    def __init__(self, entity: str, from_status: str, to_status: str) -> None:
        super().__init__(
            ErrorCode.INVALID_TRANSITION,
            get_text(
                ErrorCode.INVALID_TRANSITION,
                entity=entity,
                from_status=from_status,
                to_status=to_status,
            ),
            details={"entity": entity, "from": from_status, "to": to_status},
        )


class QuotaExceededError(MarketplaceError):
    """Лимит тарифа исчерпан. Несёт решение гейта с предложением апгрейда."""

    def __init__(self, decision: QuotaDecision) -> None:
        self.decision = decision
        code = decision.reason or ErrorCode.SUBSCRIPTION_INACTIVE
        super().__init__(
            code,
            details={
                "limit": decision.limit,
                "remaining": decision.remaining,
                "upgrade_to": decision.upgrade_to.value if decision.upgrade_to else None,
            },
        )

    @property
    def upgrade_to(self):
        """Рекомендуемый тариф."""
        return self.decision.upgrade_to


class ConflictError(MarketplaceError):
    """Конкурентная операция выиграла гонку."""


class ValidationError(MarketplaceError):
    """Некорректные входные данные."""


class TransactionFailedError(MarketplaceError):
    """Сбой хранилища внутри единицы работы; изменения откатаны."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.TRANSACTION_FAILED, message)

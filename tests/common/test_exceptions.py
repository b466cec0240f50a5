# tests/common/test_exceptions.py
"""
Тесты для типизированных ошибок маркетплейса.
"""

from __future__ import annotations

from src.common.constants import ErrorCode, PlanType
from src.common.exceptions import (
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    QuotaExceededError,
    TransactionFailedError,
)
from src.core.subscriptions.models import QuotaDecision


class TestMarketplaceError:
    """Тесты базовой ошибки."""

    def test_message_from_lang_dict(self) -> None:
        """Проверяет, что сообщение по умолчанию берётся из lang_dict."""
        error = NotFoundError(ErrorCode.LOAD_NOT_FOUND)
        assert error.message == "Груз не найден"
        assert str(error) == "Груз не найден"

    def test_explicit_message(self) -> None:
        error = ConflictError(ErrorCode.CONCURRENT_UPDATE, "повторите")
        assert error.message == "повторите"

    def test_to_dict(self) -> None:
        error = NotFoundError(ErrorCode.BID_NOT_FOUND, details={"bid_id": "b-1"})
        assert error.to_dict() == {
            "error_code": "BID_NOT_FOUND",
            "message": "Ставка не найдена",
            "details": {"bid_id": "b-1"},
        }

    def test_to_dict_without_details(self) -> None:
        assert NotFoundError(ErrorCode.TRIP_NOT_FOUND).to_dict()["details"] is None

    def test_hierarchy(self) -> None:
        assert issubclass(InvalidTransitionError, InvalidStateError)
        assert issubclass(TransactionFailedError, MarketplaceError)


class TestInvalidTransitionError:
    def test_details_and_message(self) -> None:
        """Проверяет форматирование сообщения о переходе."""
        error = InvalidTransitionError("load", "expired", "open")

        assert error.code == ErrorCode.INVALID_TRANSITION
        assert error.details == {"entity": "load", "from": "expired", "to": "open"}
        assert "expired" in error.message and "open" in error.message


class TestQuotaExceededError:
    def test_carries_decision(self) -> None:
        """Проверяет, что ошибка несёт предложение апгрейда."""
        decision = QuotaDecision(
            allowed=False,
            reason=ErrorCode.MONTHLY_BID_LIMIT_REACHED,
            remaining=0,
            limit=3,
            plan=PlanType.FREE,
            upgrade_to=PlanType.STARTER,
        )
        error = QuotaExceededError(decision)

        assert error.code == ErrorCode.MONTHLY_BID_LIMIT_REACHED
        assert error.upgrade_to == PlanType.STARTER
        assert error.details == {"limit": 3, "remaining": 0, "upgrade_to": "starter"}

    def test_reason_defaults_to_inactive(self) -> None:
        error = QuotaExceededError(QuotaDecision(allowed=False))
        assert error.code == ErrorCode.SUBSCRIPTION_INACTIVE
        assert error.details["upgrade_to"] is None


class TestTransactionFailedError:
    def test_code(self) -> None:
        error = TransactionFailedError()
        assert error.code == ErrorCode.TRANSACTION_FAILED

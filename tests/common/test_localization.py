# tests/common/test_localization.py
"""
Тесты для модуля локализации.
"""

from __future__ import annotations

from unittest.mock import patch

from src.common.localization import (
    get_available_languages,
    get_text,
    load_lang_dict,
    validate_lang_dict,
)


class TestGetText:
    """Тесты для get_text."""

    def test_default_language_is_russian(self) -> None:
        assert get_text("LOAD_NOT_FOUND") == "Груз не найден"

    def test_english(self) -> None:
        assert get_text("LOAD_NOT_FOUND", "en") == "Load not found"

    def test_format_params(self) -> None:
        """Проверяет подстановку параметров."""
        text = get_text(
            "NOTIFY_NEW_BID", "en",
            load_title="Pipes", bidder_name="Ivan", price=1200, currency="USD",
        )
        assert text == 'New bid on "Pipes" from Ivan: 1200 USD'

    def test_missing_params_keep_template(self) -> None:
        """Проверяет, что при нехватке параметров возвращается шаблон."""
        text = get_text("NOTIFY_TRIP_COMPLETED", "en", unrelated="x")
        assert "{load_title}" in text

    def test_unknown_language_falls_back(self) -> None:
        """Проверяет откат на язык по умолчанию."""
        assert get_text("BID_NOT_FOUND", "de") == "Ставка не найдена"

    def test_unknown_key(self) -> None:
        assert get_text("NO_SUCH_KEY") == "[NO_SUCH_KEY]"

    def test_unknown_key_with_default(self) -> None:
        assert get_text("NO_SUCH_KEY", default="fallback") == "fallback"

    def test_missing_file(self) -> None:
        """Проверяет поведение без файла локализации."""
        with patch("src.common.localization.load_lang_dict", side_effect=FileNotFoundError("нет")):
            assert get_text("LOAD_NOT_FOUND") == "[LOAD_NOT_FOUND]"


class TestLangDict:
    """Тесты словаря локализации."""

    def test_load_is_cached(self) -> None:
        assert load_lang_dict() is load_lang_dict()

    def test_available_languages(self) -> None:
        assert set(get_available_languages()) == {"ru", "en"}

    def test_dictionary_is_complete(self) -> None:
        """Проверяет, что у всех ключей есть переводы на все языки."""
        assert validate_lang_dict() == []

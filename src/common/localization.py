# src/common/localization.py
"""
Тексты уведомлений и сообщений об ошибках.
Словарь config/lang_dict.json: {ключ: {язык: шаблон}}, для ошибок ключ равен ErrorCode.
"""

from __future__ import annotations

import json
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

DEFAULT_LANG = "ru"


def get_lang_dict_path() -> Path:
    return Path(__file__).parent.parent.parent / "config" / "lang_dict.json"


@lru_cache()
def load_lang_dict() -> dict[str, dict[str, str]]:
    """
    Читает словарь один раз за процесс.

    Raises:
        FileNotFoundError: Файла словаря нет
    """
    path = get_lang_dict_path()
    if not path.exists():
        raise FileNotFoundError(f"Файл локализации не найден: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def _pick(translations: dict[str, str], lang: str) -> str | None:
    # Запрошенный язык, затем язык по умолчанию, затем любой имеющийся
    for candidate in (lang, DEFAULT_LANG):
        if translations.get(candidate):
            return translations[candidate]
    return next(iter(translations.values()), None)


def get_text(
    key: str | Enum,
    lang: str = DEFAULT_LANG,
    default: str | None = None,
    **kwargs: Any,
) -> str:
    """
    Локализованный текст по ключу.

    Args:
        key: Ключ словаря или ErrorCode
        lang: Код языка (ru, en)
        default: Значение, если ключа нет
        **kwargs: Параметры шаблона

    Returns:
        Текст; если параметров не хватает, шаблон без подстановки

    Example:
        >>> get_text(ErrorCode.LOAD_NOT_FOUND, "en")
        'Load not found'
    """
    name = key.value if isinstance(key, Enum) else key
    fallback = default or f"[{name}]"

    try:
        translations = load_lang_dict().get(name)
    except FileNotFoundError:
        return fallback
    if not translations:
        return fallback

    template = _pick(translations, lang) or fallback
    if not kwargs:
        return template
    try:
        return template.format(**kwargs)
    except KeyError:
        return template


def get_available_languages() -> list[str]:
    """Языки, на которые переведён первый ключ словаря."""
    try:
        first = next(iter(load_lang_dict().values()), {})
    except FileNotFoundError:
        return [DEFAULT_LANG]
    return list(first) or [DEFAULT_LANG]


def validate_lang_dict() -> list[str]:
    """
    Проверяет полноту переводов.

    Returns:
        Описания проблем (пустой список, если их нет)
    """
    try:
        lang_dict = load_lang_dict()
    except FileNotFoundError as e:
        return [str(e)]

    expected = set(get_available_languages())
    problems = []
    for key, translations in lang_dict.items():
        if not isinstance(translations, dict):
            problems.append(f"Ключ '{key}' имеет неверный формат")
            continue
        missing = expected - set(translations)
        if missing:
            problems.append(f"Ключ '{key}' без перевода на: {sorted(missing)}")
    return problems

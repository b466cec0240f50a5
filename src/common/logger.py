# src/common/logger.py
"""
Логирование.

Асинхронные log_info/log_debug/log_warning/log_error пишут в логгер "freight":
консоль (colored для разработки, json для сборщика логов) и, если LOG_TO_FILE,
файл с ротацией плюс отдельный error.log.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import TypeMsg

DEFAULT_LOGGER_NAME = "freight"

# log_* -> _emit -> logger.log: запись должна указывать на код, вызвавший log_*
_STACKLEVEL = 3

_LEVELS: dict[TypeMsg, int] = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}

# Шумные библиотеки пишут только предупреждения и ошибки
_QUIET_LOGGERS = ("asyncpg", "redis", "aio_pika", "aiormq", "httpx", "uvicorn.access")

_file_handlers: list[logging.Handler] = []
_loggers: dict[str, logging.Logger] = {}
_initialized = False


class JsonFormatter(logging.Formatter):
    """Одна JSON-строка на запись."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        extra = getattr(record, "extra_data", None)
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Читаемый вывод для терминала."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    GRAY = "\033[90m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        when = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        where = f"{self.GRAY}[{record.module}.{record.funcName}:{record.lineno}]{self.RESET}"

        line = f"{when} {color}{record.levelname:<7}{self.RESET} {where} {record.getMessage()}"
        extra = getattr(record, "extra_data", None)
        if extra:
            line += f" {self.GRAY}{json.dumps(extra, ensure_ascii=False, default=str)}{self.RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


@dataclass
class _LogConfig:
    level: str = "DEBUG"
    fmt: str = "colored"
    to_file: bool = False
    file_path: str = "logs/app.log"
    max_bytes: int = 10485760
    backup_count: int = 5


def _read_config() -> _LogConfig:
    """Параметры из settings.logging; до загрузки настроек или без них действуют умолчания."""
    try:
        from src.config import settings
        section = settings.logging
        config = _LogConfig(
            level=section.LOG_LEVEL,
            fmt=section.LOG_FORMAT,
            to_file=section.LOG_TO_FILE,
            file_path=section.LOG_FILE_PATH,
            max_bytes=section.LOG_MAX_BYTES,
            backup_count=section.LOG_BACKUP_COUNT,
        )
    except Exception:
        return _LogConfig()

    # settings бывает подменён MagicMock в тестах
    defaults = _LogConfig()
    for name, default in vars(defaults).items():
        if not isinstance(getattr(config, name), type(default)):
            setattr(config, name, default)
    return config


def _make_formatter(fmt: str) -> logging.Formatter:
    return JsonFormatter() if fmt == "json" else ColoredFormatter()


def _shared_file_handlers(config: _LogConfig) -> list[logging.Handler]:
    """Файловые хендлеры создаются один раз и общие для всех логгеров процесса."""
    if _file_handlers:
        return _file_handlers

    log_path = Path(config.file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    # Реплики с общим каталогом логов различаются по SERVICE_NAME
    service = os.getenv("SERVICE_NAME")
    stem = f"{log_path.stem}_{service}" if service else log_path.stem

    main_file = RotatingFileHandler(
        log_path.with_name(f"{stem}.log"),
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    errors_file = RotatingFileHandler(
        log_path.with_name("error.log"),
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    errors_file.setLevel(logging.ERROR)

    for handler in (main_file, errors_file):
        handler.setFormatter(_make_formatter(config.fmt))
        _file_handlers.append(handler)
    return _file_handlers


def setup_logging() -> None:
    """Настройка при старте процесса; повторный вызов ничего не меняет."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    get_logger(DEFAULT_LOGGER_NAME)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    if name in _loggers:
        return _loggers[name]

    config = _read_config()
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.level.upper(), logging.DEBUG))

    if not logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_make_formatter(config.fmt))
        logger.addHandler(console)
        if config.to_file:
            for handler in _shared_file_handlers(config):
                logger.addHandler(handler)
        logger.propagate = False

    _loggers[name] = logger
    return logger


def _emit(
    level: int,
    message: str,
    logger_name: str,
    extra: dict[str, Any] | None,
    exc_info: bool = False,
) -> None:
    get_logger(logger_name).log(
        level,
        message,
        extra={"extra_data": extra or {}},
        exc_info=exc_info,
        stacklevel=_STACKLEVEL,
    )


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Запись с уровнем из type_msg.

    Args:
        message: Текст
        type_msg: Уровень (TypeMsg.DEBUG, TypeMsg.INFO, ...)
        logger_name: Имя логгера
        extra: Структурированные поля записи
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name, extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.DEBUG, message, logger_name, extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.WARNING, message, logger_name, extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """
    Args:
        message: Текст
        logger_name: Имя логгера
        extra: Структурированные поля записи
        exc_info: Приложить трейсбек обрабатываемого исключения
    """
    _emit(logging.ERROR, message, logger_name, extra, exc_info=exc_info)

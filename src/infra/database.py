# src/infra/database.py
"""
PostgreSQL через asyncpg.

Один пул на процесс. Одиночные запросы повторяются при обрыве соединения,
а составные операции (принятие ставки, отмена груза) идут через transaction(),
которая переводит ошибки PostgreSQL в доменные исключения.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, AsyncGenerator, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from src.common.constants import ErrorCode, TypeMsg
from src.common.exceptions import ConflictError, TransactionFailedError, ValidationError
from src.common.logger import log_error, log_info, log_warning

T = TypeVar("T")

# Конкурентная транзакция успела первой: вызывающий может повторить операцию
CONFLICT_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.UniqueViolationError,
    asyncpg.SerializationError,
    asyncpg.DeadlockDetectedError,
)

CONNECTION_ERRORS: tuple[type[Exception], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionRefusedError,
    OSError,
)

# Ключ pg_advisory_xact_lock для применения схемы
SCHEMA_LOCK_KEY = 724301


def _invalid_argument(error: asyncpg.DataError) -> ValidationError:
    # Класс 22 SQLSTATE и аргументы, которые asyncpg не смог закодировать (id не в формате UUID)
    return ValidationError(ErrorCode.INVALID_INPUT, details={"reason": str(error)})


def retry_on_connection_error(
    max_attempts: int = 3,
    delay: float = 1.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Повторяет корутину, если PostgreSQL недоступен.
    Остальные исключения пробрасываются сразу.

    Args:
        max_attempts: Сколько всего попыток
        delay: Пауза перед второй попыткой; перед n-й попыткой пауза delay * (n - 1)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except asyncpg.DataError as e:
                    raise _invalid_argument(e) from e
                except CONNECTION_ERRORS as e:
                    if attempt >= max_attempts:
                        await log_error(f"PostgreSQL недоступен, попыток: {max_attempts}. {func.__name__}: {e}")
                        raise
                    await log_warning(f"PostgreSQL недоступен ({attempt}/{max_attempts}), {func.__name__}: {e}")
                    await asyncio.sleep(delay * attempt)
                    attempt += 1

        return wrapper  # type: ignore

    return decorator


class DatabaseManager:
    """Пул соединений PostgreSQL, единственный на процесс."""

    _instance: DatabaseManager | None = None
    _pool: Pool | None = None

    def __new__(cls) -> DatabaseManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return
        self._initialized = True
        self._pool = None

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован: сначала connect()")
        return self._pool

    @retry_on_connection_error(max_attempts=3, delay=1.0)
    async def connect(
        self,
        dsn: str,
        min_size: int = 5,
        max_size: int = 20,
        command_timeout: int = 60,
    ) -> None:
        """Создаёт пул; повторный вызов ничего не делает."""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
        )
        await log_info(f"Пул PostgreSQL создан ({min_size}..{max_size})", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(
        self,
        isolation: str = "read_committed",
    ) -> AsyncGenerator[Connection, None]:
        """
        Единица работы над одним соединением.

        Выход без исключения фиксирует изменения, любое исключение откатывает их.
        После отката:
        - UniqueViolation, SerializationFailure, Deadlock -> ConflictError(CONCURRENT_UPDATE)
        - DataError (некорректный аргумент или значение) -> ValidationError(INVALID_INPUT)
        - прочие ошибки PostgreSQL -> TransactionFailedError
        - доменные исключения -> без изменений

        Args:
            isolation: read_committed, repeatable_read или serializable

        Example:
            async with db.transaction() as conn:
                load = await loads.get_for_update(load_id, conn=conn)
                await bids.transition(bid_id, BidStatus.ACCEPTED, conn=conn)
        """
        try:
            async with self.pool.acquire() as connection:
                async with connection.transaction(isolation=isolation):
                    yield connection
        except CONFLICT_ERRORS as e:
            await log_warning(f"Транзакция проиграла гонку: {type(e).__name__}: {e}")
            raise ConflictError(ErrorCode.CONCURRENT_UPDATE, details={"reason": type(e).__name__}) from e
        except asyncpg.DataError as e:
            raise _invalid_argument(e) from e
        except asyncpg.PostgresError as e:
            await log_error(f"Транзакция откатана: {e}", exc_info=True)
            raise TransactionFailedError() from e

    @retry_on_connection_error()
    async def execute(self, query: str, *args: Any) -> str:
        """Возвращает статус команды, например 'UPDATE 3'."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    @retry_on_connection_error()
    async def fetch(self, query: str, *args: Any) -> list[Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    @retry_on_connection_error()
    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @retry_on_connection_error()
    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def health_check(self) -> bool:
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            await log_error(f"PostgreSQL не отвечает: {e}")
            return False


class BaseRepository:
    """
    Общий предок репозиториев.

    Каждый метод принимает conn=None: с соединением запрос выполняется внутри
    транзакции вызывающего, без него через пул.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def _executor(self, conn: Connection | None) -> Connection | DatabaseManager:
        return conn if conn is not None else self._db

    @staticmethod
    def _is_id(value: Any) -> bool:
        """Похож ли идентификатор на UUID. Чужой формат означает, что записи нет."""
        if isinstance(value, uuid.UUID):
            return True
        try:
            uuid.UUID(str(value))
        except ValueError:
            return False
        return True


_db_manager: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_db() -> None:
    """Подключает пул по настройкам и применяет migrations/init.sql."""
    from src.config import settings

    cfg = settings.database
    db = get_db()
    await db.connect(
        dsn=cfg.dsn,
        min_size=cfg.DB_MIN_POOL_SIZE,
        max_size=cfg.DB_MAX_POOL_SIZE,
        command_timeout=cfg.DB_COMMAND_TIMEOUT,
    )
    await log_info(f"PostgreSQL: {cfg.DB_HOST}:{cfg.DB_PORT}/{cfg.DB_NAME}", type_msg=TypeMsg.INFO)
    await apply_schema(db)


async def apply_schema(db: DatabaseManager) -> None:
    """
    Выполняет migrations/init.sql.
    Скрипт идемпотентен; реплики, стартующие одновременно, ждут друг друга на advisory lock.
    """
    from src.config.loader import get_project_root

    schema_path = get_project_root() / "migrations" / "init.sql"
    if not schema_path.exists():
        await log_error(f"Нет файла схемы: {schema_path}")
        return

    try:
        async with db.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_KEY)
                await conn.execute(schema_path.read_text(encoding="utf-8"))
    except (asyncpg.DeadlockDetectedError, asyncpg.DuplicateObjectError) as e:
        await log_warning(f"Схему применяет другой процесс: {e}")
        return

    await log_info("Схема БД применена", type_msg=TypeMsg.DEBUG)


async def close_db() -> None:
    await get_db().disconnect()
    await log_info("PostgreSQL отключён", type_msg=TypeMsg.INFO)

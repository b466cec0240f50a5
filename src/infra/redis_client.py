# src/infra/redis_client.py
"""
Redis: кэш карточек грузов и блокировки для воркеров.

Ключи имеют вид "<namespace>:<key>", блокировки "<namespace>:lock:<name>".
Кэш вторичен: при промахе или испорченной записи читаем из PostgreSQL.
"""

from __future__ import annotations

from typing import TypeVar, Type
from uuid import uuid4

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning

M = TypeVar("M", bound=BaseModel)

# Compare-and-delete: чужую (перехваченную после истечения TTL) блокировку не трогаем
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisClient:
    """Обёртка над redis.asyncio с пространством имён ключей. Один экземпляр на процесс."""

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return
        self._initialized = True
        self._client = None
        self._namespace = "freight"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован: сначала connect()")
        return self._client

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _lock_key(self, name: str) -> str:
        return self._make_key(f"lock:{name}")

    async def connect(
        self,
        url: str,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Args:
            url: redis:// URL
            max_connections: Размер пула соединений
            namespace: Префикс всех ключей
        """
        if self._client is not None:
            return
        self._namespace = namespace or self._namespace

        client = redis.from_url(url, max_connections=max_connections, decode_responses=True)
        await client.ping()
        self._client = client
        await log_info(f"Redis отвечает, пространство ключей '{self._namespace}'", type_msg=TypeMsg.DEBUG)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def get(self, key: str) -> str | None:
        return await self.client.get(self._make_key(key))

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        return await self.client.set(self._make_key(key), value, ex=ttl)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*map(self._make_key, keys))

    async def get_model(self, key: str, model_class: Type[M]) -> M | None:
        """
        Модель из кэша.

        Returns:
            Экземпляр model_class; None при промахе или если запись не проходит валидацию
        """
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return model_class.model_validate_json(raw)
        except ValidationError as e:
            await log_warning(f"Испорченная запись {key} ({model_class.__name__}): {e.error_count()} ошибок")
            return None

    async def set_model(self, key: str, model: BaseModel, ttl: int | None = None) -> bool:
        return await self.set(key, model.model_dump_json(), ttl=ttl)

    async def acquire_lock(self, name: str, ttl: int) -> str | None:
        """
        SET NX EX.

        Args:
            name: Имя блокировки
            ttl: Через сколько секунд блокировка снимется сама

        Returns:
            Токен для release_lock или None, если блокировку держит другой процесс
        """
        token = uuid4().hex
        if await self.client.set(self._lock_key(name), token, nx=True, ex=ttl):
            return token
        return None

    async def release_lock(self, name: str, token: str) -> bool:
        return bool(await self.client.eval(_RELEASE_LOCK_SCRIPT, 1, self._lock_key(name), token))

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            await log_error(f"Redis не отвечает: {e}")
            return False


def get_redis() -> RedisClient:
    return RedisClient()


async def init_redis() -> None:
    from src.config import settings

    cfg = settings.redis
    await get_redis().connect(
        url=cfg.url,
        max_connections=cfg.REDIS_MAX_CONNECTIONS,
        namespace=cfg.REDIS_NAMESPACE,
    )
    await log_info(f"Redis: {cfg.REDIS_HOST}:{cfg.REDIS_PORT}/{cfg.REDIS_DB}", type_msg=TypeMsg.INFO)


async def close_redis() -> None:
    await get_redis().disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)

# src/config/loader.py
"""
Настройки приложения.

config/config.json хранит плоский словарь ключей; каждая секция Settings
забирает из него ключи с именами своих полей. Хосты, порты и пароли
переопределяются переменными окружения (и .env).
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.common.constants import UNLIMITED, PlanType

# Ключи, которые окружение переопределяет поверх config.json
ENV_OVERRIDES = (
    "COMPONENT_MODE",
    "API_PORT",
    "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD",
    "REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD",
    "RABBITMQ_HOST", "RABBITMQ_PORT", "RABBITMQ_USER", "RABBITMQ_PASSWORD",
)

# Ключи config.json, чьё имя не совпадает с полем секции
RENAMED_KEYS = {
    "SUBSCRIPTION_PLANS": "PLANS",
    "PLAN_UPGRADE_ORDER": "UPGRADE_ORDER",
}


def get_project_root() -> Path:
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """
    Raises:
        FileNotFoundError: config.json отсутствует
    """
    path = get_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


# =============================================================================
# СЕКЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    PROJECT_NAME: str = "freight_marketplace"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080


class LoggingSettings(BaseModel):
    """Уровень, формат (colored или json) и ротация файла лога."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DomainSettings(BaseModel):
    DEFAULT_LANGUAGE: str = "ru"
    DEFAULT_CURRENCY: str = "USD"


class DatabaseSettings(BaseModel):
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "freight_marketplace"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


class RedisSettings(BaseModel):
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "freight"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Время жизни ключей Redis, секунды."""
    LOAD_TTL: int = 300
    SWEEP_LOCK_TTL: int = 55


class RabbitMQSettings(BaseModel):
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "freight.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class PlanLimits(BaseModel):
    """Лимиты тарифа. UNLIMITED (-1) снимает ограничение."""
    max_loads_per_month: int = 0
    max_bids_per_month: int = 0
    max_vehicles: int = 0
    max_team_members: int = 0
    price: float = 0.0

    @field_validator("max_loads_per_month", "max_bids_per_month", "max_vehicles", "max_team_members")
    @classmethod
    def check_limit(cls, v: int) -> int:
        if v < UNLIMITED:
            raise ValueError(f"Лимит должен быть >= 0 или {UNLIMITED}, получено {v}")
        return v


def _default_plans() -> dict[PlanType, PlanLimits]:
    unlimited = {"max_loads_per_month": UNLIMITED, "max_bids_per_month": UNLIMITED}
    return {
        PlanType.FREE: PlanLimits(max_loads_per_month=3, max_bids_per_month=3, max_vehicles=1),
        PlanType.STARTER: PlanLimits(**unlimited, max_vehicles=1, price=29),
        PlanType.PROFESSIONAL: PlanLimits(**unlimited, max_vehicles=5, price=79),
        PlanType.BUSINESS: PlanLimits(**unlimited, max_vehicles=UNLIMITED, max_team_members=3, price=199),
    }


class SubscriptionSettings(BaseModel):
    """
    Каталог тарифов.
    UPGRADE_ORDER задаёт, какой план предлагать при исчерпании квоты.
    """
    PLANS: dict[PlanType, PlanLimits] = Field(default_factory=_default_plans)
    UPGRADE_ORDER: list[PlanType] = Field(default_factory=lambda: list(PlanType))
    TRIAL_DAYS: int = 14

    @model_validator(mode="after")
    def check_catalog(self) -> "SubscriptionSettings":
        missing = [p.value for p in self.UPGRADE_ORDER if p not in self.PLANS]
        if missing:
            raise ValueError(f"В каталоге тарифов отсутствуют планы: {missing}")
        return self

    def limits_for(self, plan: PlanType) -> PlanLimits:
        return self.PLANS[plan]


class MarketplaceSettings(BaseModel):
    EXPIRY_SWEEP_INTERVAL: int = 60
    MIN_BID_PRICE: float = 0.01


# =============================================================================
# НАСТРОЙКИ ЦЕЛИКОМ
# =============================================================================

def _section(model: type[BaseModel], data: dict[str, Any]) -> Any:
    """Секция из плоского словаря: берутся только ключи, совпадающие с полями модели."""
    return model(**{name: data[name] for name in model.model_fields if name in data})


class Settings(BaseSettings):
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    domain: DomainSettings = Field(default_factory=DomainSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    subscriptions: SubscriptionSettings = Field(default_factory=SubscriptionSettings)
    marketplace: MarketplaceSettings = Field(default_factory=MarketplaceSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_config_json(cls) -> "Settings":
        return cls.from_dict(load_config_json())

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """
        Собирает настройки из плоского словаря config.json.

        Ключи _comment_* пропускаются. Для ключей из ENV_OVERRIDES
        непустая переменная окружения важнее значения из файла.
        """
        data = {
            RENAMED_KEYS.get(key, key): value
            for key, value in config_data.items()
            if not key.startswith("_comment_")
        }
        for key in ENV_OVERRIDES:
            if os.getenv(key):
                data[key] = os.environ[key]

        return cls(**{
            name: _section(field.annotation, data)
            for name, field in cls.model_fields.items()
        })


@lru_cache()
def get_settings() -> Settings:
    """Настройки процесса; .env из корня проекта подгружается до чтения окружения."""
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()

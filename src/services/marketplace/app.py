# src/services/marketplace/app.py
"""
FastAPI приложение Marketplace API.

Endpoints:
- /api/v1/loads - грузы и биржа
- /api/v1/bids - ставки и принятие ставки
- /api/v1/trips - рейсы и трекинг
- /api/v1/vehicles - транспорт
- /api/v1/subscription - тарифы и квоты
- /health - проверка здоровья
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.exceptions import (
    ConflictError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    QuotaExceededError,
    TransactionFailedError,
    UnauthorizedError,
    ValidationError,
)
from src.common.logger import log_error, log_info
from src.config import settings
from src.infra.database import get_db
from src.infra.event_bus import get_event_bus
from src.infra.redis_client import get_redis
from src.services.marketplace.routes import ALL_ROUTERS
from src.services.marketplace.schemas import ErrorResponse, HealthStatus

# Порядок важен: подклассы раньше базовых классов
ERROR_STATUS: list[tuple[type[MarketplaceError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (QuotaExceededError, status.HTTP_402_PAYMENT_REQUIRED),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TransactionFailedError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(error: MarketplaceError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    await log_info("Marketplace API запускается...", type_msg=TypeMsg.INFO)

    from src.services.marketplace.dependencies import init_dependencies, close_dependencies
    await init_dependencies(init_infra=app.state.init_infra)

    yield

    await close_dependencies()
    await log_info("Marketplace API остановлен", type_msg=TypeMsg.INFO)


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

def create_app(init_infra: bool = True) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        init_infra: Подключать ли инфраструктуру в lifespan
    """
    application = FastAPI(
        title="Freight Marketplace API",
        description="Биржа грузоперевозок: грузы, ставки, назначение и рейсы",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    application.state.init_infra = init_infra

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        code = status_for(exc)
        if code >= 500:
            await log_error(f"{request.method} {request.url.path}: {exc.message}", extra=exc.to_dict())
        else:
            await log_info(
                f"{request.method} {request.url.path} -> {code} {exc.code.value}",
                type_msg=TypeMsg.DEBUG,
            )
        body = ErrorResponse(**exc.to_dict())
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    @application.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check() -> HealthStatus:
        """Проверка здоровья сервиса."""
        deps = {}
        checks = {
            "postgres": get_db().health_check,
            "redis": get_redis().health_check,
            "rabbitmq": get_event_bus().health_check,
        }
        for name, check in checks.items():
            try:
                deps[name] = "healthy" if await check() else "unhealthy"
            except Exception:
                deps[name] = "unhealthy"

        overall = "healthy" if all(v == "healthy" for v in deps.values()) else "degraded"
        return HealthStatus(
            service="marketplace_api",
            status=overall,
            version=settings.system.VERSION,
            dependencies=deps,
        )

    for router in ALL_ROUTERS:
        application.include_router(router)

    return application


app = create_app()

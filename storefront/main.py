# storefront/main.py

import logging
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Конфигурация и ядро
from storefront.core.config import settings as config
from storefront.core.limiter import CART_SESSION_HEADER, limiter
from storefront.core.logging_config import setup_logging
from storefront.core.redis import redis_client
from storefront.clients.coupon_api import coupon_api_client

# Роутеры FastAPI
from storefront.routers import cart, catalog

# Сервисы
from storefront.services.registry import CartRegistry
from storefront.services.storage import CartStorage

# --- Инициализация ---
logger = logging.getLogger(__name__)

# --- Обработчик критических ошибок ---
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Глобальный обработчик для всех необработанных исключений.
    Логирует ошибку и возвращает клиенту обезличенный ответ.
    """
    logger.critical(f"Unhandled exception for request: {request.method} {request.url}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error."},
    )

# --- Lifespan Manager (запуск и остановка приложения) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application lifespan startup...")

    storage = CartStorage(redis_client)
    app.state.cart_registry = CartRegistry(storage=storage)
    app.state.coupon_client = coupon_api_client
    logger.info(f"Cart registry ready (base currency {config.BASE_CURRENCY}).")

    yield

    # Код при остановке
    logger.info("Application shutting down, flushing pending cart writes...")
    await storage.drain()
    await coupon_api_client.aclose()
    await redis_client.aclose()
    logger.info("Shutdown complete.")

# --- Создание FastAPI приложения ---
app = FastAPI(
    title="Storefront Cart Service",
    description="Cart & pricing backend for the storefront client",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CART_SESSION_HEADER],  # клиент должен видеть выданную сессию
)

# --- Регистрация обработчиков исключений ---
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Подключение роутеров FastAPI ---
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(cart.router, tags=["Cart"])
api_router.include_router(catalog.router, tags=["Catalog"])

app.include_router(api_router)

# storefront/core/limiter.py

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.core.config import settings

logger = logging.getLogger(__name__)

CART_SESSION_HEADER = "X-Cart-Session"

# --- Функция-ключ для идентификации запросов ---

def key_func(request: Request) -> str:
    """
    Определяет, как идентифицировать запрос для применения лимита.
    Приоритет: сессия корзины (если передана) -> IP-адрес.
    """
    session_id = request.headers.get(CART_SESSION_HEADER)
    if session_id:
        return f"cart:{session_id}"

    return get_remote_address(request)

# --- Создание и конфигурация лимитера ---

# Хранилище счетчиков берется из настроек ("memory://" по умолчанию,
# в проде можно указать redis://...).
# 'moving-window' - это гибкий и эффективный алгоритм.
limiter = Limiter(
    key_func=key_func,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="moving-window",
)

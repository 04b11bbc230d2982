# storefront/dependencies.py

import logging
import re
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Response, status

from storefront.core.limiter import CART_SESSION_HEADER
from storefront.services.cart import CartStore, CouponValidator
from storefront.services.coupon import make_validator
from storefront.services.registry import CartRegistry, new_session_id

# --- Инициализация логгера ---
logger = logging.getLogger(__name__)

# Идентификатор сессии попадает в ключ Redis, поэтому ограничиваем алфавит и длину
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


# --- Владелец корзин и валидатор промокодов ---

def get_cart_registry(request: Request) -> CartRegistry:
    return request.app.state.cart_registry


def get_coupon_validator(request: Request) -> CouponValidator:
    return make_validator(request.app.state.coupon_client)


# --- Сессия корзины ---

def get_cart_session(
    response: Response,
    x_cart_session: Optional[str] = Header(None, alias=CART_SESSION_HEADER),
) -> str:
    """
    Идентификатор сессии корзины из заголовка X-Cart-Session.
    Если его нет - создаем новый; в любом случае возвращаем его клиенту в заголовке ответа.
    """
    if x_cart_session is None or x_cart_session == "":
        session_id = new_session_id()
        logger.debug(f"No cart session header, issued new session {session_id}.")
    elif not SESSION_ID_PATTERN.match(x_cart_session):
        logger.warning("Rejected malformed cart session header.")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {CART_SESSION_HEADER} header.",
        )
    else:
        session_id = x_cart_session

    response.headers[CART_SESSION_HEADER] = session_id
    return session_id


async def get_cart_store(
    session_id: str = Depends(get_cart_session),
    registry: CartRegistry = Depends(get_cart_registry),
) -> CartStore:
    """
    Основная зависимость для эндпоинтов корзины: корзина текущей сессии,
    восстановленная из хранилища при первом обращении.
    """
    return await registry.get(session_id)

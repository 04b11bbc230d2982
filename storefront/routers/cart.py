# storefront/routers/cart.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from storefront.core import locales
from storefront.core.config import settings
from storefront.core.limiter import limiter
from storefront.dependencies import get_cart_store, get_coupon_validator
from storefront.schemas.cart import (
    AddLineRequest, ApplyCouponRequest, CartResponse, CartSnapshot, CartStatusNotification,
    CommitSelectionRequest, CouponApplied, CouponInvalid, SetQtyRequest,
)
from storefront.services.cart import CartStore, CouponValidator, cart_view, commit_selection
from storefront.services.money import convert_and_format
from storefront.services.pricing import MissingSelectionError

logger = logging.getLogger(__name__)

router = APIRouter()

CurrencyQuery = Query(None, description="Валюта отображения итогов, например EUR")
LocaleQuery = Query(None, description="Локаль форматирования, например de_DE")


# --- Эндпоинты для Корзины ---

@router.get("/cart", response_model=CartResponse)
async def get_cart(
    currency: Optional[str] = CurrencyQuery,
    locale: Optional[str] = LocaleQuery,
    store: CartStore = Depends(get_cart_store),
):
    """Получение содержимого корзины текущей сессии с итогами."""
    return cart_view(store, currency, locale)


@router.post("/cart/items", response_model=CartResponse)
async def add_cart_item(
    item_data: AddLineRequest,
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    """
    Добавление товара в корзину. Повторное добавление той же тройки
    (товар, вариант, цена) увеличивает количество существующей позиции.
    """
    line = store.add_line(item_data.item, item_data.qty)
    logger.info(f"Session {store.session_id}: line {line.line_id} now has qty {line.qty}.")
    return cart_view(store, currency, notifications=[
        CartStatusNotification(level="success", message=locales.SUCCESS_CART_UPDATED)
    ])


@router.post("/cart/selections", response_model=CartResponse)
async def commit_cart_selection(
    selection_data: CommitSelectionRequest,
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    """
    Добавление товара с выбранными опциями. Цена считается с учетом надбавок;
    без выбора обязательных опций товар в корзину не попадает.
    """
    try:
        line = commit_selection(store, selection_data.product, selection_data.selection, selection_data.qty)
    except MissingSelectionError as e:
        logger.info(f"Session {store.session_id}: commit refused, missing selection {e.missing}.")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": "MISSING_SELECTION",
                "missing": e.missing,
                "message": locales.ERROR_MISSING_SELECTION.format(missing=", ".join(e.missing)),
            },
        )
    logger.info(f"Session {store.session_id}: committed line {line.line_id} (qty {line.qty}).")
    return cart_view(store, currency, notifications=[
        CartStatusNotification(level="success", message=locales.SUCCESS_CART_UPDATED)
    ])


@router.patch("/cart/items/{line_id}", response_model=CartResponse)
async def update_cart_item(
    line_id: str,
    qty_data: SetQtyRequest,
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    """Изменение количества; значения меньше 1 превращаются в 1."""
    if not store.set_qty(line_id, qty_data.qty):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=locales.ERROR_ITEM_NOT_IN_CART)
    return cart_view(store, currency)


@router.delete("/cart/items/{line_id}", response_model=CartResponse)
async def delete_cart_item(
    line_id: str,
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    """Удаление позиции из корзины."""
    if not store.remove_line(line_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=locales.ERROR_ITEM_NOT_IN_CART)
    return cart_view(store, currency, notifications=[
        CartStatusNotification(level="success", message=locales.SUCCESS_ITEM_REMOVED_FROM_CART)
    ])


@router.delete("/cart", response_model=CartResponse)
async def clear_cart(
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    """Полная очистка корзины вместе с промокодом."""
    store.clear()
    return cart_view(store, currency, notifications=[
        CartStatusNotification(level="success", message=locales.SUCCESS_CART_CLEARED)
    ])


# --- Промокод ---

@router.post("/cart/coupon", response_model=CartResponse)
@limiter.limit(settings.COUPON_RATE_LIMIT)
async def apply_cart_coupon(
    request: Request,
    coupon_data: ApplyCouponRequest,
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
    validator: CouponValidator = Depends(get_coupon_validator),
):
    """
    Проверяет промокод на бэкенде для текущего состава корзины.
    Новый промокод всегда замещает предыдущий, в том числе уже примененный.
    """
    coupon = await store.apply_coupon(coupon_data.code, validator)

    notifications = []
    if isinstance(coupon, CouponApplied):
        discount = convert_and_format(coupon.discount_base, settings.FX_RATES, currency, settings.BASE_CURRENCY)
        notifications.append(CartStatusNotification(
            level="success",
            message=locales.SUCCESS_COUPON_APPLIED.format(code=coupon.code, discount=discount),
        ))
    elif isinstance(coupon, CouponInvalid):
        notifications.append(CartStatusNotification(
            level="error", message=locales.coupon_reason_message(coupon.reason)
        ))
    return cart_view(store, currency, notifications=notifications)


@router.delete("/cart/coupon", response_model=CartResponse)
async def remove_cart_coupon(
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    store.clear_coupon()
    return cart_view(store, currency, notifications=[
        CartStatusNotification(level="success", message=locales.SUCCESS_COUPON_REMOVED)
    ])


# --- Снимок корзины ---

@router.get("/cart/snapshot", response_model=CartSnapshot)
async def get_cart_snapshot(store: CartStore = Depends(get_cart_store)):
    return store.serialize()


@router.put("/cart/snapshot", response_model=CartResponse)
async def restore_cart_snapshot(
    snapshot: CartSnapshot,
    currency: Optional[str] = CurrencyQuery,
    store: CartStore = Depends(get_cart_store),
):
    """
    Восстанавливает корзину из снимка (например, сохраненного на клиенте).
    Понимает и старые форматы позиций и промокода.
    """
    store.hydrate(snapshot)
    return cart_view(store, currency)

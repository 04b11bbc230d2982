# storefront/core/locales.py

# Сообщения об ошибках
ERROR_ITEM_NOT_IN_CART = "Товар не найден в корзине."
ERROR_MISSING_SELECTION = "Пожалуйста, выберите все обязательные опции: {missing}."

# Сообщения об успехе
SUCCESS_CART_UPDATED = "Корзина обновлена."
SUCCESS_ITEM_REMOVED_FROM_CART = "Товар удален из корзины."
SUCCESS_CART_CLEARED = "Корзина очищена."
SUCCESS_COUPON_REMOVED = "Промокод удален."

# Сообщения о промокоде (по коду причины от бэкенда)
COUPON_REASON_MESSAGES = {
    "EMPTY": "Введите промокод.",
    "NOT_FOUND": "Промокод не найден.",
    "EXPIRED": "Срок действия промокода истек.",
    "NO_ELIGIBLE_LINES": "В корзине нет товаров, к которым применим этот промокод.",
    "MIN_NOT_MET": "Сумма заказа меньше минимальной для этого промокода.",
    "HTTP_FAIL": "Не удалось проверить промокод. Пожалуйста, попробуйте позже.",
    "NETWORK": "Нет связи с сервером. Пожалуйста, попробуйте позже.",
    "REJECTED": "Не удалось проверить промокод. Пожалуйста, попробуйте позже.",
}
COUPON_REASON_DEFAULT = "Промокод недействителен или не может быть применен к вашей корзине."
SUCCESS_COUPON_APPLIED = "Промокод '{code}' успешно применен! Скидка: {discount}."


def coupon_reason_message(reason: str | None) -> str:
    return COUPON_REASON_MESSAGES.get(reason or "", COUPON_REASON_DEFAULT)

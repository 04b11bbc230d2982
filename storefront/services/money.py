# storefront/services/money.py

import logging
import math
from typing import Mapping, Optional

from babel.core import UnknownLocaleError
from babel.numbers import format_currency

from storefront.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_BASE_CURRENCY = settings.BASE_CURRENCY


def _to_amount(value) -> float:
    """Любое значение -> конечное число; мусор, NaN и бесконечности становятся 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def safe_currency(code: Optional[str], fallback: str = DEFAULT_BASE_CURRENCY) -> str:
    if isinstance(code, str) and len(code.strip()) >= 3:
        return code.strip().upper()
    return fallback


def safe_rate(rates: Optional[Mapping[str, float]], code: Optional[str]) -> float:
    """
    Курс для валюты. Для неизвестной валюты или некорректного курса
    (не число, <= 0, NaN) возвращает 1, т.е. считаем ее базовой.
    """
    if not isinstance(rates, Mapping) or not code:
        return 1.0
    rate = rates.get(code)
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        return 1.0
    return float(rate) if math.isfinite(rate) and rate > 0 else 1.0


def convert(
    amount,
    rates: Optional[Mapping[str, float]],
    target: Optional[str],
    base: str = DEFAULT_BASE_CURRENCY,
) -> float:
    """Переводит сумму из базовой валюты в целевую по таблице курсов."""
    value = _to_amount(amount)
    rate_to = safe_rate(rates, safe_currency(target, base))
    rate_from = safe_rate(rates, safe_currency(base))
    return _to_amount(value * (rate_to / rate_from))


def format_money(amount, currency: Optional[str] = DEFAULT_BASE_CURRENCY, locale: Optional[str] = None) -> str:
    value = _to_amount(amount)
    code = safe_currency(currency)
    try:
        return format_currency(value, code, locale=locale or settings.DEFAULT_LOCALE)
    except (UnknownLocaleError, ValueError):
        logger.warning(f"Unknown locale '{locale}', falling back to '{settings.DEFAULT_LOCALE}'.")
        return format_currency(value, code, locale=settings.DEFAULT_LOCALE)


def convert_and_format(
    base_amount,
    rates: Optional[Mapping[str, float]],
    currency: Optional[str],
    base: str = DEFAULT_BASE_CURRENCY,
    locale: Optional[str] = None,
) -> str:
    code = safe_currency(currency, base)
    return format_money(convert(base_amount, rates, code, base), code, locale)

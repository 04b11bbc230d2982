# storefront/services/totals.py

from dataclasses import dataclass
from typing import Callable, Iterable

from storefront.core.config import settings
from storefront.schemas.cart import CartTotals, CouponApplied, DisplayAmount, DisplayTotals, OrderLine
from storefront.services.money import convert, format_money, safe_currency


@dataclass(frozen=True)
class ShippingTax:
    shipping: float
    tax: float


# Политика доставки и налога: (subtotal) -> ShippingTax
PricingPolicy = Callable[[float], ShippingTax]


def flat_policy(tax_flat: float, shipping: float = 0.0) -> PricingPolicy:
    """Фиксированный налог (только для непустой корзины) и фиксированная доставка."""
    def policy(subtotal: float) -> ShippingTax:
        return ShippingTax(shipping=shipping, tax=tax_flat if subtotal > 0 else 0.0)
    return policy


def default_policy() -> PricingPolicy:
    return flat_policy(settings.TAX_FLAT_BASE, settings.SHIPPING_BASE)


def compute_totals(lines: Iterable[OrderLine], coupon, policy: PricingPolicy) -> CartTotals:
    """
    Итоги корзины как чистая функция от (позиции, промокод).
    Скидку дает только примененный промокод; итог никогда не бывает отрицательным.
    """
    subtotal = sum(line.unit_price_base * line.qty for line in lines)
    discount = coupon.discount_base if isinstance(coupon, CouponApplied) else 0.0
    charges = policy(subtotal)
    total = max(0.0, subtotal - discount + charges.shipping + charges.tax)
    return CartTotals(
        subtotal_base=subtotal,
        discount_base=discount,
        shipping_base=charges.shipping,
        tax_base=charges.tax,
        total_base=total,
    )


def display_totals(totals: CartTotals, currency: str | None = None, locale: str | None = None) -> DisplayTotals:
    """Пересчет итогов в валюту отображения; только для вывода, в корзине не хранится."""
    code = safe_currency(currency, settings.BASE_CURRENCY)

    def amount(value: float) -> DisplayAmount:
        converted = convert(value, settings.FX_RATES, code, settings.BASE_CURRENCY)
        return DisplayAmount(amount=round(converted, 2), display=format_money(converted, code, locale))

    return DisplayTotals(
        currency=code,
        subtotal=amount(totals.subtotal_base),
        discount=amount(totals.discount_base),
        shipping=amount(totals.shipping_base),
        tax=amount(totals.tax_base),
        total=amount(totals.total_base),
    )

# storefront/services/pricing.py

import logging
from typing import Dict, List, Mapping, Optional

from storefront.schemas.product import PriceInfo, PriceQuote, RawProduct, VariantAttribute

logger = logging.getLogger(__name__)

VARIANT_SEPARATOR = "|"

# Порядок отображения атрибутов по умолчанию; неизвестные ключи идут в конец
DEFAULT_ORDER = [
    "color", "size", "memory", "storage", "carrier", "band", "caseSize",
    "kit", "bundle", "length", "refresh", "connectivity", "pack",
]
_UNKNOWN_ORDER = 999

KNOWN_LABELS = {
    "color": "Color", "size": "Size", "memory": "Memory", "storage": "Storage",
    "carrier": "Carrier", "band": "Band", "caseSize": "Case Size", "kit": "Kit",
    "bundle": "Bundle", "length": "Length", "refresh": "Refresh Rate",
    "connectivity": "Connectivity", "pack": "Pack Size",
}


class MissingSelectionError(Exception):
    """Попытка положить товар в корзину без выбора обязательных опций."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required selection: {', '.join(self.missing)}")


def label_of(key: str) -> str:
    if not key:
        return ""
    return KNOWN_LABELS.get(key, key[0].upper() + key[1:])


def _sort_key(attribute: VariantAttribute) -> int:
    if attribute.ui_order is not None:
        return attribute.ui_order
    if attribute.key in DEFAULT_ORDER:
        return DEFAULT_ORDER.index(attribute.key)
    return _UNKNOWN_ORDER


def derive_attributes(product: RawProduct) -> List[VariantAttribute]:
    """
    Собирает список выбираемых атрибутов товара.
    Сначала явные `attributes` из каталога, затем старые "плоские" списки
    (colors / size / memory / storage). Сортировка стабильная.
    """
    attributes = []
    for attr in product.attributes:
        attributes.append(attr.model_copy(update={
            "label": attr.label or label_of(attr.key),
            "kind": attr.kind or ("swatch" if attr.key == "color" else "select"),
        }))

    if product.colors:
        attributes.append(VariantAttribute(key="color", label="Color", kind="swatch", values=product.colors))
    for key in ("size", "memory", "storage"):
        values = getattr(product, key)
        if values:
            attributes.append(VariantAttribute(key=key, label=label_of(key), kind="select", values=values, required=True))

    return sorted(attributes, key=_sort_key)


def initial_selection(attributes: List[VariantAttribute]) -> Dict[str, str]:
    """Стартовый выбор: swatch и обязательные select -> первое значение, остальные пустые."""
    selection = {}
    for attr in attributes:
        if attr.kind == "swatch" or attr.required:
            selection[attr.key] = attr.values[0] if attr.values else ""
        else:
            selection[attr.key] = ""
    return selection


def variant_key(selection: Mapping[str, str]) -> str:
    """
    Каноническая строка выбранных опций: "key=value" через "|".
    Порядок пар - порядок ключей в selection, поэтому одно и то же место
    вызова всегда дает один и тот же ключ.
    """
    return VARIANT_SEPARATOR.join(
        f"{key}={value}" for key, value in selection.items() if value is not None and value != ""
    )


def missing_required(attributes: List[VariantAttribute], selection: Mapping[str, str]) -> List[str]:
    return [attr.key for attr in attributes if attr.required and not selection.get(attr.key)]


def base_price_of(product: RawProduct) -> float:
    price_info = product.price if isinstance(product.price, PriceInfo) else None
    for candidate in (
        product.base_price,
        price_info.current if price_info else None,
        product.price if isinstance(product.price, float) else None,
        product.unit_price,
    ):
        if candidate is not None:
            return candidate
    return 0.0


def compare_price_of(product: RawProduct) -> Optional[float]:
    price_info = product.price if isinstance(product.price, PriceInfo) else None
    old = product.old_price if product.old_price is not None else (price_info.old if price_info else None)
    return old if old is not None and old > 0 else None


def price_for(product: RawProduct, selection: Mapping[str, str]) -> PriceQuote:
    """
    Цена единицы товара с учетом выбранных опций:
    базовая цена + сумма надбавок adjustments[key][value] по всем непустым выборам.
    Отсутствующая надбавка считается нулевой. Чистая функция.
    """
    unit_price = base_price_of(product)
    for key, value in selection.items():
        if not value:
            continue
        unit_price += product.adjustments.get(key, {}).get(value, 0.0)
    # Отрицательные надбавки не уводят цену ниже нуля (как и при добавлении в корзину)
    unit_price = max(0.0, unit_price)

    compare_price = compare_price_of(product)
    discount_percent = None
    if compare_price is not None and compare_price > unit_price:
        discount_percent = round((compare_price - unit_price) / compare_price * 100)
        # Округление может дать 0 при мизерной разнице; нулевой скидки не показываем
        if discount_percent <= 0:
            discount_percent = None

    return PriceQuote(
        unit_price_base=unit_price,
        compare_price_base=compare_price,
        discount_percent=discount_percent,
    )

# storefront/services/lines.py

import logging
import uuid
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from storefront.schemas.cart import OrderLine, PartialLine, PersistedLine
from storefront.schemas.product import PriceInfo, RawProduct

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "/uploads/placeholder.png"
DEFAULT_TITLE = "Untitled"

NormalizableInput = Union[RawProduct, PersistedLine, PartialLine, OrderLine, Dict[str, Any]]


def _first(*values):
    """Первое значение, которое не None и не пустая строка."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _price(value: Optional[float]) -> float:
    # Схемы уже отбросили нечисловые значения; отрицательная цена в корзине не имеет смысла
    if value is None or value < 0:
        return 0.0
    return float(value)


def _compare_at(value: Optional[float]) -> Optional[float]:
    if value is None or value <= 0:
        return None
    return float(value)


def _stock(value: Optional[int]) -> Optional[int]:
    return value if value is not None and value > 0 else None


def clamp_qty(qty, max_qty: Optional[int] = None) -> int:
    """qty >= 1 всегда; сверху ограничиваем остатком, если он известен."""
    try:
        value = int(qty)
    except (TypeError, ValueError, OverflowError):
        value = 1
    if max_qty is not None:
        value = min(value, max_qty)
    return max(1, value)


def price_token(price: float) -> str:
    """Кратчайшая запись цены: 10 вместо 10.0, 10.5 остается 10.5."""
    text = repr(float(price))
    return text[:-2] if text.endswith(".0") else text


def make_line_id(product_id: str, variant_key: str, unit_price_base: float) -> str:
    """Детерминированный идентификатор позиции по тройке (товар, вариант, цена)."""
    return f"line:{product_id}|{variant_key}|{price_token(unit_price_base)}"


def new_product_id() -> str:
    return uuid.uuid4().hex


def _from_product(raw: RawProduct) -> dict:
    price_info = raw.price if isinstance(raw.price, PriceInfo) else None
    flat_price = raw.price if isinstance(raw.price, float) else None
    variant = raw.variant
    return {
        "product_id": _first(raw.mongo_id, raw.id, raw.sku, raw.slug),
        "variant_key": _first(raw.variant_key, variant.id if variant else None, variant.sku if variant else None),
        "title": _first(raw.title, raw.name),
        "image": _first(raw.image, raw.img, raw.images[0] if raw.images else None),
        "price": _first(raw.base_price, price_info.current if price_info else None, flat_price, raw.unit_price),
        "compare_at": _first(price_info.old if price_info else None, raw.old_price),
        "qty": None,
        "stock": raw.stock,
    }


def _from_persisted(raw: PersistedLine) -> dict:
    return {
        "product_id": raw.product_id,
        "variant_key": raw.variant_key,
        "title": raw.title,
        "image": _first(raw.image, raw.images[0] if raw.images else None),
        "price": raw.price_base,
        "compare_at": raw.compare_at_base,
        "qty": raw.qty,
        "stock": raw.stock,
    }


def _from_partial(raw: PartialLine) -> dict:
    return {
        "product_id": raw.product_id,
        "variant_key": raw.variant_key,
        "title": raw.title,
        "image": raw.image,
        "price": raw.unit_price,
        "compare_at": raw.compare_at_price,
        "qty": raw.qty,
        "stock": raw.stock,
    }


def _from_line(raw: OrderLine) -> dict:
    return {
        "product_id": raw.product_id,
        "variant_key": raw.variant_key,
        "title": raw.title,
        "image": raw.image,
        "price": raw.unit_price_base,
        "compare_at": raw.compare_at_price_base,
        "qty": raw.qty,
        "stock": raw.max_qty,
    }


_SHAPES_BY_KIND = {"product": RawProduct, "partial": PartialLine, "persisted": PersistedLine}


def parse_line_input(raw: Dict[str, Any]) -> Union[RawProduct, PersistedLine, PartialLine]:
    """
    Разбирает "сырой" словарь по полю `kind`; без него считаем это сохраненной позицией.
    Если словарь не проходит валидацию, получаем пустую позицию, а не исключение.
    """
    model = _SHAPES_BY_KIND.get(raw.get("kind"), PersistedLine)
    data = raw if model is not PersistedLine else {k: v for k, v in raw.items() if k != "kind"}
    try:
        return model.model_validate(data)
    except ValidationError:
        logger.warning(f"Cart line input failed validation, using defaults: {raw!r}", exc_info=True)
        return PersistedLine()


def normalize(raw: NormalizableInput, qty: Optional[int] = None) -> OrderLine:
    """
    Приводит любую из известных входных форм к канонической позиции корзины.

    Не бросает исключений: отсутствующие поля заменяются значениями по умолчанию
    (цена 0, "Untitled", картинка-заглушка, qty 1). Для товара без идентификатора
    генерируется случайный product_id, который дальше живет вместе с позицией.
    Идемпотентна: normalize(normalize(x)) == normalize(x).

    `qty`, если передан, имеет приоритет над количеством из самого входа.
    """
    if isinstance(raw, dict):
        raw = parse_line_input(raw)

    if isinstance(raw, OrderLine):
        fields = _from_line(raw)
    elif isinstance(raw, RawProduct):
        fields = _from_product(raw)
    elif isinstance(raw, PersistedLine):
        fields = _from_persisted(raw)
    elif isinstance(raw, PartialLine):
        fields = _from_partial(raw)
    else:
        raise TypeError(f"Unsupported cart line input: {type(raw).__name__}")

    product_id = str(fields["product_id"] or new_product_id())
    variant_key = str(fields["variant_key"] or "")
    unit_price_base = _price(fields["price"])
    if fields["price"] is None or fields["price"] < 0:
        logger.warning(f"Cart line for product {product_id} has no usable price ({fields['price']!r}), using 0.")
    max_qty = _stock(fields["stock"])
    requested = qty if qty is not None else fields["qty"]

    return OrderLine(
        line_id=make_line_id(product_id, variant_key, unit_price_base),
        product_id=product_id,
        variant_key=variant_key,
        title=str(fields["title"] or DEFAULT_TITLE),
        image=str(fields["image"] or PLACEHOLDER_IMAGE),
        unit_price_base=unit_price_base,
        compare_at_price_base=_compare_at(fields["compare_at"]),
        qty=clamp_qty(requested if requested is not None else 1, max_qty),
        max_qty=max_qty,
    )

# storefront/schemas/product.py
import math
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Literal, Optional, Union


def coerce_finite(v):
    """Приводит значение к float; всё, что не является конечным числом, превращается в None."""
    if v is None or isinstance(v, bool):
        return None
    try:
        number = float(v)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class VariantAttribute(BaseModel):
    """Одно выбираемое измерение товара (цвет, объем памяти и т.д.)."""
    key: str
    label: str = ""
    kind: Optional[Literal["swatch", "select"]] = None
    values: List[str] = []
    required: bool = False
    ui_order: Optional[int] = Field(None, validation_alias=AliasChoices("ui_order", "uiOrder"))

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('values', mode='before')
    @classmethod
    def validate_values_to_str(cls, v):
        # Каталог иногда отдает числа ("64" и 64), приводим всё к строкам
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item is not None]


class PriceInfo(BaseModel):
    """Вложенная цена каталога: { current, old }."""
    current: Optional[float] = None
    old: Optional[float] = None

    @field_validator('current', 'old', mode='before')
    @classmethod
    def validate_numbers(cls, v):
        return coerce_finite(v)


class VariantRef(BaseModel):
    id: Optional[str] = None
    sku: Optional[str] = None

    @field_validator('id', 'sku', mode='before')
    @classmethod
    def validate_to_str(cls, v):
        if v is None or v == "":
            return None
        return str(v)


class RawProduct(BaseModel):
    """
    Товар в том виде, в каком его отдает каталог.
    Почти все поля необязательны: корзина и расчет цены должны работать
    даже на "обрезанных" данных.
    """
    kind: Literal["product"] = "product"

    id: Optional[str] = None
    mongo_id: Optional[str] = Field(None, validation_alias=AliasChoices("_id", "mongo_id"))
    sku: Optional[str] = None
    slug: Optional[str] = None

    title: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None
    img: Optional[str] = None
    images: List[str] = []

    base_price: Optional[float] = Field(
        None, validation_alias=AliasChoices("base_price", "basePrice", "price_base", "priceBase")
    )
    price: Union[PriceInfo, float, None] = None
    unit_price: Optional[float] = Field(None, validation_alias=AliasChoices("unit_price", "unitPrice"))
    old_price: Optional[float] = Field(None, validation_alias=AliasChoices("old_price", "oldPrice"))

    attributes: List[VariantAttribute] = []
    adjustments: Dict[str, Dict[str, float]] = {}

    # Устаревший "плоский" формат атрибутов
    colors: List[str] = []
    size: List[str] = []
    memory: List[str] = []
    storage: List[str] = []

    stock: Optional[int] = None
    variant_key: Optional[str] = Field(None, validation_alias=AliasChoices("variant_key", "variantKey"))
    variant: Optional[VariantRef] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator('id', 'mongo_id', 'sku', 'slug', mode='before')
    @classmethod
    def validate_ids_to_str(cls, v):
        if v is None or v == "":
            return None
        return str(v)

    @field_validator('base_price', 'unit_price', 'old_price', mode='before')
    @classmethod
    def validate_prices(cls, v):
        return coerce_finite(v)

    @field_validator('price', mode='before')
    @classmethod
    def validate_price(cls, v):
        if isinstance(v, (dict, PriceInfo)):
            return v
        return coerce_finite(v)

    @field_validator('images', 'colors', 'size', 'memory', 'storage', mode='before')
    @classmethod
    def validate_str_lists(cls, v):
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item not in (None, "")]

    @field_validator('adjustments', mode='before')
    @classmethod
    def validate_adjustments(cls, v):
        # Нечисловые надбавки отбрасываем, отрицательные допускаются
        if not isinstance(v, dict):
            return {}
        cleaned = {}
        for attr_key, table in v.items():
            if not isinstance(table, dict):
                continue
            cleaned[str(attr_key)] = {
                str(value): number
                for value, delta in table.items()
                if (number := coerce_finite(delta)) is not None
            }
        return cleaned

    @field_validator('stock', mode='before')
    @classmethod
    def validate_stock(cls, v):
        number = coerce_finite(v)
        return int(number) if number is not None else None

    @field_validator('variant', mode='before')
    @classmethod
    def validate_variant(cls, v):
        return v if isinstance(v, (dict, VariantRef)) else None


class PriceQuote(BaseModel):
    """Итоговая цена единицы товара для выбранных опций."""
    unit_price_base: float
    compare_price_base: Optional[float] = None
    discount_percent: Optional[int] = None

    model_config = ConfigDict(frozen=True)


# --- Схемы для эндпоинта предпросмотра цены ---

class QuoteRequest(BaseModel):
    product: RawProduct
    selection: Optional[Dict[str, str]] = None
    currency: Optional[str] = None


class QuoteResponse(BaseModel):
    attributes: List[VariantAttribute]
    selection: Dict[str, str]
    variant_key: str
    quote: PriceQuote
    price_display: str
    compare_price_display: Optional[str] = None
    missing_required: List[str] = []

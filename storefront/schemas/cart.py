# storefront/schemas/cart.py
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from .product import RawProduct, coerce_finite


# --- Входные формы позиции корзины ---

class PersistedLine(BaseModel):
    """
    Позиция, сохраненная ранее (в Redis или в браузере).
    Принимает и старые camelCase-ключи (priceBase, compareAtBase, quantity ...).
    """
    kind: Literal["persisted"] = "persisted"

    line_id: Optional[str] = Field(None, validation_alias=AliasChoices("line_id", "lineId"))
    product_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("product_id", "productId", "_id", "id", "pid", "sku", "slug")
    )
    variant_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("variant_key", "variantKey", "variant_id", "variantId")
    )
    title: Optional[str] = Field(None, validation_alias=AliasChoices("title", "name"))
    image: Optional[str] = Field(None, validation_alias=AliasChoices("image", "img"))
    images: List[str] = []
    price_base: Optional[float] = Field(
        None, validation_alias=AliasChoices("unit_price_base", "price_base", "priceBase", "price", "unitPrice")
    )
    compare_at_base: Optional[float] = Field(
        None, validation_alias=AliasChoices("compare_at_price_base", "compare_at_base", "compareAtBase")
    )
    qty: Optional[int] = Field(None, validation_alias=AliasChoices("qty", "quantity"))
    stock: Optional[int] = Field(None, validation_alias=AliasChoices("max_qty", "stock"))

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode='before')
    @classmethod
    def fill_compare_at_from_nested_price(cls, data):
        # Старая цена из { current, old }, если явного поля нет
        if not isinstance(data, dict):
            return data
        explicit = ("compare_at_price_base", "compare_at_base", "compareAtBase")
        price = data.get("price")
        if isinstance(price, dict) and all(data.get(key) is None for key in explicit):
            data = {**data, "compare_at_base": price.get("old")}
        return data

    @field_validator('line_id', 'product_id', 'variant_key', 'title', 'image', mode='before')
    @classmethod
    def validate_to_str(cls, v):
        if v is None or isinstance(v, (dict, list)):
            return None
        return str(v)

    @field_validator('images', mode='before')
    @classmethod
    def validate_images(cls, v):
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item not in (None, "")]

    @field_validator('price_base', mode='before')
    @classmethod
    def validate_price_base(cls, v):
        # Старые записи могли хранить цену как { base } или { current, old }
        if isinstance(v, dict):
            v = v.get("base", v.get("current"))
        return coerce_finite(v)

    @field_validator('compare_at_base', mode='before')
    @classmethod
    def validate_compare_at(cls, v):
        return coerce_finite(v)

    @field_validator('qty', 'stock', mode='before')
    @classmethod
    def validate_ints(cls, v):
        number = coerce_finite(v)
        return int(number) if number is not None else None


class PartialLine(BaseModel):
    """Минимальный набор полей, которого достаточно, чтобы положить товар в корзину."""
    kind: Literal["partial"] = "partial"

    product_id: Optional[str] = None
    variant_key: Optional[str] = None
    title: Optional[str] = None
    image: Optional[str] = None
    unit_price: Optional[float] = Field(None, validation_alias=AliasChoices("unit_price", "price"))
    compare_at_price: Optional[float] = None
    qty: Optional[int] = None
    stock: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator('product_id', 'variant_key', mode='before')
    @classmethod
    def validate_to_str(cls, v):
        if v is None:
            return None
        return str(v)

    @field_validator('unit_price', 'compare_at_price', mode='before')
    @classmethod
    def validate_prices(cls, v):
        return coerce_finite(v)

    @field_validator('qty', 'stock', mode='before')
    @classmethod
    def validate_ints(cls, v):
        number = coerce_finite(v)
        return int(number) if number is not None else None


LineInput = Annotated[Union[RawProduct, PersistedLine, PartialLine], Field(discriminator="kind")]


# --- Каноническая позиция корзины ---

class OrderLine(BaseModel):
    line_id: str
    product_id: str
    variant_key: str = ""
    title: str
    image: str
    unit_price_base: float = Field(ge=0)
    compare_at_price_base: Optional[float] = None
    qty: int = Field(ge=1)
    # Остаток на складе, если известен: верхняя граница для qty
    max_qty: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def line_subtotal_base(self) -> float:
        return self.unit_price_base * self.qty


# --- Состояния промокода (один слот на корзину) ---

class CouponNone(BaseModel):
    status: Literal["none"] = "none"

    model_config = ConfigDict(frozen=True)


class CouponPending(BaseModel):
    status: Literal["pending"] = "pending"
    code: str

    model_config = ConfigDict(frozen=True)


class CouponApplied(BaseModel):
    status: Literal["applied"] = "applied"
    code: str
    discount_base: float = Field(0.0, ge=0)
    meta: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True)


class CouponInvalid(BaseModel):
    status: Literal["invalid"] = "invalid"
    code: str
    reason: str

    model_config = ConfigDict(frozen=True)


CouponState = Annotated[
    Union[CouponNone, CouponPending, CouponApplied, CouponInvalid],
    Field(discriminator="status"),
]


# --- Итоги ---

class CartTotals(BaseModel):
    subtotal_base: float
    discount_base: float
    shipping_base: float
    tax_base: float
    total_base: float

    model_config = ConfigDict(frozen=True)


class DisplayAmount(BaseModel):
    amount: float
    display: str


class DisplayTotals(BaseModel):
    """Итоги, пересчитанные в валюту отображения."""
    currency: str
    subtotal: DisplayAmount
    discount: DisplayAmount
    shipping: DisplayAmount
    tax: DisplayAmount
    total: DisplayAmount


# --- Снимок для сохранения/восстановления ---

class CartSnapshot(BaseModel):
    # items и coupon намеренно "сырые": разбором старых форматов занимается hydrate
    items: List[Any] = []
    coupon: Any = None
    updated_at: Optional[int] = Field(None, validation_alias=AliasChoices("updated_at", "updatedAt"))

    model_config = ConfigDict(populate_by_name=True)


# --- Схемы запросов ---

class AddLineRequest(BaseModel):
    item: LineInput
    qty: int = 1


class CommitSelectionRequest(BaseModel):
    product: RawProduct
    selection: Dict[str, str] = {}
    qty: int = 1


class SetQtyRequest(BaseModel):
    qty: int


class ApplyCouponRequest(BaseModel):
    code: str = ""


# --- Схемы ответов ---

class CartStatusNotification(BaseModel):
    level: str  # e.g., "success", "warning", "error"
    message: str


class CartResponse(BaseModel):
    session_id: str
    lines: List[OrderLine]
    count: int
    coupon: CouponState
    totals: CartTotals
    display: DisplayTotals
    revision: int
    updated_at: int
    notifications: List[CartStatusNotification] = []

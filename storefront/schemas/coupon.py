# storefront/schemas/coupon.py

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional

from .product import coerce_finite


class CouponLine(BaseModel):
    """
    Упрощенная структура товарной позиции, необходимая для
    валидации купона на стороне бэкенда.
    """
    product_id: str = Field(serialization_alias="productId")
    qty: int
    price_base: float = Field(serialization_alias="priceBase")


class CouponValidateRequest(BaseModel):
    """
    Схема для тела запроса на эндпоинт валидации купона.
    """
    code: str
    lines: List[CouponLine]


class CouponValidationResult(BaseModel):
    """
    Ответ эндпоинта валидации: либо ok=True и сумма скидки,
    либо ok=False и код причины (EXPIRED, NOT_FOUND, HTTP_FAIL, NETWORK ...).
    """
    ok: bool = False
    discount_base: float = Field(0.0, validation_alias=AliasChoices("discount_base", "discountBase"))
    reason: Optional[str] = None
    coupon: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('discount_base', mode='before')
    @classmethod
    def validate_discount(cls, v):
        # discountBase необязателен: null, мусор и бесконечности означают "скидки нет"
        number = coerce_finite(v)
        return max(0.0, number) if number is not None else 0.0

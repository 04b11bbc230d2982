# storefront/core/config.py

import json
from typing import Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Валюта и локаль
    BASE_CURRENCY: str = "USD"
    DEFAULT_LOCALE: str = "en_US"
    FX_RATES_JSON: str = Field(default='{"USD": 1, "EUR": 0.92, "PKR": 279}')

    # Это свойство будет автоматически парсить JSON в словарь
    FX_RATES: Dict[str, float] = Field(default={}, validate_default=True)

    # Политика налогов и доставки (в базовой валюте)
    TAX_FLAT_BASE: float = 61.99
    SHIPPING_BASE: float = 0.0

    # Бэкенд валидации промокодов
    COUPON_API_URL: str = "http://localhost:5000/api"
    COUPON_VALIDATE_PATH: str = "/coupons/validate"
    COUPON_API_TIMEOUT: float = 10.0

    # Redis (хранение корзин)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    CART_PERSIST_KEY: str = "clicon_cart_v1"
    CART_TTL_SECONDS: int = 60 * 60 * 24 * 30  # 30 дней
    # Корзины в памяти процесса: верхняя граница и время простоя до выгрузки
    CART_REGISTRY_MAX_STORES: int = 10000
    CART_REGISTRY_IDLE_SECONDS: int = 60 * 30

    # Лимиты
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    COUPON_RATE_LIMIT: str = "10/minute"

    CORS_ORIGINS_STR: str = Field(default="http://localhost:3000,http://localhost:5173")

    @property
    def CORS_ORIGINS(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS_STR.split(',') if origin.strip()]

    @field_validator("FX_RATES", mode="before")
    def parse_fx_rates(cls, v, values):
        # values.data - содержит все поля, объявленные выше, включая FX_RATES_JSON
        json_str = values.data.get("FX_RATES_JSON")
        if json_str:
            return json.loads(json_str)
        return v

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()

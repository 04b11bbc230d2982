# storefront/clients/coupon_api.py

import httpx
from storefront.core.config import settings
import logging

logger = logging.getLogger(__name__)

class CouponApiClient:
    """
    Асинхронный клиент для эндпоинта валидации промокодов.
    Ответ не разбирается здесь: статус и тело интерпретирует сервис промокодов.
    """
    def __init__(self, base_url: str, validate_path: str, timeout: float):
        self.base_url = base_url.rstrip("/")
        self.validate_path = validate_path
        timeouts = httpx.Timeout(timeout, connect=min(timeout, 5.0))
        self.async_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeouts,
            headers={"Accept": "application/json"},
        )

    async def post(self, endpoint: str, json: dict) -> httpx.Response:
        """
        Выполняет POST-запрос и возвращает Response как есть (в том числе 4xx/5xx).
        В случае сетевой ошибки выбрасывает httpx.RequestError.
        """
        try:
            return await self.async_client.post(endpoint, json=json)
        except httpx.RequestError as e:
            logger.error(f"Network error during POST request to {self.base_url}{endpoint}: {e!r}", exc_info=True)
            raise

    async def validate(self, payload: dict) -> httpx.Response:
        return await self.post(self.validate_path, json=payload)

    async def aclose(self):
        await self.async_client.aclose()

# Создаем синглтон
coupon_api_client = CouponApiClient(
    base_url=settings.COUPON_API_URL,
    validate_path=settings.COUPON_VALIDATE_PATH,
    timeout=settings.COUPON_API_TIMEOUT,
)

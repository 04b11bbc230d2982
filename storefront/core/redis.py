# storefront/core/redis.py
import redis.asyncio as redis
from storefront.core.config import settings

# Создаем асинхронный клиент Redis (подключение ленивое, при первом запросе)
# decode_responses=True автоматически декодирует ответы из байтов в строки
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

# storefront/services/storage.py

import asyncio
import logging
from typing import Optional, Set

from pydantic import ValidationError
from redis.asyncio import Redis

from storefront.core.config import settings
from storefront.schemas.cart import CartSnapshot

logger = logging.getLogger(__name__)


class CartStorage:
    """
    Сохранение снимков корзины в Redis.
    Любая ошибка хранилища логируется и проглатывается: корзина продолжает
    работать в памяти.
    """

    def __init__(self, redis: Redis, key_prefix: str = settings.CART_PERSIST_KEY, ttl: int = settings.CART_TTL_SECONDS):
        self.redis = redis
        self.key_prefix = key_prefix
        self.ttl = ttl
        # Ссылки на фоновые задачи, чтобы их не собрал GC до завершения
        self._pending: Set[asyncio.Task] = set()

    def key_for(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    async def load(self, session_id: str) -> Optional[CartSnapshot]:
        try:
            raw = await self.redis.get(self.key_for(session_id))
        except Exception:
            logger.error(f"Failed to load cart snapshot for session {session_id}.", exc_info=True)
            return None
        if not raw:
            return None
        try:
            return CartSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Stored cart snapshot for session {session_id} is corrupted. Ignoring it.", exc_info=True)
            return None

    async def save(self, session_id: str, snapshot: CartSnapshot) -> bool:
        try:
            await self.redis.set(self.key_for(session_id), snapshot.model_dump_json(), ex=self.ttl)
            return True
        except Exception:
            # Не выбрасываем исключение: ошибка записи не должна становиться ошибкой корзины
            logger.error(f"Failed to persist cart snapshot for session {session_id}.", exc_info=True)
            return False

    def schedule_save(self, session_id: str, snapshot: CartSnapshot) -> Optional[asyncio.Task]:
        """Запись "выстрелил и забыл". Вне event loop запись пропускается."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, skipping persistence for session {session_id}.")
            return None
        task = loop.create_task(self.save(session_id, snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Дожидается незавершенных фоновых записей (используется при остановке)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

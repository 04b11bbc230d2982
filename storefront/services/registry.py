# storefront/services/registry.py

import logging
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, Optional

from storefront.core.config import settings
from storefront.services.cart import CartStore
from storefront.services.storage import CartStorage
from storefront.services.totals import PricingPolicy

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return uuid.uuid4().hex


class CartRegistry:
    """
    Владелец всех корзин процесса: одна CartStore на сессию корзины.
    При первом обращении корзина восстанавливается из хранилища, дальше
    каждое изменение сохраняется в фоне.

    В памяти держим ограниченное число корзин: давно не использованные
    выгружаются (LRU + время простоя). Снимок в Redis при этом остается,
    и следующий запрос той же сессии восстановит корзину из него.
    """

    def __init__(
        self,
        storage: Optional[CartStorage] = None,
        policy: Optional[PricingPolicy] = None,
        max_stores: int = settings.CART_REGISTRY_MAX_STORES,
        idle_seconds: float = settings.CART_REGISTRY_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.storage = storage
        self.policy = policy
        self.max_stores = max(1, max_stores)
        self.idle_seconds = idle_seconds
        self._clock = clock
        # session_id -> store, от самой давно использованной к самой свежей
        self._stores: "OrderedDict[str, CartStore]" = OrderedDict()
        self._last_seen: Dict[str, float] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    def _mark_used(self, session_id: str):
        self._stores.move_to_end(session_id)
        self._last_seen[session_id] = self._clock()

    def _evict(self):
        now = self._clock()
        while self._stores:
            oldest = next(iter(self._stores))
            idle = now - self._last_seen.get(oldest, now)
            if len(self._stores) <= self.max_stores and idle <= self.idle_seconds:
                break
            self.drop(oldest)
            logger.debug(f"Evicted cart for session {oldest} from memory (idle {idle:.0f}s).")

    async def get(self, session_id: str) -> CartStore:
        store = self._stores.get(session_id)
        if store is not None:
            self._mark_used(session_id)
            self._evict()
            return store

        store = CartStore(session_id=session_id, policy=self.policy)
        if self.storage is not None:
            snapshot = await self.storage.load(session_id)
            if snapshot is not None:
                store.hydrate(snapshot)
                logger.info(f"Cart for session {session_id} restored with {len(store.lines)} lines.")

        # Пока ждали хранилище, корзину мог создать параллельный запрос
        existing = self._stores.get(session_id)
        if existing is not None:
            self._mark_used(session_id)
            return existing

        if self.storage is not None:
            store.subscribe(self._persist)
        self._stores[session_id] = store
        self._mark_used(session_id)
        self._evict()
        return store

    def _persist(self, store: CartStore):
        self.storage.schedule_save(store.session_id, store.serialize())

    def drop(self, session_id: str):
        self._stores.pop(session_id, None)
        self._last_seen.pop(session_id, None)

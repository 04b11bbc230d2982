# storefront/services/cart.py

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from storefront.schemas.cart import (
    CartResponse, CartSnapshot, CartStatusNotification, CartTotals, CouponApplied, CouponInvalid,
    CouponNone, CouponPending, CouponState, OrderLine, PartialLine, PersistedLine,
)
from storefront.schemas.coupon import CouponLine, CouponValidationResult
from storefront.schemas.product import RawProduct, coerce_finite
from storefront.services.lines import NormalizableInput, clamp_qty, normalize
from storefront.services.pricing import (
    MissingSelectionError, derive_attributes, missing_required, price_for, variant_key,
)
from storefront.services.totals import PricingPolicy, compute_totals, default_policy, display_totals

logger = logging.getLogger(__name__)

CouponValidator = Callable[[str, List[CouponLine]], Awaitable[CouponValidationResult]]
ChangeListener = Callable[["CartStore"], None]

_coupon_adapter = TypeAdapter(CouponState)


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_code(code: Any) -> str:
    return str(code or "").strip().upper()


def restore_coupon(raw: Any) -> CouponState:
    """
    Восстанавливает слот промокода из сохраненного состояния.

    Поддерживает:
    - текущий формат (объект со `status`);
    - старый формат "голой" строки -> applied(code, 0);
    - старый объект {code, discountBase, invalid, reason, pending}.
    Сохраненный pending не может завершиться (запроса уже нет), поэтому он
    тоже превращается в applied(code, 0) до повторной проверки.
    """
    if isinstance(raw, (CouponNone, CouponApplied, CouponInvalid)):
        return raw
    if isinstance(raw, CouponPending):
        return CouponApplied(code=raw.code, discount_base=0.0)
    if raw is None or raw == "":
        return CouponNone()
    if isinstance(raw, str):
        code = normalize_code(raw)
        return CouponApplied(code=code, discount_base=0.0) if code else CouponNone()
    if not isinstance(raw, dict):
        logger.warning(f"Ignoring persisted coupon of unsupported type {type(raw).__name__}.")
        return CouponNone()

    if "status" in raw:
        try:
            state = _coupon_adapter.validate_python(raw)
        except ValidationError:
            logger.warning(f"Failed to validate persisted coupon state: {raw!r}", exc_info=True)
            return CouponNone()
        return restore_coupon(state)

    code = normalize_code(raw.get("code"))
    if not code:
        return CouponNone()
    if raw.get("invalid"):
        return CouponInvalid(code=code, reason=str(raw.get("reason") or "INVALID"))
    if raw.get("pending"):
        return CouponApplied(code=code, discount_base=0.0)
    discount = coerce_finite(raw.get("discountBase", raw.get("discount_base")))
    meta = raw.get("meta")
    return CouponApplied(
        code=code,
        discount_base=max(0.0, discount or 0.0),
        meta=meta if isinstance(meta, dict) else None,
    )


def _restore_line(raw: Any) -> Optional[OrderLine]:
    if isinstance(raw, (OrderLine, PersistedLine)):
        return normalize(raw)
    if not isinstance(raw, dict):
        logger.warning(f"Skipping persisted cart line of unsupported type {type(raw).__name__}.")
        return None
    data = {k: v for k, v in raw.items() if k != "kind"}
    try:
        return normalize(PersistedLine.model_validate(data))
    except ValidationError:
        logger.warning(f"Skipping persisted cart line that failed validation: {raw!r}", exc_info=True)
        return None


def _is_line_input(raw: Any) -> bool:
    return isinstance(raw, (RawProduct, PersistedLine, PartialLine, OrderLine, dict))


class CartStore:
    """
    Локальное (оптимистичное) состояние корзины: позиции + один слот промокода.

    Все изменения идут только через методы ниже. Методы изменения не бросают
    исключений: некорректный вход деградирует до безопасных значений по умолчанию,
    чтобы корзину всегда можно было отрисовать и посчитать итоги.
    """

    def __init__(self, session_id: str = "", policy: Optional[PricingPolicy] = None):
        self.session_id = session_id
        self._policy = policy or default_policy()
        self._lines: List[OrderLine] = []
        self._coupon: CouponState = CouponNone()
        self._revision = 0
        self._updated_at = 0
        # Поколение слота промокода: результат проверки применяется,
        # только если он относится к последнему выданному запросу
        self._coupon_generation = 0
        self._totals_cache: Optional[Tuple[int, CartTotals]] = None
        self._listeners: List[ChangeListener] = []

    # --- Чтение ---

    @property
    def lines(self) -> Tuple[OrderLine, ...]:
        return tuple(self._lines)

    @property
    def coupon(self) -> CouponState:
        return self._coupon

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def updated_at(self) -> int:
        return self._updated_at

    def get_line(self, line_id: str) -> Optional[OrderLine]:
        return next((line for line in self._lines if line.line_id == line_id), None)

    def count(self) -> int:
        return sum(line.qty for line in self._lines)

    def totals(self) -> CartTotals:
        """Итоги, мемоизированные по номеру ревизии; всегда равны compute_totals(lines, coupon)."""
        if self._totals_cache is None or self._totals_cache[0] != self._revision:
            self._totals_cache = (self._revision, compute_totals(self._lines, self._coupon, self._policy))
        return self._totals_cache[1]

    def coupon_lines(self) -> List[CouponLine]:
        return [
            CouponLine(product_id=line.product_id, qty=line.qty, price_base=line.unit_price_base)
            for line in self._lines
        ]

    # --- Подписка на изменения ---

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _touch(self, updated_at: Optional[int] = None):
        self._revision += 1
        self._updated_at = updated_at if updated_at is not None else _now_ms()
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                # Слушатель (например, сохранение) не должен ломать корзину
                logger.error(f"Cart change listener failed for session {self.session_id}.", exc_info=True)

    # --- Операции с позициями ---

    def _merge(self, line: OrderLine) -> OrderLine:
        for index, existing in enumerate(self._lines):
            if existing.line_id == line.line_id:
                max_qty = line.max_qty if line.max_qty is not None else existing.max_qty
                merged = existing.model_copy(update={
                    "qty": clamp_qty(existing.qty + line.qty, max_qty),
                    "max_qty": max_qty,
                })
                self._lines[index] = merged
                return merged
        self._lines.append(line)
        return line

    def add_line(self, raw: NormalizableInput, qty: int = 1) -> OrderLine:
        """
        Нормализует вход и либо увеличивает qty существующей позиции
        с той же тройкой (product_id, variant_key, unit_price_base), либо добавляет новую.
        """
        if not _is_line_input(raw):
            logger.warning(f"Unsupported cart line input {type(raw).__name__} in session {self.session_id}, using defaults.")
            raw = PersistedLine()
        line = self._merge(normalize(raw, qty))
        self._touch()
        return line

    def set_qty(self, line_id: str, qty: int) -> bool:
        """qty < 1 превращается в 1; для неизвестной позиции ничего не делает."""
        for index, existing in enumerate(self._lines):
            if existing.line_id == line_id:
                self._lines[index] = existing.model_copy(update={"qty": clamp_qty(qty, existing.max_qty)})
                self._touch()
                return True
        return False

    def remove_line(self, line_id: str) -> bool:
        remaining = [line for line in self._lines if line.line_id != line_id]
        if len(remaining) == len(self._lines):
            return False
        self._lines = remaining
        self._touch()
        return True

    def clear(self):
        self._lines = []
        self._set_coupon(CouponNone())

    def refresh(self):
        """Только сдвигает маркер изменения, чтобы подписчики пересчитали вид."""
        self._touch()

    # --- Промокод ---

    def _set_coupon(self, state: CouponState):
        self._coupon_generation += 1
        self._coupon = state
        self._touch()

    def clear_coupon(self):
        self._set_coupon(CouponNone())

    def begin_coupon(self, code: Any) -> Tuple[int, str]:
        """Переводит слот в pending(code) и возвращает номер поколения запроса."""
        normalized = normalize_code(code)
        self._set_coupon(CouponPending(code=normalized))
        return self._coupon_generation, normalized

    def resolve_coupon(self, generation: int, code: str, result: CouponValidationResult) -> bool:
        """
        Применяет ответ валидатора. Ответ на устаревший запрос (после него был
        выдан новый, либо слот очищен) отбрасывается.
        """
        if generation != self._coupon_generation:
            logger.info(
                f"Discarding stale coupon result for '{code}' "
                f"(generation {generation}, current {self._coupon_generation})."
            )
            return False

        if result.ok and result.discount_base > 0:
            state = CouponApplied(code=code, discount_base=result.discount_base, meta=result.coupon)
        else:
            state = CouponInvalid(code=code, reason=result.reason or "INVALID")
        self._coupon = state
        self._touch()
        return True

    async def apply_coupon(self, code: Any, validator: CouponValidator) -> CouponState:
        """
        Полный цикл проверки промокода: pending -> запрос к валидатору -> applied | invalid.
        Остальные операции с корзиной во время ожидания доступны.
        """
        normalized = normalize_code(code)
        if not normalized:
            self._set_coupon(CouponInvalid(code="", reason="EMPTY"))
            return self._coupon

        generation, normalized = self.begin_coupon(normalized)
        try:
            result = await validator(normalized, self.coupon_lines())
        except Exception:
            logger.error(f"Coupon validator raised for '{normalized}'. Treating as rejected.", exc_info=True)
            result = CouponValidationResult(ok=False, reason="REJECTED")

        self.resolve_coupon(generation, normalized, result)
        return self._coupon

    # --- Сохранение и восстановление ---

    def serialize(self) -> CartSnapshot:
        return CartSnapshot(
            items=[line.model_dump() for line in self._lines],
            coupon=self._coupon.model_dump(),
            updated_at=self._updated_at,
        )

    def hydrate(self, snapshot: Any) -> bool:
        """
        Заменяет позиции нормализованными сохраненными и восстанавливает промокод.
        Снимок, который не удалось разобрать, оставляет пустую корзину.
        """
        if isinstance(snapshot, CartSnapshot):
            parsed = snapshot
        else:
            try:
                parsed = CartSnapshot.model_validate(snapshot or {})
            except ValidationError:
                logger.warning(f"Failed to validate cart snapshot for session {self.session_id}.", exc_info=True)
                parsed = None

        self._lines = []
        if parsed is None:
            self._set_coupon(CouponNone())
            return False

        for raw in parsed.items:
            line = _restore_line(raw)
            if line is not None:
                self._merge(line)

        self._coupon_generation += 1
        self._coupon = restore_coupon(parsed.coupon)
        self._touch(parsed.updated_at or _now_ms())
        return True


def commit_selection(
    store: CartStore,
    product: RawProduct,
    selection: Dict[str, str],
    qty: int = 1,
) -> OrderLine:
    """
    Кладет товар с выбранными опциями в корзину.
    Если не выбран хотя бы один обязательный атрибут, бросает MissingSelectionError,
    корзина при этом не меняется.
    """
    missing = missing_required(derive_attributes(product), selection)
    if missing:
        raise MissingSelectionError(missing)

    quote = price_for(product, selection)
    priced = product.model_copy(update={
        "base_price": quote.unit_price_base,
        "variant_key": variant_key(selection),
    })
    return store.add_line(priced, qty)


def cart_view(
    store: CartStore,
    currency: Optional[str] = None,
    locale: Optional[str] = None,
    notifications: Optional[List[CartStatusNotification]] = None,
) -> CartResponse:
    """Собирает ответ API: позиции, промокод, итоги в базовой валюте и в валюте отображения."""
    totals = store.totals()
    return CartResponse(
        session_id=store.session_id,
        lines=list(store.lines),
        count=store.count(),
        coupon=store.coupon,
        totals=totals,
        display=display_totals(totals, currency, locale),
        revision=store.revision,
        updated_at=store.updated_at,
        notifications=notifications or [],
    )

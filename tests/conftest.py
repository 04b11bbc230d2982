# tests/conftest.py
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from storefront.core.limiter import limiter
from storefront.dependencies import get_coupon_validator
from storefront.main import app
from storefront.schemas.coupon import CouponValidationResult
from storefront.schemas.product import RawProduct
from storefront.services.cart import CartStore
from storefront.services.registry import CartRegistry
from storefront.services.totals import flat_policy

TAX_FLAT = 61.99
SESSION_ID = "test-session-0001"


@pytest.fixture
def store() -> CartStore:
    """Пустая корзина с демо-политикой: налог 61.99, доставка 0."""
    return CartStore(session_id=SESSION_ID, policy=flat_policy(TAX_FLAT, 0.0))


@pytest.fixture
def phone() -> RawProduct:
    """Смартфон с обязательным объемом памяти и надбавками за опции."""
    return RawProduct.model_validate({
        "_id": "p-phone",
        "title": "Phone X",
        "images": ["/img/phone-1.png", "/img/phone-2.png"],
        "price": {"current": 500, "old": 650},
        "attributes": [
            {"key": "storage", "values": ["64GB", "128GB", "256GB"], "required": True},
            {"key": "color", "values": ["black", "white"]},
        ],
        "adjustments": {
            "storage": {"64GB": 0, "128GB": 50, "256GB": 120},
            "color": {"white": 10},
        },
        "stock": 10,
    })


@pytest.fixture
def shirt() -> RawProduct:
    """Товар с обязательным размером в старом "плоском" формате."""
    return RawProduct.model_validate({
        "id": "p-shirt",
        "name": "Shirt",
        "price": 20,
        "size": ["S", "M", "L"],
    })


class FakeValidator:
    """Валидатор промокодов для тестов: отвечает заранее заданными результатами."""

    def __init__(self):
        self.results = {}
        self.calls = []

    async def __call__(self, code, lines):
        self.calls.append((code, lines))
        return self.results.get(code, CouponValidationResult(ok=False, reason="NOT_FOUND"))


@pytest.fixture
def fake_validator() -> FakeValidator:
    return FakeValidator()


@pytest_asyncio.fixture
async def client(fake_validator):
    """
    HTTP-клиент к приложению без Redis и без реального бэкенда промокодов.
    Lifespan не запускается, поэтому состояние приложения задаем вручную.
    """
    app.state.cart_registry = CartRegistry(storage=None)
    app.dependency_overrides[get_coupon_validator] = lambda: fake_validator
    limiter.enabled = False
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        limiter.enabled = True
        app.dependency_overrides.clear()


@pytest.fixture
def session_headers() -> dict:
    return {"X-Cart-Session": SESSION_ID}

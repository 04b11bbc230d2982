# tests/test_coupon.py

import asyncio
import json

import httpx
import pytest

from storefront.clients.coupon_api import CouponApiClient
from storefront.schemas.cart import CouponApplied, CouponInvalid, CouponNone, CouponPending, PartialLine
from storefront.schemas.coupon import CouponLine, CouponValidationResult
from storefront.services.coupon import REASON_HTTP_FAIL, REASON_NETWORK, make_validator, validate_coupon

SAVE10 = CouponValidationResult(ok=True, discount_base=10, coupon={"type": "fixed"})


def _fill(store):
    store.add_line(PartialLine(product_id="a", unit_price=40), 2)
    store.add_line(PartialLine(product_id="b", unit_price=20), 1)


# --- Жизненный цикл слота промокода ---

@pytest.mark.asyncio
async def test_apply_valid_coupon(store, fake_validator):
    _fill(store)
    fake_validator.results["SAVE10"] = SAVE10

    state = await store.apply_coupon(" save10 ", fake_validator)

    assert state == CouponApplied(code="SAVE10", discount_base=10, meta={"type": "fixed"})
    totals = store.totals()
    assert totals.subtotal_base == 100
    assert totals.discount_base == 10
    assert totals.total_base == 100 - 10 + 0 + 61.99

    code, lines = fake_validator.calls[0]
    assert code == "SAVE10"
    assert [(l.product_id, l.qty, l.price_base) for l in lines] == [("a", 2, 40), ("b", 1, 20)]


@pytest.mark.asyncio
async def test_apply_expired_coupon(store, fake_validator):
    _fill(store)
    fake_validator.results["SAVE10"] = CouponValidationResult(ok=False, reason="EXPIRED")

    state = await store.apply_coupon("SAVE10", fake_validator)

    assert state == CouponInvalid(code="SAVE10", reason="EXPIRED")
    assert store.totals().discount_base == 0


@pytest.mark.asyncio
async def test_ok_without_discount_is_invalid(store, fake_validator):
    fake_validator.results["ZERO"] = CouponValidationResult(ok=True, discount_base=0)
    state = await store.apply_coupon("ZERO", fake_validator)
    assert state == CouponInvalid(code="ZERO", reason="INVALID")


@pytest.mark.asyncio
async def test_empty_code_is_rejected_without_request(store, fake_validator):
    state = await store.apply_coupon("   ", fake_validator)
    assert state == CouponInvalid(code="", reason="EMPTY")
    assert fake_validator.calls == []


@pytest.mark.asyncio
async def test_raising_validator_is_treated_as_rejected(store):
    async def broken(code, lines):
        raise RuntimeError("validator exploded")

    state = await store.apply_coupon("SAVE10", broken)
    assert state == CouponInvalid(code="SAVE10", reason="REJECTED")


@pytest.mark.asyncio
async def test_coupon_is_pending_while_request_is_in_flight(store):
    release = asyncio.Event()

    async def slow(code, lines):
        await release.wait()
        return SAVE10

    task = asyncio.create_task(store.apply_coupon("SAVE10", slow))
    await asyncio.sleep(0)
    assert store.coupon == CouponPending(code="SAVE10")

    # Корзина остается доступной, пока идет проверка
    store.add_line(PartialLine(product_id="c", unit_price=5))
    assert store.count() == 1

    release.set()
    assert await task == CouponApplied(code="SAVE10", discount_base=10, meta={"type": "fixed"})


@pytest.mark.asyncio
async def test_stale_result_is_discarded(store):
    """Последний выданный запрос побеждает, даже если ответ на первый пришел позже."""
    _fill(store)
    gates = {"FIRST": asyncio.Event(), "SECOND": asyncio.Event()}
    results = {
        "FIRST": CouponValidationResult(ok=True, discount_base=50),
        "SECOND": CouponValidationResult(ok=False, reason="EXPIRED"),
    }

    async def gated(code, lines):
        await gates[code].wait()
        return results[code]

    first = asyncio.create_task(store.apply_coupon("FIRST", gated))
    await asyncio.sleep(0)
    second = asyncio.create_task(store.apply_coupon("SECOND", gated))
    await asyncio.sleep(0)

    gates["SECOND"].set()
    await second
    gates["FIRST"].set()
    await first

    assert store.coupon == CouponInvalid(code="SECOND", reason="EXPIRED")
    assert store.totals().discount_base == 0


@pytest.mark.asyncio
async def test_clear_coupon_discards_in_flight_result(store):
    release = asyncio.Event()

    async def slow(code, lines):
        await release.wait()
        return SAVE10

    task = asyncio.create_task(store.apply_coupon("SAVE10", slow))
    await asyncio.sleep(0)
    store.clear_coupon()
    release.set()
    await task

    assert store.coupon == CouponNone()


def test_resolve_with_stale_generation_returns_false(store):
    generation, code = store.begin_coupon("a1")
    assert code == "A1"
    store.begin_coupon("b2")
    assert store.resolve_coupon(generation, code, SAVE10) is False
    assert store.coupon == CouponPending(code="B2")


# --- Проверка на бэкенде ---

LINES = [CouponLine(product_id="p1", qty=2, price_base=50.0)]


@pytest.fixture
def api_client(mocker):
    client = mocker.MagicMock(spec=CouponApiClient)
    client.validate = mocker.AsyncMock()
    return client


@pytest.mark.asyncio
async def test_validate_coupon_success(api_client):
    api_client.validate.return_value = httpx.Response(
        200, json={"ok": True, "discountBase": 10, "coupon": {"code": "SAVE10"}}
    )

    result = await validate_coupon(api_client, "SAVE10", LINES)

    assert result.ok is True
    assert result.discount_base == 10
    assert result.coupon == {"code": "SAVE10"}
    payload = api_client.validate.await_args.args[0]
    assert payload == {"code": "SAVE10", "lines": [{"productId": "p1", "qty": 2, "priceBase": 50.0}]}


@pytest.mark.asyncio
async def test_validate_coupon_rejection_with_null_discount():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "reason": "EXPIRED", "discountBase": None})

    client = CouponApiClient("http://coupons.test", "/coupons/validate", timeout=2.0)
    await client.aclose()
    client.async_client = httpx.AsyncClient(base_url=client.base_url, transport=httpx.MockTransport(handler))
    try:
        result = await validate_coupon(client, "OLD", LINES)
    finally:
        await client.aclose()

    assert result.ok is False
    assert result.reason == "EXPIRED"
    assert result.discount_base == 0


def test_validation_result_ignores_non_finite_discount():
    assert CouponValidationResult.model_validate({"ok": True, "discountBase": float("inf")}).discount_base == 0
    assert CouponValidationResult.model_validate({"ok": True, "discountBase": "7.5"}).discount_base == 7.5
    assert CouponValidationResult.model_validate({"ok": True}).discount_base == 0


@pytest.mark.asyncio
async def test_validate_coupon_rejection_in_body(api_client):
    api_client.validate.return_value = httpx.Response(200, json={"ok": False, "reason": "EXPIRED"})
    result = await validate_coupon(api_client, "OLD", LINES)
    assert result.ok is False
    assert result.reason == "EXPIRED"


@pytest.mark.asyncio
async def test_validate_coupon_error_status_uses_reason_from_body(api_client):
    api_client.validate.return_value = httpx.Response(400, json={"ok": False, "reason": "MIN_SUBTOTAL"})
    result = await validate_coupon(api_client, "BIG", LINES)
    assert result.ok is False
    assert result.reason == "MIN_SUBTOTAL"
    assert result.discount_base == 0


@pytest.mark.asyncio
async def test_validate_coupon_error_status_without_reason(api_client):
    api_client.validate.return_value = httpx.Response(503, json={"detail": "maintenance"})
    result = await validate_coupon(api_client, "SAVE10", LINES)
    assert result.reason == REASON_HTTP_FAIL


@pytest.mark.asyncio
async def test_validate_coupon_non_json_body(api_client):
    api_client.validate.return_value = httpx.Response(500, text="<html>Internal Server Error</html>")
    result = await validate_coupon(api_client, "SAVE10", LINES)
    assert result.ok is False
    assert result.reason == REASON_HTTP_FAIL


@pytest.mark.asyncio
async def test_validate_coupon_network_error(api_client):
    api_client.validate.side_effect = httpx.ConnectError("connection refused")
    result = await validate_coupon(api_client, "SAVE10", LINES)
    assert result.ok is False
    assert result.reason == REASON_NETWORK


@pytest.mark.asyncio
async def test_make_validator_plugs_into_store(store, api_client):
    api_client.validate.return_value = httpx.Response(200, json={"ok": True, "discountBase": 5})
    store.add_line(PartialLine(product_id="p1", unit_price=50), 1)

    state = await store.apply_coupon("five", make_validator(api_client))

    assert state == CouponApplied(code="FIVE", discount_base=5)


@pytest.mark.asyncio
async def test_coupon_api_client_posts_json_to_validate_path():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "discountBase": 1})

    client = CouponApiClient("http://coupons.test/", "/api/coupons/validate", timeout=2.0)
    await client.aclose()
    client.async_client = httpx.AsyncClient(base_url=client.base_url, transport=httpx.MockTransport(handler))
    try:
        response = await client.validate({"code": "X", "lines": []})
    finally:
        await client.aclose()

    assert response.status_code == 200
    assert seen["url"] == "http://coupons.test/api/coupons/validate"
    assert seen["body"] == {"code": "X", "lines": []}

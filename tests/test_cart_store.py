# tests/test_cart_store.py

import json

import pytest

from storefront.schemas.cart import CouponApplied, CouponInvalid, CouponNone, PartialLine
from storefront.schemas.product import RawProduct
from storefront.services.cart import CartStore, commit_selection, restore_coupon
from storefront.services.pricing import MissingSelectionError
from storefront.services.totals import compute_totals, flat_policy


# --- Добавление и слияние позиций ---

def test_same_identity_merges_quantities(store):
    first = store.add_line(PartialLine(product_id="p1", unit_price=10, variant_key="size=M"), 2)
    second = store.add_line(PartialLine(product_id="p1", unit_price=10, variant_key="size=M"), 3)
    assert first.line_id == second.line_id
    assert len(store.lines) == 1
    assert store.lines[0].qty == 5


def test_merge_across_input_shapes(store):
    store.add_line(RawProduct.model_validate({"_id": "p1", "price": {"current": 10}}), 1)
    store.add_line(PartialLine(product_id="p1", unit_price=10), 2)
    assert len(store.lines) == 1
    assert store.lines[0].qty == 3


def test_different_price_creates_distinct_lines(store):
    store.add_line(PartialLine(product_id="p1", unit_price=10), 1)
    store.add_line(PartialLine(product_id="p1", unit_price=12), 1)
    assert len(store.lines) == 2


def test_different_variant_selection_creates_distinct_lines(store, phone):
    commit_selection(store, phone, {"storage": "64GB", "color": "black"})
    commit_selection(store, phone, {"storage": "128GB", "color": "black"})
    commit_selection(store, phone, {"storage": "64GB", "color": "black"}, 2)
    assert len(store.lines) == 2
    assert [line.unit_price_base for line in store.lines] == [500, 550]
    assert store.lines[0].qty == 3


def test_add_clamps_quantity_below_one(store):
    line = store.add_line(PartialLine(product_id="p1", unit_price=1), 0)
    assert line.qty == 1
    line = store.add_line(PartialLine(product_id="p2", unit_price=1), -3)
    assert line.qty == 1


def test_add_respects_known_stock(store):
    store.add_line(PartialLine(product_id="p1", unit_price=1, stock=4), 3)
    line = store.add_line(PartialLine(product_id="p1", unit_price=1, stock=4), 3)
    assert line.qty == 4


def test_add_bumps_last_modified_marker(store):
    before = store.revision
    store.add_line(PartialLine(product_id="p1", unit_price=1))
    assert store.revision == before + 1
    assert store.updated_at > 0


def test_add_with_malformed_input_still_renders(store):
    line = store.add_line(RawProduct.model_validate({"price": "oops", "images": "not-a-list"}))
    assert line.unit_price_base == 0
    assert line.title == "Untitled"
    assert store.totals().subtotal_base == 0


# --- Количество, удаление, очистка ---

def test_set_qty_clamps_to_one(store):
    line = store.add_line(PartialLine(product_id="p1", unit_price=5), 3)
    assert store.set_qty(line.line_id, 0) is True
    assert store.get_line(line.line_id).qty == 1
    store.set_qty(line.line_id, -5)
    assert store.get_line(line.line_id).qty == 1


def test_set_qty_unknown_line_is_noop(store):
    store.add_line(PartialLine(product_id="p1", unit_price=5))
    revision = store.revision
    assert store.set_qty("line:missing||0", 3) is False
    assert store.revision == revision


def test_remove_line(store):
    line = store.add_line(PartialLine(product_id="p1", unit_price=5))
    store.add_line(PartialLine(product_id="p2", unit_price=5))
    assert store.remove_line(line.line_id) is True
    assert [l.product_id for l in store.lines] == ["p2"]
    assert store.remove_line(line.line_id) is False


def test_clear_resets_lines_and_coupon(store):
    store.add_line(PartialLine(product_id="p1", unit_price=5))
    store.hydrate({"items": [], "coupon": "SAVE10"})
    store.clear()
    assert store.lines == ()
    assert store.coupon == CouponNone()


def test_count_sums_quantities(store):
    store.add_line(PartialLine(product_id="p1", unit_price=5), 2)
    store.add_line(PartialLine(product_id="p2", unit_price=5), 3)
    assert store.count() == 5


# --- Итоги ---

def test_totals_match_pure_function_after_every_change(store):
    store.add_line(PartialLine(product_id="p1", unit_price=40), 2)
    assert store.totals() == compute_totals(store.lines, store.coupon, flat_policy(61.99, 0.0))
    line = store.add_line(PartialLine(product_id="p2", unit_price=20), 1)
    store.set_qty(line.line_id, 4)
    assert store.totals() == compute_totals(store.lines, store.coupon, flat_policy(61.99, 0.0))
    assert store.totals().subtotal_base == 160


def test_totals_are_memoized_per_revision(store):
    store.add_line(PartialLine(product_id="p1", unit_price=40), 2)
    assert store.totals() is store.totals()


def test_empty_cart_totals(store):
    totals = store.totals()
    assert totals.subtotal_base == 0
    assert totals.tax_base == 0
    assert totals.total_base == 0


# --- Обязательные опции ---

def test_commit_without_required_selection_is_refused(store, shirt):
    revision = store.revision
    with pytest.raises(MissingSelectionError) as exc_info:
        commit_selection(store, shirt, {})
    assert exc_info.value.missing == ["size"]
    assert store.lines == ()
    assert store.revision == revision


def test_commit_with_required_selection(store, shirt):
    line = commit_selection(store, shirt, {"size": "M"}, 2)
    assert line.product_id == "p-shirt"
    assert line.variant_key == "size=M"
    assert line.unit_price_base == 20
    assert line.qty == 2


def test_commit_uses_adjusted_price_and_compare_price(store, phone):
    line = commit_selection(store, phone, {"storage": "256GB", "color": "white"})
    assert line.unit_price_base == 630
    assert line.compare_at_price_base == 650
    assert line.image == "/img/phone-1.png"
    assert line.max_qty == 10


# --- Восстановление ---

def test_hydrate_round_trip_keeps_totals(store, phone):
    """Тест-кейс: три разные позиции + примененный промокод переживают serialize/hydrate."""
    commit_selection(store, phone, {"storage": "128GB", "color": "black"}, 2)
    store.add_line(PartialLine(product_id="p-cable", unit_price=9.99, title="Cable"), 3)
    store.add_line(RawProduct.model_validate({"slug": "case", "price": 15.5}), 1)
    store.hydrate({"items": [l.model_dump() for l in store.lines], "coupon": {
        "status": "applied", "code": "SAVE10", "discount_base": 10,
    }})
    before = store.totals()
    payload = json.loads(store.serialize().model_dump_json())
    restored = CartStore(session_id="other", policy=flat_policy(61.99, 0.0))
    assert restored.hydrate(payload) is True

    assert len(restored.lines) == 3
    assert restored.lines == store.lines
    assert restored.coupon == store.coupon
    assert restored.totals() == before


def test_hydrate_upgrades_legacy_coupon_string(store):
    store.hydrate({"items": [{"productId": "p1", "priceBase": 100, "qty": 1}], "coupon": "save10"})
    assert store.coupon == CouponApplied(code="SAVE10", discount_base=0)
    assert store.totals().discount_base == 0


def test_hydrate_legacy_coupon_objects():
    assert restore_coupon({"code": "A", "discountBase": 5, "meta": {"type": "fixed"}}) == CouponApplied(
        code="A", discount_base=5, meta={"type": "fixed"}
    )
    assert restore_coupon({"code": "B", "discountBase": 0, "invalid": True, "reason": "EXPIRED"}) == CouponInvalid(
        code="B", reason="EXPIRED"
    )
    assert restore_coupon({"code": "C", "discountBase": 0, "pending": True}) == CouponApplied(code="C")
    assert restore_coupon({"status": "pending", "code": "D"}) == CouponApplied(code="D")
    assert restore_coupon({"status": "bogus"}) == CouponNone()
    assert restore_coupon(None) == CouponNone()
    assert restore_coupon(42) == CouponNone()


def test_hydrate_merges_duplicate_persisted_lines(store):
    store.hydrate({"items": [
        {"productId": "p1", "priceBase": 5, "qty": 1, "lineId": "a"},
        {"productId": "p1", "priceBase": 5, "qty": 2, "lineId": "b"},
    ]})
    assert len(store.lines) == 1
    assert store.lines[0].qty == 3


def test_hydrate_keeps_image_and_old_price_from_legacy_lines(store):
    store.hydrate({"items": [
        {"productId": "p1", "price": {"current": 10, "old": 12}, "images": ["a.png"]},
        {"id": "p2", "priceBase": 5},
    ]})
    first, second = store.lines
    assert first.image == "a.png"
    assert first.compare_at_price_base == 12
    assert first.unit_price_base == 10
    assert second.product_id == "p2"
    assert second.line_id == "line:p2||5"


def test_hydrate_skips_garbage_lines(store):
    store.hydrate({"items": ["junk", None, {"productId": "p1", "priceBase": "n/a"}]})
    assert len(store.lines) == 1
    assert store.lines[0].unit_price_base == 0


def test_hydrate_unparseable_snapshot_leaves_empty_cart(store):
    store.add_line(PartialLine(product_id="p1", unit_price=5))
    assert store.hydrate({"items": "not-a-list"}) is False
    assert store.lines == ()
    assert store.coupon == CouponNone()


def test_hydrate_restores_updated_at(store):
    store.hydrate({"items": [], "updatedAt": 1700000000000})
    assert store.updated_at == 1700000000000


# --- Подписчики ---

def test_listeners_are_notified_and_failures_swallowed(store):
    seen = []

    def broken(_store):
        raise RuntimeError("storage is down")

    store.subscribe(broken)
    unsubscribe = store.subscribe(lambda s: seen.append(s.revision))
    store.add_line(PartialLine(product_id="p1", unit_price=5))
    store.refresh()
    assert seen == [1, 2]

    unsubscribe()
    store.clear()
    assert seen == [1, 2]


def test_add_accepts_plain_mappings(store):
    store.add_line({"kind": "product", "slug": "mouse", "price": {"current": 25}}, 1)
    store.add_line({"productId": "mouse", "priceBase": 25}, 2)
    assert len(store.lines) == 1
    assert store.lines[0].qty == 3


def test_add_unsupported_input_degrades_instead_of_raising(store):
    line = store.add_line(None)
    assert line.unit_price_base == 0
    assert line.title == "Untitled"
    assert store.count() == 1

"""Tests for cart management and the shopper session."""

import pytest
from bson import ObjectId

from cart import CartManager
from coupons import CouponEvaluator
from errors import Unauthenticated, ValidationError
from session import ShopperSession

OWNER = "user-1"


@pytest.fixture
def cart(backend, profile):
    return CartManager(backend, OWNER)


class TestAdd:
    def test_creates_line(self, cart, make_product):
        pid = make_product()
        cart.add(pid, 0.5)
        snap = cart.snapshot()
        assert snap.count == 1
        assert snap.items[0].line.quantity_kg == 0.5

    def test_merges_same_product(self, cart, make_product):
        pid = make_product()
        first = cart.add(pid, 0.5)
        second = cart.add(pid, 1.0)
        snap = cart.snapshot()
        assert first == second
        assert snap.count == 1
        assert snap.items[0].line.quantity_kg == 1.5

    def test_requires_owner(self, backend, make_product):
        with pytest.raises(Unauthenticated):
            CartManager(backend, None).add(make_product(), 1.0)

    def test_rejects_non_positive_quantity(self, cart, make_product):
        with pytest.raises(ValidationError):
            cart.add(make_product(), 0)

    def test_carts_are_per_owner(self, backend, cart, make_product, make_profile):
        make_profile("user-2")
        cart.add(make_product(), 1.0)
        assert CartManager(backend, "user-2").snapshot().count == 0


class TestQuantity:
    def test_overwrites_quantity(self, cart, make_product):
        line_id = cart.add(make_product(), 0.5)
        cart.set_quantity(line_id, 2.0)
        assert cart.snapshot().items[0].line.quantity_kg == 2.0

    @pytest.mark.parametrize("quantity", [0, -1.5])
    def test_non_positive_removes_line(self, cart, make_product, quantity):
        line_id = cart.add(make_product(), 0.5)
        cart.set_quantity(line_id, quantity)
        assert cart.snapshot().count == 0

    def test_remove_and_clear(self, cart, make_product):
        first = cart.add(make_product("Prawns"), 0.5)
        cart.add(make_product("Crab"), 1.0)
        assert cart.remove(first) is True
        assert cart.snapshot().count == 1
        assert cart.clear() == 1
        assert cart.snapshot().count == 0


class TestSnapshot:
    def test_subtotal_from_current_prices(self, cart, make_product, mongo_db):
        pid = make_product(price_per_kg=500.0)
        cart.add(pid, 0.5)
        cart.add(make_product("Squid", price_per_kg=320.0), 1.5)
        assert cart.snapshot().subtotal == 500.0 * 0.5 + 320.0 * 1.5

        mongo_db["product"].update_one({"_id": ObjectId(pid)}, {"$set": {"price_per_kg": 600.0}})
        assert cart.snapshot().subtotal == 600.0 * 0.5 + 320.0 * 1.5

    def test_joins_vendor_name(self, cart, make_product):
        cart.add(make_product(), 1.0)
        assert cart.snapshot().items[0].product.vendor_name == "Coastal Catch"

    def test_keeps_cart_order(self, cart, make_product):
        names = ["Mackerel", "Sardine", "Tuna"]
        for name in names:
            cart.add(make_product(name), 1.0)
        assert [i.product.name for i in cart.snapshot().items] == names

    def test_signed_out_snapshot_is_empty(self, backend):
        snap = CartManager(backend, None).snapshot()
        assert snap.count == 0
        assert snap.subtotal == 0


class TestSession:
    def test_load_reads_profile_and_cart(self, backend, make_profile, make_product):
        make_profile("user-9", wallet_balance=120.0)
        CartManager(backend, "user-9").add(make_product(), 1.0)
        session = ShopperSession(backend, "user-9").load()
        assert session.profile.wallet_balance == 120.0
        assert session.snapshot.count == 1

    def test_cart_edit_invalidates_coupon(self, backend, session, make_product, make_coupon):
        make_coupon("FLAT100")
        pid = make_product()
        session.add_to_cart(pid, 1.0)
        session.coupon.apply(CouponEvaluator(backend), "flat100", session.snapshot.subtotal)
        assert session.coupon.code == "FLAT100"
        session.add_to_cart(pid, 0.5)
        assert session.coupon.code is None
        assert session.coupon.discount == 0

    def test_signed_out_session(self, backend):
        session = ShopperSession(backend, None).load()
        assert session.profile is None
        with pytest.raises(Unauthenticated):
            session.require_owner()

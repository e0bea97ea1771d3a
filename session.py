"""Per-shopper state: profile and cart, loaded explicitly from the store."""

from typing import Optional

from cart import CartManager
from coupons import CouponSelection
from errors import Unauthenticated
from schemas import CartSnapshot, Profile


class ShopperSession:
    def __init__(self, backend, owner_id: Optional[str]):
        self.backend = backend
        self.owner_id = owner_id
        self.cart = CartManager(backend, owner_id)
        self.coupon = CouponSelection()
        self.profile: Optional[Profile] = None
        self.snapshot: CartSnapshot = CartSnapshot()

    @property
    def signed_in(self) -> bool:
        return bool(self.owner_id)

    def require_owner(self) -> str:
        if not self.owner_id:
            raise Unauthenticated()
        return self.owner_id

    def refresh_profile(self) -> Profile:
        owner = self.require_owner()
        self.profile = self.backend.read_profile(owner) or Profile(id=owner)
        return self.profile

    def refresh_cart(self) -> CartSnapshot:
        self.snapshot = self.cart.snapshot()
        return self.snapshot

    def load(self) -> "ShopperSession":
        if self.signed_in:
            self.refresh_profile()
            self.refresh_cart()
        return self

    # Cart edits go through the session so an applied coupon never outlives them

    def add_to_cart(self, product_id: str, quantity_kg: float) -> str:
        line_id = self.cart.add(product_id, quantity_kg)
        self.coupon.invalidate()
        self.refresh_cart()
        return line_id

    def set_quantity(self, line_id: str, quantity_kg: float):
        result = self.cart.set_quantity(line_id, quantity_kg)
        self.coupon.invalidate()
        self.refresh_cart()
        return result

    def remove_from_cart(self, line_id: str) -> bool:
        removed = self.cart.remove(line_id)
        self.coupon.invalidate()
        self.refresh_cart()
        return removed

    def clear_cart(self) -> int:
        removed = self.cart.clear()
        self.coupon.invalidate()
        self.snapshot = CartSnapshot()
        return removed

"""
Cart management for a signed-in shopper.

Every read goes back to the store; prices and stock change between calls so
nothing is cached here.
"""

import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from errors import NotFound, Unauthenticated, ValidationError
from schemas import CartItemView, CartSnapshot

logger = logging.getLogger("freshcart.cart")


class CartManager:
    def __init__(self, backend, owner_id: Optional[str]):
        self.backend = backend
        self.owner_id = owner_id

    def _owner(self) -> str:
        if not self.owner_id:
            raise Unauthenticated("Please sign in to add items to cart")
        return self.owner_id

    def _find_line(self, line_id: str):
        for line in self.backend.read_cart(self._owner()):
            if line.id == line_id:
                return line
        raise NotFound("Cart item not found")

    def add(self, product_id: str, quantity_kg: float) -> str:
        """Add to the cart, merging with an existing line for the same product."""
        owner = self._owner()
        if quantity_kg <= 0:
            raise ValidationError("quantity_kg", "Quantity must be greater than zero")
        existing = next((l for l in self.backend.read_cart(owner) if l.product_id == product_id), None)
        if existing is None:
            try:
                return self.backend.write_cart_line(owner, product_id, quantity_kg)
            except DuplicateKeyError:
                # Another session added the same product in the meantime
                existing = next(l for l in self.backend.read_cart(owner) if l.product_id == product_id)
        return self.backend.write_cart_line(owner, product_id, existing.quantity_kg + quantity_kg, line_id=existing.id)

    def set_quantity(self, line_id: str, quantity_kg: float):
        if quantity_kg <= 0:
            return self.remove(line_id)
        return self.backend.write_cart_line(self._owner(), line_id=line_id, product_id=None, quantity_kg=quantity_kg)

    def remove(self, line_id: str) -> bool:
        return self.backend.delete_cart_line(self._owner(), line_id)

    def clear(self) -> int:
        if not self.owner_id:
            return 0
        removed = self.backend.delete_cart(self.owner_id)
        logger.info(f"Cleared {removed} cart lines for {self.owner_id}")
        return removed

    def line(self, line_id: str):
        return self._find_line(line_id)

    def snapshot(self) -> CartSnapshot:
        if not self.owner_id:
            return CartSnapshot()
        items = []
        for line in self.backend.read_cart(self.owner_id):
            items.append(CartItemView(line=line, product=self.backend.read_product(line.product_id)))
        subtotal = sum(item.line_total for item in items)
        return CartSnapshot(items=items, subtotal=subtotal, count=len(items))

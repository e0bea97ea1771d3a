"""
Stock checks against live inventory.

Everything here is advisory. It narrows the window between a check and the
deduction, but only Backend.deduct_stock can actually guarantee stock.
"""

import logging
import threading
from typing import Callable, Iterable, List, Optional, Tuple

import config
from errors import StockConflict, ValidationError
from schemas import StockCheck, StockState, round_kg

logger = logging.getLogger("freshcart.stock")


def shortage_message(check: StockCheck) -> str:
    if check.state == StockState.MISSING:
        return f"Product {check.product_name} is no longer available"
    return f"Sorry, {check.product_name} now has only {check.available_kg:.1f} kg left"


class StockVerifier:
    def __init__(self, backend):
        self.backend = backend

    def verify(self, requests: Iterable[Tuple[str, float]], names: Optional[dict] = None) -> List[StockCheck]:
        """Check (product_id, requested_kg) pairs against current stock.

        `names` supplies fallback display names for products that no longer
        exist in the catalog.
        """
        names = names or {}
        results = []
        for product_id, requested in requests:
            product = self.backend.read_product(product_id)
            if product is None or not product.is_available:
                results.append(StockCheck(
                    product_id=product_id,
                    product_name=product.name if product else names.get(product_id, "Product"),
                    requested_kg=requested,
                    state=StockState.MISSING,
                ))
                continue
            state = StockState.SUFFICIENT if product.stock_kg >= round_kg(requested) else StockState.INSUFFICIENT
            results.append(StockCheck(
                product_id=product_id,
                product_name=product.name,
                requested_kg=requested,
                state=state,
                available_kg=product.stock_kg,
            ))
        shortfalls = [r for r in results if r.state != StockState.SUFFICIENT]
        if shortfalls:
            logger.warning(f"Stock shortfall for {len(shortfalls)} of {len(results)} products")
        return results

    def verify_lines(self, items) -> List[StockCheck]:
        """Verify the lines of a cart snapshot."""
        names = {i.line.product_id: i.product.name for i in items if i.product}
        return self.verify([(i.line.product_id, i.line.quantity_kg) for i in items], names)

    def require(self, items) -> List[StockCheck]:
        """Like verify_lines, but raise StockConflict on the first shortfall."""
        checks = self.verify_lines(items)
        shortfalls = [c for c in checks if c.state != StockState.SUFFICIENT]
        if shortfalls:
            raise StockConflict(shortage_message(shortfalls[0]), shortfalls=shortfalls)
        return checks

    def cart_issues(self, items) -> List[str]:
        """Warnings shown on the cart before checkout is allowed."""
        issues = []
        for check in self.verify_lines(items):
            if check.state == StockState.MISSING or check.available_kg <= 0:
                issues.append(f"{check.product_name} is out of stock")
            elif check.state == StockState.INSUFFICIENT:
                issues.append(f"{check.product_name}: only {check.available_kg:.1f} kg available")
        return issues

    def check_addition(self, product_id: str, quantity_in_cart: float, quantity: float):
        """Refuse an add-to-cart that would push the cart over live stock."""
        product = self.backend.read_product(product_id)
        if product is None or not product.is_available:
            raise StockConflict("This product is no longer available")
        if quantity < product.min_order_kg:
            raise ValidationError("quantity_kg", f"Minimum order for {product.name} is {product.min_order_kg:.1f} kg")
        if round_kg(quantity_in_cart + quantity) > product.stock_kg:
            available = max(0.0, round_kg(product.stock_kg - quantity_in_cart))
            if available <= 0:
                raise StockConflict("This item is already at maximum available stock in your cart")
            raise StockConflict(f"Only {available:.1f} kg more available to add")
        return product

    def check_quantity_change(self, product_id: str, new_quantity: float):
        """Refuse a cart quantity increase beyond live stock."""
        product = self.backend.read_product(product_id)
        stock = product.stock_kg if product and product.is_available else 0.0
        name = product.name if product else "This product"
        if round_kg(new_quantity) > stock:
            if stock <= 0:
                raise StockConflict(f"{name} is now out of stock")
            raise StockConflict(f"Only {stock:.1f} kg of {name} available")
        return product


class StockPoller:
    """Keeps one product's stock fresh while a view is showing it."""

    def __init__(self, backend, product_id: str, interval: float = None, on_change: Callable[[float], None] = None):
        self.backend = backend
        self.product_id = product_id
        self.interval = interval if interval is not None else config.STOCK_REFRESH_SECONDS
        self.on_change = on_change
        self.current_stock: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def refresh(self) -> Optional[float]:
        stock = self.backend.read_stock(self.product_id)
        changed = stock != self.current_stock
        self.current_stock = stock
        if changed and self.on_change is not None:
            self.on_change(stock)
        return stock

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.refresh()
            except Exception as e:
                # A failed poll keeps the last known value until the next tick
                logger.warning(f"Stock refresh failed for {self.product_id}: {e}")

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self.refresh()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"stock-{self.product_id}", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()

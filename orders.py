"""
Checkout: turns a shopper's cart into an order.

There is no transaction around the whole sequence. Each step is atomic on
its own and gates the next:

1. validate the delivery address
2. reload the cart and check stock for every line
3. deduct stock line by line, in cart order, stopping at the first failure
4. create the order and its frozen lines
5. settle: wallet debit, coupon usage, referral reward
6. confirm the order unless it waits for an online payment
7. clear the cart

Stock deducted before a later failure is not released. Those failures are
logged with the deducted lines and carried on the raised error so the stock
can be reconciled by an operator.
"""

import logging
from datetime import date, timedelta
from typing import Callable, List, Optional

import config
from coupons import CouponEvaluator, normalize_code
from errors import FreshCartError, NetworkError, PersistenceError, StockConflict, ValidationError
from schemas import (
    CheckoutRequest,
    CheckoutResult,
    DeliveryAddress,
    Order,
    OrderLine,
    OrderStatus,
    PaymentStatus,
)
from stock import StockVerifier
from wallet import WalletLedger, usable_credit

logger = logging.getLogger("freshcart.checkout")


def validate_address(address: DeliveryAddress) -> DeliveryAddress:
    if not address.full_name.strip():
        raise ValidationError("full_name", "Please enter your name")
    digits = "".join(ch for ch in address.phone if ch.isdigit())
    if len(digits) < 10:
        raise ValidationError("phone", "Please enter a valid phone number")
    if not address.address_line1.strip():
        raise ValidationError("address_line1", "Please enter your address")
    if not address.city.strip():
        raise ValidationError("city", "Please enter your city")
    if not address.state.strip():
        raise ValidationError("state", "Please enter your state")
    return address


def compute_totals(subtotal: float, delivery_charge: float, coupon_discount: float, wallet_balance: float, use_wallet: bool) -> dict:
    payable = subtotal + delivery_charge - coupon_discount
    wallet_used = round(usable_credit(wallet_balance, payable, use_wallet), 2)
    total = max(0.0, payable - wallet_used)
    return {
        "subtotal": subtotal,
        "delivery_charge": delivery_charge,
        "coupon_discount": coupon_discount,
        "wallet_used": wallet_used,
        "total": round(total, 2),
    }


def freeze_lines(items) -> List[OrderLine]:
    """Copy name, vendor, image and price out of the cart snapshot."""
    lines = []
    for item in items:
        product = item.product
        lines.append(OrderLine(
            product_id=item.line.product_id,
            product_name=product.name or "Product",
            vendor_name=product.vendor_name or "Vendor",
            image_url=product.image_url,
            quantity_kg=item.line.quantity_kg,
            price_per_kg=product.price_per_kg,
            total=product.price_per_kg * item.line.quantity_kg,
        ))
    return lines


class OrderOrchestrator:
    def __init__(self, backend, is_online: Optional[Callable[[], bool]] = None, today: Optional[Callable[[], date]] = None):
        self.backend = backend
        self.stock = StockVerifier(backend)
        self.coupons = CouponEvaluator(backend)
        self.wallet = WalletLedger(backend)
        self.is_online = is_online or backend.ping
        self.today = today or date.today

    def delivery_charge(self, pin_code: Optional[str]) -> float:
        if not pin_code:
            return config.DEFAULT_DELIVERY_CHARGE
        info = self.backend.read_delivery_info(pin_code)
        if info is None:
            raise ValidationError("pin_code", "Sorry, we do not deliver to this area yet")
        return info.delivery_charge

    def _coupon(self, session, request: CheckoutRequest, subtotal: float):
        code = normalize_code(request.coupon_code) or session.coupon.code
        if not code:
            return None, 0.0, None
        # Always re-priced against the cart being ordered, never trusted from earlier
        result = self.coupons.evaluate(code, subtotal)
        if not result.valid:
            logger.warning(f"Checkout continues without coupon {code}: {result.message}")
            session.coupon.invalidate()
            return None, 0.0, result.message
        return code, result.discount, result.message

    def _deduct(self, items) -> list:
        deducted = []
        for item in items:
            product_id, quantity = item.line.product_id, item.line.quantity_kg
            try:
                result = self.backend.deduct_stock(product_id, quantity)
            except NetworkError:
                if deducted:
                    logger.error(f"Network failure after deducting {deducted}; stock not released")
                raise
            if not result.success:
                if deducted:
                    logger.error(f"Deduction failed for {product_id} after deducting {deducted}; stock not released")
                raise StockConflict(
                    f"Sorry, {result.product_name} now has only {result.available_stock:.1f} kg left",
                    deducted=deducted,
                )
            deducted.append((product_id, quantity))
        return deducted

    def _persist(self, owner: str, request: CheckoutRequest, coupon_code, totals: dict, lines, deducted) -> Order:
        fields = {
            "user_id": owner,
            "status": OrderStatus.PENDING.value,
            "coupon_code": coupon_code,
            "payment_method": request.payment_method.value,
            "payment_status": PaymentStatus.PENDING.value,
            "delivery_address": request.address.model_dump(),
            "expected_delivery": self.today() + timedelta(days=config.EXPECTED_DELIVERY_DAYS),
            **totals,
        }
        try:
            order = self.backend.create_order(fields)
        except (PersistenceError, NetworkError) as e:
            logger.error(f"Order creation failed for {owner} after deducting {deducted}: {e}")
            raise PersistenceError("Failed to create order", deducted=deducted) from e
        try:
            self.backend.create_order_lines(order.id, lines)
        except (PersistenceError, NetworkError) as e:
            logger.error(f"Saving items of order {order.order_number} failed after deducting {deducted}: {e}")
            raise PersistenceError("Failed to save order items", order_id=order.id, deducted=deducted) from e
        logger.info(f"Order {order.order_number} created for {owner}: total Rs.{order.total:.2f}")
        return order

    def _settle(self, owner: str, order: Order, first_order_completed: bool) -> List[str]:
        failures = []
        if order.wallet_used > 0:
            try:
                self.wallet.debit(owner, order.wallet_used, order.id)
            except FreshCartError as e:
                logger.warning(f"Wallet debit for order {order.order_number} failed: {e}")
                failures.append(f"wallet: {e.message}")
        if order.coupon_code:
            try:
                self.backend.increment_coupon_usage(order.coupon_code, order.id)
            except FreshCartError as e:
                logger.warning(f"Coupon usage for order {order.order_number} not recorded: {e}")
                failures.append(f"coupon: {e.message}")
        if not first_order_completed:
            try:
                self.backend.grant_referral_reward(owner)
            except FreshCartError as e:
                logger.warning(f"Referral reward after order {order.order_number} failed: {e}")
                failures.append(f"referral: {e.message}")
        return failures

    def _assign_status(self, order: Order) -> Order:
        if order.payment_method.needs_confirmation and order.total > 0:
            return order
        try:
            return self.backend.update_order_status(
                order.id, OrderStatus.CONFIRMED, PaymentStatus.PENDING, expected_status=OrderStatus.PENDING
            )
        except (PersistenceError, NetworkError) as e:
            raise PersistenceError(f"Order {order.order_number} was placed but could not be confirmed", order_id=order.id) from e

    def place_order(self, session, request: CheckoutRequest) -> CheckoutResult:
        owner = session.require_owner()
        if not self.is_online():
            raise NetworkError()
        validate_address(request.address)
        delivery_charge = self.delivery_charge(request.pin_code or request.address.pin_code)

        snapshot = session.refresh_cart()
        if not snapshot.items:
            raise ValidationError("cart", "Your cart is empty")
        profile = session.refresh_profile()
        self.stock.require(snapshot.items)

        lines = freeze_lines(snapshot.items)
        subtotal = sum(line.total for line in lines)
        coupon_code, discount, coupon_message = self._coupon(session, request, subtotal)
        totals = compute_totals(subtotal, delivery_charge, discount, profile.wallet_balance, request.use_wallet)

        deducted = self._deduct(snapshot.items)
        order = self._persist(owner, request, coupon_code, totals, lines, deducted)
        lines = [line.model_copy(update={"order_id": order.id}) for line in lines]
        failures = self._settle(owner, order, profile.first_order_completed)
        order = self._assign_status(order)

        try:
            session.clear_cart()
            session.refresh_profile()
        except FreshCartError as e:
            # The order stands even when the cart could not be cleared
            logger.warning(f"Order {order.order_number} placed but cart refresh failed: {e}")
            failures.append(f"cart: {e.message}")
        return CheckoutResult(order=order, lines=lines, settlement_failures=failures, coupon_message=coupon_message)

"""
Order status state machine.

pending -> confirmed -> processing -> shipped -> delivered, with cancelled
reachable from every state before delivered. delivered and cancelled are
terminal.
"""

import logging
from typing import Optional

from errors import InvalidTransition, ValidationError
from schemas import Order, OrderStatus, PaymentMethod, PaymentStatus

logger = logging.getLogger("freshcart.orders")

FORWARD_CHAIN = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]
TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def status_index(status: OrderStatus) -> int:
    """Position in the forward chain for display; -1 for cancelled."""
    status = OrderStatus(status)
    if status == OrderStatus.CANCELLED:
        return -1
    return FORWARD_CHAIN.index(status)


def next_status(status: OrderStatus) -> Optional[OrderStatus]:
    index = status_index(status)
    if index < 0 or index + 1 >= len(FORWARD_CHAIN):
        return None
    return FORWARD_CHAIN[index + 1]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    current, target = OrderStatus(current), OrderStatus(target)
    if current in TERMINAL:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    return next_status(current) == target


def transition(current: OrderStatus, target: OrderStatus) -> OrderStatus:
    if not can_transition(current, target):
        raise InvalidTransition(OrderStatus(current).value, OrderStatus(target).value)
    return OrderStatus(target)


class OrderService:
    """Post-checkout status changes, applied only if nobody changed the order first."""

    def __init__(self, backend):
        self.backend = backend

    def advance(self, order_id: str, target: OrderStatus) -> Order:
        order = self.backend.read_order(order_id)
        target = transition(order.status, target)
        payment_status = order.payment_status
        if target == OrderStatus.DELIVERED and order.payment_method == PaymentMethod.COD:
            payment_status = PaymentStatus.PAID
        return self.backend.update_order_status(order_id, target, payment_status, expected_status=order.status)

    def cancel(self, order_id: str) -> Order:
        order = self.backend.read_order(order_id)
        transition(order.status, OrderStatus.CANCELLED)
        payment_status = order.payment_status
        if payment_status == PaymentStatus.PAID:
            payment_status = PaymentStatus.REFUNDED
        logger.info(f"Cancelling order {order.order_number}")
        return self.backend.update_order_status(order_id, OrderStatus.CANCELLED, payment_status, expected_status=order.status)

    def confirm_payment(self, order_id: str, payment_id: str, success: bool = True) -> Order:
        """Record the gateway outcome for a card/UPI order still awaiting payment."""
        if not payment_id:
            raise ValidationError("payment_id", "Payment reference is required")
        order = self.backend.read_order(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition(order.status.value, "paid" if success else "failed")
        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(f"payment {order.payment_status.value}", "paid" if success else "failed")
        if not success:
            return self.backend.update_order_status(
                order_id, order.status, PaymentStatus.FAILED, expected_status=order.status, payment_id=payment_id
            )
        status = order.status
        if status == OrderStatus.PENDING:
            status = transition(status, OrderStatus.CONFIRMED)
        return self.backend.update_order_status(
            order_id, status, PaymentStatus.PAID, expected_status=order.status, payment_id=payment_id
        )

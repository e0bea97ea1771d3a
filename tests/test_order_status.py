"""Tests for the order status state machine and post-checkout changes."""

import pytest

from errors import InvalidTransition, ValidationError
from order_status import OrderService, can_transition, next_status, status_index, transition
from schemas import OrderStatus, PaymentMethod, PaymentStatus

FORWARD = ["pending", "confirmed", "processing", "shipped", "delivered"]


class TestTransitions:
    @pytest.mark.parametrize("current,target", list(zip(FORWARD, FORWARD[1:])))
    def test_forward_steps(self, current, target):
        assert can_transition(current, target)
        assert transition(current, target) == OrderStatus(target)

    def test_no_skipping(self):
        assert not can_transition("pending", "processing")
        assert not can_transition("confirmed", "delivered")

    def test_no_going_back(self):
        assert not can_transition("shipped", "confirmed")

    @pytest.mark.parametrize("current", FORWARD[:-1])
    def test_cancel_before_delivery(self, current):
        assert can_transition(current, "cancelled")

    @pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
    def test_terminal_states(self, terminal):
        for target in FORWARD + ["cancelled"]:
            assert not can_transition(terminal, target)

    def test_illegal_transition_raises(self):
        with pytest.raises(InvalidTransition, match="delivered to cancelled"):
            transition("delivered", "cancelled")

    def test_display_positions(self):
        assert [status_index(s) for s in FORWARD] == [0, 1, 2, 3, 4]
        assert status_index("cancelled") == -1
        assert next_status("delivered") is None


@pytest.fixture
def placed_order(session, orchestrator, checkout_request, make_product):
    def _place(method=PaymentMethod.CARD):
        session.add_to_cart(make_product(stock_kg=10.0), 1.0)
        return orchestrator.place_order(session, checkout_request(method)).order

    return _place


class TestOrderService:
    def test_advance_through_fulfilment(self, backend, placed_order):
        order = placed_order(PaymentMethod.COD)
        service = OrderService(backend)
        for status in ["processing", "shipped", "delivered"]:
            order = service.advance(order.id, OrderStatus(status))
        assert order.status == OrderStatus.DELIVERED
        assert order.payment_status == PaymentStatus.PAID

    def test_advance_rejects_skip(self, backend, placed_order):
        order = placed_order(PaymentMethod.COD)
        with pytest.raises(InvalidTransition):
            OrderService(backend).advance(order.id, OrderStatus.SHIPPED)

    def test_cancel_paid_order_refunds(self, backend, placed_order):
        order = placed_order()
        service = OrderService(backend)
        service.confirm_payment(order.id, "pay_123")
        cancelled = service.cancel(order.id)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.REFUNDED
        with pytest.raises(InvalidTransition):
            service.advance(order.id, OrderStatus.PROCESSING)

    def test_confirm_payment(self, backend, placed_order):
        order = placed_order()
        assert order.status == OrderStatus.PENDING
        paid = OrderService(backend).confirm_payment(order.id, "pay_123")
        assert paid.status == OrderStatus.CONFIRMED
        assert paid.payment_status == PaymentStatus.PAID
        assert paid.payment_id == "pay_123"

    def test_failed_payment_keeps_order_pending(self, backend, placed_order):
        order = placed_order()
        failed = OrderService(backend).confirm_payment(order.id, "pay_999", success=False)
        assert failed.status == OrderStatus.PENDING
        assert failed.payment_status == PaymentStatus.FAILED

    def test_payment_recorded_once(self, backend, placed_order):
        order = placed_order()
        service = OrderService(backend)
        service.confirm_payment(order.id, "pay_123")
        with pytest.raises(InvalidTransition):
            service.confirm_payment(order.id, "pay_123")

    def test_payment_needs_reference(self, backend, placed_order):
        order = placed_order()
        with pytest.raises(ValidationError):
            OrderService(backend).confirm_payment(order.id, "")

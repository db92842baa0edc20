import pytest

from domain.common.exceptions import OrderNotCancellableException
from domain.order.entity import GatewayPaymentStatus, OrderStatus
from domain.settlement import transitions

from test_order_entity import make_order


def test_capture_moves_pending_to_paid_once():
    order = make_order()
    assert transitions.apply_captured(order, "pay_1", method="upi", signature="sig")
    assert order.status == OrderStatus.PAID
    assert order.payment.status == GatewayPaymentStatus.CAPTURED
    assert order.payment.payment_id == "pay_1"
    assert order.payment.captured_at is not None
    history = len(order.status_history)

    assert not transitions.apply_captured(order, "pay_1")
    assert len(order.status_history) == history


def test_capture_after_order_paid_keeps_status():
    order = make_order()
    assert transitions.apply_order_paid(order)
    assert transitions.apply_captured(order, "pay_1")
    assert order.status == OrderStatus.PAID
    assert [h.status for h in order.status_history].count(OrderStatus.PAID) == 1


def test_late_capture_detected_on_cancelled_order():
    order = make_order()
    transitions.cancel(order, "changed plans")
    assert transitions.is_late_capture(order)
    assert not transitions.apply_captured(order, "pay_1")
    assert order.status == OrderStatus.CANCELLED


def test_authorize_only_from_pending():
    order = make_order()
    assert transitions.apply_authorized(order, "pay_1")
    assert order.payment.status == GatewayPaymentStatus.AUTHORIZED
    assert order.status == OrderStatus.PENDING_PAYMENT
    paid = make_order(OrderStatus.PAID)
    assert not transitions.apply_authorized(paid, "pay_1")


def test_failed_payment_cancels_pending_order():
    order = make_order()
    assert transitions.apply_failed(order, "pay_1", "card declined")
    assert order.status == OrderStatus.CANCELLED
    assert order.payment.status == GatewayPaymentStatus.FAILED
    assert order.status_history[-1].note == "Payment failed: card declined"


def test_failed_after_capture_is_ignored():
    order = make_order()
    transitions.apply_captured(order, "pay_1")
    assert not transitions.apply_failed(order, "pay_2", "late failure")
    assert order.status == OrderStatus.PAID


def test_refund_processed_on_paid_order_marks_refunded():
    order = make_order()
    transitions.apply_captured(order, "pay_1")
    assert transitions.apply_refund_processed(order, "rfnd_1", order.totals.grand_total)
    assert order.status == OrderStatus.REFUNDED
    assert order.payment.status == GatewayPaymentStatus.REFUNDED
    assert order.payment.refund_id == "rfnd_1"


def test_refund_processed_keeps_cancelled_status():
    order = make_order()
    transitions.apply_captured(order, "pay_1")
    transitions.cancel(order)
    assert transitions.apply_refund_processed(order, "rfnd_1", order.totals.grand_total)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment.status == GatewayPaymentStatus.REFUNDED


def test_refund_processed_requires_capture():
    order = make_order()
    assert not transitions.apply_refund_processed(order, "rfnd_1", 10)


def test_cancel_rejects_shipped_order():
    order = make_order(OrderStatus.SHIPPED)
    with pytest.raises(OrderNotCancellableException):
        transitions.cancel(order)
    assert order.status == OrderStatus.SHIPPED

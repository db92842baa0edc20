import re

import pytest

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.order.entity import (
    GatewayPaymentStatus,
    Order,
    OrderItem,
    OrderStatus,
    ShippingAddress,
    Totals,
)
from domain.order.service import OrderDomainService, generate_order_number


def make_order(status=OrderStatus.PENDING_PAYMENT) -> Order:
    items = [
        OrderItem(product_id="p1", product_name="Valley trek", seller_id="s1", seller_name="Hill Treks",
                  price=1000, quantity=2),
        OrderItem(product_id="p2", product_name="Rafting day", seller_id="s2", seller_name="River Rafting",
                  price=400, quantity=1),
        OrderItem(product_id="p3", product_name="Sunrise walk", seller_id="s1", seller_name="Hill Treks",
                  price=300, quantity=1),
    ]
    return Order(
        id="o1",
        order_number="ORD-123456-AB12",
        user_id="u1",
        user_email="asha@example.com",
        user_name="Asha",
        items=items,
        totals=Totals(subtotal=2700, tax=486, shipping=0, discounts=0, grand_total=3186),
        shipping_address=ShippingAddress(
            name="Asha", phone="9876543210", address="12 Lake Road", city="Manali", state="HP", pincode="175131"
        ),
        status=status,
    )


def test_new_order_seeds_history():
    order = make_order()
    assert len(order.status_history) == 1
    assert order.status_history[0].status == OrderStatus.PENDING_PAYMENT
    assert order.derived_status() == order.status


def test_subtotal_must_match_lines():
    with pytest.raises(DomainValidationException):
        Order(
            id="o1", order_number=None, user_id="u1", user_email="e", user_name="n",
            items=[OrderItem(product_id="p", product_name="p", seller_id="s", seller_name="s", price=10, quantity=1)],
            totals=Totals(subtotal=11, tax=0, shipping=0, discounts=0, grand_total=11),
            shipping_address=ShippingAddress(name="a", phone="1", address="a", city="c", state="s", pincode="1"),
        )


def test_totals_equation_enforced():
    with pytest.raises(DomainValidationException):
        Totals(subtotal=100, tax=18, shipping=50, discounts=0, grand_total=100)


def test_change_status_appends_history():
    order = make_order()
    order.change_status(OrderStatus.PAID, "Payment captured")
    assert [h.status for h in order.status_history] == [OrderStatus.PENDING_PAYMENT, OrderStatus.PAID]
    assert order.derived_status() == OrderStatus.PAID


def test_fulfillment_advances_one_step_at_a_time():
    order = make_order(OrderStatus.PAID)
    assert order.advance_fulfillment() == OrderStatus.PROCESSING
    assert order.advance_fulfillment() == OrderStatus.SHIPPED
    assert order.advance_fulfillment() == OrderStatus.DELIVERED
    assert order.is_terminal()
    with pytest.raises(InvalidTransitionException):
        order.advance_fulfillment()


def test_pending_order_cannot_advance():
    with pytest.raises(InvalidTransitionException):
        make_order().advance_fulfillment()


@pytest.mark.parametrize("status,expected", [
    (OrderStatus.PENDING_PAYMENT, True),
    (OrderStatus.PAID, True),
    (OrderStatus.PROCESSING, True),
    (OrderStatus.SHIPPED, False),
    (OrderStatus.DELIVERED, False),
    (OrderStatus.CANCELLED, False),
    (OrderStatus.REFUNDED, False),
])
def test_cancellable_statuses(status, expected):
    assert make_order(status).can_be_cancelled() is expected


def test_refundable_requires_captured_payment():
    order = make_order(OrderStatus.DELIVERED)
    assert not order.can_be_refunded()
    order.payment.status = GatewayPaymentStatus.CAPTURED
    assert order.can_be_refunded()


def test_seller_totals_group_lines():
    totals = make_order().seller_totals()
    assert [(t.seller_id, t.subtotal, t.item_count) for t in totals] == [("s1", 2300, 3), ("s2", 400, 1)]


def test_refundable_amount_subtracts_previous_refunds():
    order = make_order()
    order.payment.refund_amount = 1000
    assert order.refundable_amount() == 2186


def test_order_number_format():
    number = generate_order_number(now_ms=1700000123456)
    assert re.fullmatch(r"ORD-123456-[0-9A-Z]{4}", number)


def test_merge_lines_sums_duplicates():
    from domain.order.service import CartLine

    merged = OrderDomainService.merge_lines([
        CartLine(product_id="p1", quantity=1),
        CartLine(product_id="p2", quantity=1),
        CartLine(product_id="p1", quantity=2),
        CartLine(product_id="p1", quantity=1, variant="sunrise"),
    ])
    assert [(m.product_id, m.variant, m.quantity) for m in merged] == [
        ("p1", None, 3), ("p2", None, 1), ("p1", "sunrise", 1)
    ]

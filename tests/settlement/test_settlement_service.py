import pytest

from application.dtos.checkout import MarkPayoutProcessingDTO, VerifyPaymentDTO
from domain.common.exceptions import (
    ConcurrentUpdateException,
    DomainValidationException,
    ManualInterventionRequiredException,
    OrderNotFoundException,
    SignatureMismatchException,
)
from domain.order.entity import GatewayPaymentStatus, OrderStatus
from domain.payout.entity import PayoutStatus
from domain.settlement.events import EventKind, EventSource, PaymentPayload, SettlementEvent
from domain.settlement.service import STOCK_SHORTFALL

from conftest import webhook_body


async def _load(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get_by_id(order_id)
        payouts = await uow.payouts.list_by_order(order_id)
    return order, payouts


async def _metrics(uow_factory, seller_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.sellers.get_metrics(seller_id)


def _captured(created, payment_id="pay_1", kind="payment.captured"):
    return webhook_body(kind, "payment", {
        "id": payment_id, "order_id": created.gateway_order_id, "method": "upi", "amount": created.amount,
    })


async def test_verify_captures_payment_and_commits_stock(place_order, pay, uow_factory, stock_of):
    created = await place_order()

    result = await pay(created)

    assert result.applied
    assert result.status == OrderStatus.PAID.value
    assert result.payment_status == GatewayPaymentStatus.CAPTURED.value
    assert await stock_of("p1") == 8
    assert await stock_of("p2") == 4
    order, _ = await _load(uow_factory, created.order_id)
    assert order.stock_committed
    assert order.payment.payment_id == "pay_1"
    assert order.payment.method == "upi"
    assert [h.status for h in order.status_history] == [OrderStatus.PENDING_PAYMENT, OrderStatus.PAID]
    s1 = await _metrics(uow_factory, "s1")
    assert (s1.total_sales, s1.total_orders) == (2000, 1)


async def test_verify_is_idempotent(place_order, pay, uow_factory, stock_of):
    created = await place_order()
    await pay(created)

    again = await pay(created)

    assert not again.applied
    assert again.status == OrderStatus.PAID.value
    assert await stock_of("p1") == 8
    assert (await _metrics(uow_factory, "s1")).total_orders == 1


async def test_verify_and_webhook_converge(place_order, pay, settlement, gateway, stock_of, uow_factory):
    created = await place_order()
    body = _captured(created)

    ack = await settlement.handle_webhook(body, gateway.sign_body(body))
    assert ack.applied
    result = await pay(created)
    assert not result.applied

    ack = await settlement.handle_webhook(body, gateway.sign_body(body))
    assert not ack.applied
    assert await stock_of("p1") == 8
    order, _ = await _load(uow_factory, created.order_id)
    assert [h.status for h in order.status_history].count(OrderStatus.PAID) == 1


async def test_verify_rejects_bad_signature(place_order, settlement, gateway):
    created = await place_order()
    gateway.set_payment("pay_1", created.gateway_order_id)
    req = VerifyPaymentDTO.model_validate({
        "gatewayOrderId": created.gateway_order_id, "paymentId": "pay_1", "signature": "0" * 64,
    })
    with pytest.raises(SignatureMismatchException):
        await settlement.verify_payment(req)


async def test_verify_unknown_gateway_order(catalog, settlement, gateway):
    req = VerifyPaymentDTO.model_validate({
        "gatewayOrderId": "order_x", "paymentId": "pay_1", "signature": gateway.sign("order_x", "pay_1"),
    })
    with pytest.raises(OrderNotFoundException):
        await settlement.verify_payment(req)


async def test_verify_unsigned_request_does_not_reveal_unknown_order(catalog, settlement):
    req = VerifyPaymentDTO.model_validate({
        "gatewayOrderId": "order_x", "paymentId": "pay_1", "signature": "0" * 64,
    })
    with pytest.raises(SignatureMismatchException):
        await settlement.verify_payment(req)


async def test_verify_rejects_payment_of_another_order(place_order, settlement, gateway):
    created = await place_order()
    gateway.set_payment("pay_1", "order_other")
    req = VerifyPaymentDTO.model_validate({
        "gatewayOrderId": created.gateway_order_id,
        "paymentId": "pay_1",
        "signature": gateway.sign(created.gateway_order_id, "pay_1"),
    })
    with pytest.raises(DomainValidationException):
        await settlement.verify_payment(req)


async def test_verify_authorized_payment_does_not_capture(place_order, settlement, gateway, stock_of):
    created = await place_order()
    gateway.set_payment("pay_1", created.gateway_order_id, status="authorized")
    req = VerifyPaymentDTO.model_validate({
        "gatewayOrderId": created.gateway_order_id,
        "paymentId": "pay_1",
        "signature": gateway.sign(created.gateway_order_id, "pay_1"),
    })

    result = await settlement.verify_payment(req)

    assert result.status == OrderStatus.PENDING_PAYMENT.value
    assert result.payment_status == GatewayPaymentStatus.AUTHORIZED.value
    assert await stock_of("p1") == 10


async def test_stock_shortfall_on_capture_needs_manual_intervention(place_order, pay, set_stock, stock_of,
                                                                    uow_factory):
    created = await place_order([{"productId": "p1", "quantity": 1}, {"productId": "p3", "quantity": 2}])
    await set_stock("p3", 1)

    with pytest.raises(ManualInterventionRequiredException):
        await pay(created)

    order, _ = await _load(uow_factory, created.order_id)
    assert order.status == OrderStatus.PAID
    assert order.payment.status == GatewayPaymentStatus.CAPTURED
    assert not order.stock_committed
    assert [n.reason for n in order.reconciliation_notes] == [STOCK_SHORTFALL]
    # partial decrement of p1 rolled back by hand
    assert await stock_of("p1") == 10
    assert await stock_of("p3") == 1


async def test_late_capture_on_cancelled_order_is_a_noop(place_order, checkout, settlement, gateway, stock_of,
                                                         uow_factory):
    created = await place_order()
    await checkout.cancel_order(created.order_id, "u1")
    body = _captured(created)

    ack = await settlement.handle_webhook(body, gateway.sign_body(body))

    assert not ack.applied
    order, _ = await _load(uow_factory, created.order_id)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment.status != GatewayPaymentStatus.CAPTURED
    assert await stock_of("p1") == 10


async def test_payment_failed_cancels_order_and_reverses_payouts(place_order, settlement, gateway, uow_factory):
    created = await place_order()
    body = webhook_body("payment.failed", "payment", {
        "id": "pay_9", "order_id": created.gateway_order_id, "error_description": "card declined",
    })

    ack = await settlement.handle_webhook(body, gateway.sign_body(body))

    assert ack.applied
    order, payouts = await _load(uow_factory, created.order_id)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment.status == GatewayPaymentStatus.FAILED
    assert {p.status for p in payouts} == {PayoutStatus.REVERSED}
    assert {r.status for r in order.payouts} == {PayoutStatus.REVERSED.value}


async def test_order_paid_event_marks_paid_without_touching_stock(place_order, settlement, gateway, stock_of,
                                                                  uow_factory):
    created = await place_order()
    body = webhook_body("order.paid", "order", {"id": created.gateway_order_id, "amount_paid": created.amount})

    ack = await settlement.handle_webhook(body, gateway.sign_body(body))

    assert ack.applied
    order, _ = await _load(uow_factory, created.order_id)
    assert order.status == OrderStatus.PAID
    assert await stock_of("p1") == 10

    capture = _captured(created)
    ack = await settlement.handle_webhook(capture, gateway.sign_body(capture))
    assert ack.applied
    assert await stock_of("p1") == 8


async def test_transfer_events_drive_payout(place_order, pay, settlement, payout_service, gateway, uow_factory):
    created = await place_order()
    await pay(created)
    _, payouts = await _load(uow_factory, created.order_id)

    dto = await payout_service.mark_processing(payouts[0].id, MarkPayoutProcessingDTO(transfer_id="trf_1"))
    assert dto.status == PayoutStatus.PROCESSING.value

    body = webhook_body("transfer.processed", "transfer", {"id": "trf_1"})
    ack = await settlement.handle_webhook(body, gateway.sign_body(body))
    assert ack.applied
    ack = await settlement.handle_webhook(body, gateway.sign_body(body))
    assert not ack.applied

    _, payouts = await _load(uow_factory, created.order_id)
    assert payouts[0].status == PayoutStatus.COMPLETED
    assert payouts[0].completed_at is not None
    assert payouts[1].status == PayoutStatus.PENDING


async def test_transfer_failed_records_reason(place_order, payout_service, settlement, gateway, uow_factory):
    created = await place_order()
    _, payouts = await _load(uow_factory, created.order_id)
    await payout_service.mark_processing(payouts[1].id, MarkPayoutProcessingDTO(transfer_id="trf_2"))

    body = webhook_body("transfer.failed", "transfer", {"id": "trf_2", "failure_reason": "invalid account"})
    ack = await settlement.handle_webhook(body, gateway.sign_body(body))

    assert ack.applied
    _, payouts = await _load(uow_factory, created.order_id)
    assert payouts[1].status == PayoutStatus.FAILED
    assert payouts[1].failure_reason == "invalid account"


async def test_refund_processed_webhook_refunds_paid_order(place_order, pay, settlement, gateway, uow_factory):
    created = await place_order()
    await pay(created)
    body = webhook_body("refund.processed", "refund", {"id": "rfnd_x", "payment_id": "pay_1", "amount": 2832})

    ack = await settlement.handle_webhook(body, gateway.sign_body(body))

    assert ack.applied
    order, payouts = await _load(uow_factory, created.order_id)
    assert order.status == OrderStatus.REFUNDED
    assert order.payment.refund_id == "rfnd_x"
    assert {p.status for p in payouts} == {PayoutStatus.REVERSED}


async def test_webhook_with_bad_signature_is_rejected(place_order, settlement, gateway):
    created = await place_order()
    body = _captured(created)
    with pytest.raises(SignatureMismatchException):
        await settlement.handle_webhook(body, "deadbeef")
    with pytest.raises(SignatureMismatchException):
        await settlement.handle_webhook(body, None)


async def test_malformed_webhook_looks_like_bad_signature(catalog, settlement, gateway):
    body = webhook_body("payment.captured", "payment", {"order_id": "order_1"})
    with pytest.raises(SignatureMismatchException, match="Invalid webhook request"):
        await settlement.handle_webhook(body, gateway.sign_body(body))

    garbage = b"not json"
    with pytest.raises(SignatureMismatchException, match="Invalid webhook request"):
        await settlement.handle_webhook(garbage, gateway.sign_body(garbage))


async def test_unknown_webhook_event_is_acknowledged(catalog, settlement, gateway):
    body = webhook_body("subscription.charged", "subscription", {"id": "sub_1"})
    ack = await settlement.handle_webhook(body, gateway.sign_body(body))
    assert ack.received
    assert ack.event == "subscription.charged"
    assert not ack.applied


async def test_webhook_for_unknown_order_is_acknowledged(catalog, settlement, gateway):
    body = webhook_body("payment.captured", "payment", {"id": "pay_1", "order_id": "order_nobody"})
    ack = await settlement.handle_webhook(body, gateway.sign_body(body))
    assert not ack.applied


async def test_apply_event_finds_order_by_payment_id(place_order, settlement, uow_factory):
    created = await place_order()
    await settlement.apply_event(SettlementEvent(
        kind=EventKind.PAYMENT_AUTHORIZED,
        payload=PaymentPayload(payment_id="pay_7", gateway_order_id=created.gateway_order_id),
        source=EventSource.WEBHOOK,
    ))

    result = await settlement.apply_event(SettlementEvent(
        kind=EventKind.PAYMENT_CAPTURED,
        payload=PaymentPayload(payment_id="pay_7"),
        source=EventSource.WEBHOOK,
    ))

    assert result.applied
    assert result.order.id == created.order_id
    assert result.order.status == OrderStatus.PAID


async def test_racing_captures_decrement_stock_once(place_order, settlement, uow_factory, stock_of):
    from domain.settlement.service import SettlementDomainService

    created = await place_order()
    payload = PaymentPayload(payment_id="pay_1", gateway_order_id=created.gateway_order_id, method="upi")
    # 两个投递读到同一版本的订单
    async with uow_factory(readonly=True) as uow:
        stale = await uow.orders.get_by_id(created.order_id)

    first = await settlement.apply_event(
        SettlementEvent(kind=EventKind.PAYMENT_CAPTURED, payload=payload, source=EventSource.WEBHOOK)
    )
    assert first.applied

    with pytest.raises(ConcurrentUpdateException):
        async with uow_factory() as uow:
            await SettlementDomainService(uow).capture(stale, payload)

    assert await stock_of("p1") == 8
    assert await stock_of("p2") == 4
    assert (await _metrics(uow_factory, "s1")).total_orders == 1

    retried = await settlement.apply_event(
        SettlementEvent(kind=EventKind.PAYMENT_CAPTURED, payload=payload, source=EventSource.VERIFY)
    )
    assert not retried.applied
    assert await stock_of("p1") == 8
    order, _ = await _load(uow_factory, created.order_id)
    assert order.version == stale.version + 1
    assert [h.status for h in order.status_history] == [OrderStatus.PENDING_PAYMENT, OrderStatus.PAID]


def test_event_payload_must_match_kind():
    from domain.settlement.events import TransferPayload

    with pytest.raises(TypeError):
        SettlementEvent(kind=EventKind.PAYMENT_CAPTURED, payload=TransferPayload(transfer_id="trf_1"))

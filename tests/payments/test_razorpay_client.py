import base64
import json

import httpx
import pytest

from application.dtos.payments import CreateRemoteOrder, RefundRequest
from core.settings import RazorpaySettings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentTransportError
from infrastructure.external.payments.razorpay_client import RazorpayClient, hmac_sha256_hex


CONFIG = RazorpaySettings(key_id="rzp_test_k", key_secret="secret_k", webhook_secret="whsec")


def make_client(handler) -> RazorpayClient:
    return RazorpayClient(CONFIG, transport=httpx.MockTransport(handler))


async def test_create_remote_order_posts_minor_units():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_abc", "amount": 2832, "currency": "INR",
                                         "receipt": "ORD-1", "status": "created"})

    client = make_client(handler)
    ref = await client.create_remote_order(CreateRemoteOrder(amount=2832, receipt="ORD-1", notes={"order_id": 7}))
    await client.aclose()

    assert ref.gateway_order_id == "order_abc"
    assert ref.provider == "razorpay"
    assert seen["path"] == "/v1/orders"
    assert seen["auth"] == "Basic " + base64.b64encode(b"rzp_test_k:secret_k").decode()
    assert seen["body"] == {"amount": 2832, "currency": "INR", "receipt": "ORD-1", "notes": {"order_id": "7"}}


async def test_fetch_payment_maps_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/pay_1"
        return httpx.Response(200, json={"id": "pay_1", "order_id": "order_abc", "status": "captured",
                                         "captured": True, "created_at": 1700000000, "method": "card",
                                         "amount": 2832, "currency": "INR"})

    details = await make_client(handler).fetch_payment("pay_1")

    assert details.status == "captured"
    assert details.gateway_order_id == "order_abc"
    assert details.method == "card"
    assert details.captured_at is not None


async def test_provider_error_carries_description():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "amount too low"}})

    with pytest.raises(PaymentProviderError, match="amount too low") as info:
        await make_client(handler).create_remote_order(CreateRemoteOrder(amount=1, receipt="r"))
    assert info.value.status_code == 400
    assert info.value.details["provider_code"] == "BAD_REQUEST_ERROR"


async def test_non_json_body_is_a_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(PaymentProviderError):
        await make_client(handler).fetch_payment("pay_1")


async def test_idempotent_call_retries_timeouts():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(PaymentTransportError) as info:
        await make_client(handler).fetch_payment("pay_1")
    assert info.value.timeout
    assert len(calls) == 3


async def test_refund_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PaymentTransportError) as info:
        await make_client(handler).create_refund(RefundRequest(payment_id="pay_1"))
    assert not info.value.timeout
    assert len(calls) == 1


async def test_refund_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "rfnd_1", "payment_id": "pay_1", "amount": 500, "status": "processed"})

    result = await make_client(handler).create_refund(RefundRequest(payment_id="pay_1", amount=500))

    assert result.refund_id == "rfnd_1"
    assert seen["path"] == "/v1/payments/pay_1/refund"
    assert seen["body"] == {"notes": {"reason": "Refund for order cancellation"}, "amount": 500}


def test_checkout_signature():
    client = RazorpayClient(CONFIG)
    good = hmac_sha256_hex("secret_k", b"order_abc|pay_1")
    assert client.verify_signature("order_abc", "pay_1", good)
    assert not client.verify_signature("order_abc", "pay_2", good)
    assert not client.verify_signature("order_abc", "pay_1", "")


def test_webhook_signature():
    client = RazorpayClient(CONFIG)
    body = b'{"event":"payment.captured"}'
    assert client.verify_webhook_signature(body, hmac_sha256_hex("whsec", body))
    assert not client.verify_webhook_signature(body, hmac_sha256_hex("secret_k", body))
    assert not client.verify_webhook_signature(body, None)


def test_webhook_secret_falls_back_to_key_secret():
    client = RazorpayClient(RazorpaySettings(key_id="k", key_secret="s"))
    body = b"{}"
    assert client.verify_webhook_signature(body, hmac_sha256_hex("s", body))


def test_missing_credentials():
    with pytest.raises(RuntimeError):
        RazorpayClient(RazorpaySettings())


def test_factory_rejects_unknown_provider():
    with pytest.raises(ValueError):
        get_payment_gateway("stripe")


@pytest.mark.parametrize("body", [
    {"status": "created"},
    {"id": "", "amount": 2832},
    {"id": "order_abc", "amount": "lots"},
])
async def test_create_order_without_usable_id_is_a_provider_error(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(PaymentProviderError, match="malformed order") as info:
        await make_client(handler).create_remote_order(CreateRemoteOrder(amount=2832, receipt="ORD-1"))
    assert info.value.status_code == 200


async def test_non_transport_http_errors_are_mapped_without_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.TooManyRedirects("redirect loop", request=request)

    with pytest.raises(PaymentTransportError) as info:
        await make_client(handler).fetch_payment("pay_1")
    assert len(calls) == 1
    assert info.value.timeout is False

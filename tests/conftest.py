"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE__URL"] = "sqlite+aiosqlite:///:memory:"

import functools
import hashlib
import hmac
import json
from typing import Optional

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.dtos.payments import (
    CreateRemoteOrder,
    GatewayOrderRef,
    PaymentDetails,
    RefundRequest,
    RefundResult,
)
from application.services.policy import SettlementPolicy
from domain.order.pricing import CouponRule
from infrastructure.database import create_tables
from infrastructure.models import ProductModel, SellerModel, UserModel
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


class StubGateway:
    """In-process gateway double: HMAC signatures with fixed secrets, scripted payments/refunds."""

    provider = "stub"
    key_id = "rzp_test_stub"
    key_secret = "stub_key_secret"
    webhook_secret = "stub_webhook_secret"

    def __init__(self):
        self.remote_orders: list[CreateRemoteOrder] = []
        self.refunds: list[RefundRequest] = []
        self.payments: dict[str, PaymentDetails] = {}
        self.create_error: Optional[Exception] = None
        self.refund_error: Optional[Exception] = None
        self.closed = False

    # helpers for tests
    def sign(self, gateway_order_id: str, payment_id: str) -> str:
        msg = f"{gateway_order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), msg, hashlib.sha256).hexdigest()

    def sign_body(self, body: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), body, hashlib.sha256).hexdigest()

    def set_payment(self, payment_id: str, gateway_order_id: str, status: str = "captured", **kw) -> None:
        self.payments[payment_id] = PaymentDetails(
            payment_id=payment_id,
            gateway_order_id=gateway_order_id,
            status=status,
            method=kw.get("method", "upi"),
            amount=kw.get("amount"),
            error_description=kw.get("error_description"),
            provider=self.provider,
        )

    # PaymentGateway
    async def create_remote_order(self, req: CreateRemoteOrder) -> GatewayOrderRef:
        if self.create_error is not None:
            raise self.create_error
        self.remote_orders.append(req)
        return GatewayOrderRef(
            gateway_order_id=f"order_{len(self.remote_orders)}",
            amount=req.amount,
            currency=req.currency,
            receipt=req.receipt,
            provider=self.provider,
        )

    def verify_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        return hmac.compare_digest(self.sign(gateway_order_id, payment_id), signature or "")

    async def fetch_payment(self, payment_id: str) -> PaymentDetails:
        return self.payments[payment_id]

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append(req)
        return RefundResult(
            refund_id=f"rfnd_{len(self.refunds)}",
            payment_id=req.payment_id,
            amount=req.amount,
            status="processed",
            provider=self.provider,
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(self.sign_body(raw_body), signature)

    async def aclose(self) -> None:
        self.closed = True


def webhook_body(kind: str, entity_key: str, entity: dict) -> bytes:
    return json.dumps({"event": kind, "payload": {entity_key: {"entity": entity}}}).encode()


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
async def catalog(session_factory):
    """Two sellers, four products (one inactive), two buyers."""
    async with session_factory() as session:
        session.add_all([
            UserModel(id="u1", email="asha@example.com", name="Asha"),
            UserModel(id="u2", email="ravi@example.com", name="Ravi"),
            SellerModel(id="s1", name="Hill Treks"),
            SellerModel(id="s2", name="River Rafting"),
            ProductModel(id="p1", title="Valley trek", price=1000, stock=10, seller_id="s1", seller_name="Hill Treks"),
            ProductModel(id="p2", title="Rafting day", price=400, stock=5, seller_id="s2", seller_name="River Rafting"),
            ProductModel(id="p3", title="Sunrise walk", price=300, stock=2, seller_id="s1", seller_name="Hill Treks"),
            ProductModel(id="p4", title="Closed tour", price=900, stock=9, seller_id="s2",
                         seller_name="River Rafting", is_active=False),
        ])
        await session.commit()


@pytest.fixture
def set_stock(session_factory):
    async def _set(product_id: str, stock: int) -> None:
        async with session_factory() as session:
            await session.execute(update(ProductModel).where(ProductModel.id == product_id).values(stock=stock))
            await session.commit()
    return _set


@pytest.fixture
def stock_of(uow_factory):
    async def _get(product_id: str) -> int:
        async with uow_factory(readonly=True) as uow:
            product = await uow.products.get_by_id(product_id)
        return product.stock
    return _get


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def policy():
    return SettlementPolicy(
        coupons={
            "SAVE10": CouponRule(code="SAVE10", type="percentage", value=10),
            "FLAT100": CouponRule(code="FLAT100", type="fixed", value=100),
        },
        max_apply_retries=3,
    )


@pytest.fixture
def shipping():
    return {
        "name": "Asha",
        "phone": "9876543210",
        "address": "12 Lake Road",
        "city": "Manali",
        "state": "HP",
        "pincode": "175131",
    }


@pytest.fixture
def checkout(uow_factory, gateway, policy):
    from application.services.checkout_service import CheckoutApplicationService
    return CheckoutApplicationService(uow_factory=uow_factory, gateway=gateway, policy=policy)


@pytest.fixture
def settlement(uow_factory, gateway, policy):
    from application.services.settlement_service import SettlementApplicationService
    return SettlementApplicationService(uow_factory=uow_factory, gateway=gateway, policy=policy)


@pytest.fixture
def payout_service(uow_factory):
    from application.services.payout_service import PayoutApplicationService
    return PayoutApplicationService(uow_factory)


@pytest.fixture
def place_order(catalog, checkout, shipping):
    """Create an order for u1; default cart is scenario A (2 x p1 + 1 x p2)."""
    from application.dtos.checkout import CreateOrderDTO

    async def _place(items=None, user_id="u1", coupon=None):
        items = items or [{"productId": "p1", "quantity": 2}, {"productId": "p2", "quantity": 1}]
        req = CreateOrderDTO.model_validate({"items": items, "shippingAddress": shipping, "coupon": coupon})
        return await checkout.create_order(user_id, req)
    return _place


@pytest.fixture
def pay(gateway, settlement):
    """Capture payment for a created order through the verify path."""
    from application.dtos.checkout import VerifyPaymentDTO

    async def _pay(created, payment_id="pay_1"):
        gateway.set_payment(payment_id, created.gateway_order_id, status="captured", amount=created.amount)
        req = VerifyPaymentDTO.model_validate({
            "razorpayOrderId": created.gateway_order_id,
            "razorpayPaymentId": payment_id,
            "razorpaySignature": gateway.sign(created.gateway_order_id, payment_id),
        })
        return await settlement.verify_payment(req)
    return _pay

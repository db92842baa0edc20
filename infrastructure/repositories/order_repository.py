"""
订单仓储实现 - 使用SQLAlchemy实现数据访问

写入均为条件写：UPDATE orders ... WHERE id = :id AND version = :expected。
"""
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentUpdateException
from domain.order.entity import (
    AppliedCoupon,
    GatewayPaymentStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentState,
    PayoutRef,
    ReconciliationNote,
    ShippingAddress,
    StatusChange,
    Totals,
)
from domain.order.repository import OrderNumberConflict, OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel, OrderStatusHistoryModel
from infrastructure.models.payout import PayoutModel


logger = get_logger(__name__)


def aware(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite 取回的时间不带时区，统一按 UTC 处理"""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _note_to_json(note: ReconciliationNote) -> dict:
    return {"reason": note.reason, "created_at": note.created_at.isoformat(), "details": note.details}


def _note_from_json(data: dict) -> ReconciliationNote:
    return ReconciliationNote(
        reason=data["reason"],
        created_at=datetime.fromisoformat(data["created_at"]),
        details=data.get("details") or {},
    )


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel, payouts: List[PayoutModel]) -> Order:
        """将数据库模型转换为领域实体"""
        coupon = AppliedCoupon(**model.coupon) if model.coupon else None
        return Order(
            id=model.id,
            order_number=model.order_number,
            user_id=model.user_id,
            user_email=model.user_email,
            user_name=model.user_name,
            items=[
                OrderItem(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    seller_id=i.seller_id,
                    seller_name=i.seller_name,
                    price=i.price,
                    quantity=i.quantity,
                    variant=i.variant,
                    sku=i.sku,
                )
                for i in model.items
            ],
            totals=Totals(
                subtotal=model.subtotal,
                tax=model.tax,
                shipping=model.shipping,
                discounts=model.discounts,
                grand_total=model.grand_total,
            ),
            shipping_address=ShippingAddress(**model.shipping_address),
            status=OrderStatus(model.status),
            payment=PaymentState(
                gateway_order_id=model.gateway_order_id,
                payment_id=model.payment_id,
                signature=model.payment_signature,
                status=GatewayPaymentStatus(model.payment_status),
                method=model.payment_instrument,
                amount=model.payment_amount,
                currency=model.currency,
                captured_at=aware(model.captured_at),
                refunded_at=aware(model.refunded_at),
                refund_amount=model.refund_amount,
                refund_id=model.refund_id,
            ),
            payouts=[
                PayoutRef(
                    payout_id=p.id,
                    seller_id=p.seller_id,
                    seller_name=p.seller_name,
                    amount=p.gross_amount,
                    transfer_id=p.transfer_id,
                    status=p.status,
                )
                for p in payouts
            ],
            status_history=[
                StatusChange(status=OrderStatus(h.status), timestamp=aware(h.created_at), note=h.note)
                for h in model.history
            ],
            coupon=coupon,
            payment_method=model.payment_method,
            stock_committed=model.stock_committed,
            reconciliation_notes=[_note_from_json(n) for n in (model.reconciliation_notes or [])],
            version=model.version,
            created_at=aware(model.created_at),
            updated_at=aware(model.updated_at),
        )

    def _mutable_values(self, order: Order) -> dict:
        """可变列（订单行、金额、用户快照创建后不再写）"""
        p = order.payment
        return {
            "status": order.status.value,
            "gateway_order_id": p.gateway_order_id,
            "payment_id": p.payment_id,
            "payment_signature": p.signature,
            "payment_status": p.status.value,
            "payment_instrument": p.method,
            "payment_amount": p.amount,
            "currency": p.currency,
            "captured_at": p.captured_at,
            "refunded_at": p.refunded_at,
            "refund_amount": p.refund_amount,
            "refund_id": p.refund_id,
            "stock_committed": order.stock_committed,
            "reconciliation_notes": [_note_to_json(n) for n in order.reconciliation_notes],
            "updated_at": order.updated_at or datetime.now(timezone.utc),
        }

    def _to_model(self, order: Order) -> OrderModel:
        t = order.totals
        model = OrderModel(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            user_email=order.user_email,
            user_name=order.user_name,
            subtotal=t.subtotal,
            tax=t.tax,
            shipping=t.shipping,
            discounts=t.discounts,
            grand_total=t.grand_total,
            shipping_address=dict(vars(order.shipping_address)),
            coupon=dict(vars(order.coupon)) if order.coupon else None,
            payment_method=order.payment_method,
            version=order.version,
            created_at=order.created_at or datetime.now(timezone.utc),
            **self._mutable_values(order),
        )
        model.items = [
            OrderItemModel(
                position=idx,
                product_id=i.product_id,
                product_name=i.product_name,
                seller_id=i.seller_id,
                seller_name=i.seller_name,
                price=i.price,
                quantity=i.quantity,
                variant=i.variant,
                sku=i.sku,
            )
            for idx, i in enumerate(order.items)
        ]
        model.history = [
            OrderStatusHistoryModel(status=h.status.value, note=h.note, created_at=h.timestamp)
            for h in order.status_history
        ]
        return model

    async def _payouts_for(self, order_id: str) -> List[PayoutModel]:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.order_id == order_id)
            .order_by(PayoutModel.created_at, PayoutModel.seller_id, PayoutModel.id)
        )
        return list(result.scalars().all())

    async def _one(self, *criteria) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(*criteria).execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return self._to_entity(model, await self._payouts_for(model.id))

    async def _order_number_taken(self, order_number: str) -> bool:
        taken = await self.session.scalar(
            select(func.count()).select_from(OrderModel).where(OrderModel.order_number == order_number)
        )
        return bool(taken)

    async def create(self, order: Order) -> Order:
        """
        创建订单（订单号冲突抛出 OrderNumberConflict）

        插入放在 SAVEPOINT 中：并发写入触发唯一约束时只回滚保存点，
        会话仍可用，调用方可换号重试。
        """
        if await self._order_number_taken(order.order_number):
            logger.warning("order_number_conflict", order_number=order.order_number)
            raise OrderNumberConflict(order.order_number)
        try:
            async with self.session.begin_nested():
                self.session.add(self._to_model(order))
                await self.session.flush()
        except IntegrityError as e:
            if "order_number" in str(e).lower():
                logger.warning("order_number_conflict", order_number=order.order_number, source="constraint")
                raise OrderNumberConflict(order.order_number) from e
            raise
        logger.info("order_persisted", order_id=order.id, order_number=order.order_number)
        return order

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        return await self._one(OrderModel.id == order_id)

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        return await self._one(OrderModel.order_number == order_number)

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        return await self._one(OrderModel.gateway_order_id == gateway_order_id)

    async def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        return await self._one(OrderModel.payment_id == payment_id)

    async def update(self, order: Order) -> Order:
        """条件更新；成功后 order.version + 1 并追加新的状态历史"""
        expected = order.version
        order.updated_at = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id, OrderModel.version == expected)
            .values(version=expected + 1, **self._mutable_values(order))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("order_update_conflict", order_id=order.id, expected_version=expected)
            raise ConcurrentUpdateException("Order", order.id, expected)

        persisted = await self.session.scalar(
            select(func.count()).select_from(OrderStatusHistoryModel).where(OrderStatusHistoryModel.order_id == order.id)
        )
        for h in order.status_history[persisted:]:
            self.session.add(
                OrderStatusHistoryModel(order_id=order.id, status=h.status.value, note=h.note, created_at=h.timestamp)
            )
        await self.session.flush()
        order.version = expected + 1
        return order

    async def list_by_user(
        self,
        user_id: str,
        skip: int = 0,
        limit: int = 20,
        status: Optional[OrderStatus] = None,
    ) -> List[Order]:
        stmt = select(OrderModel).where(OrderModel.user_id == user_id)
        if status is not None:
            stmt = stmt.where(OrderModel.status == status.value)
        stmt = stmt.order_by(OrderModel.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        models = result.scalars().all()
        return [self._to_entity(m, await self._payouts_for(m.id)) for m in models]

    async def count_by_user(self, user_id: str, status: Optional[OrderStatus] = None) -> int:
        stmt = select(func.count()).select_from(OrderModel).where(OrderModel.user_id == user_id)
        if status is not None:
            stmt = stmt.where(OrderModel.status == status.value)
        return int(await self.session.scalar(stmt) or 0)

"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    订单表

    version 为乐观锁版本号，所有更新都以 WHERE id = :id AND version = :v 条件写入
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True)
    order_number = Column(String(32), unique=True, nullable=False, comment="订单号 ORD-xxxxxx-XXXX")

    # 下单用户快照
    user_id = Column(String(64), nullable=False, index=True)
    user_email = Column(String(255), nullable=False)
    user_name = Column(String(255), nullable=False)

    status = Column(String(32), nullable=False, default="PENDING_PAYMENT", index=True,
                    comment="PENDING_PAYMENT/PAID/PROCESSING/SHIPPED/DELIVERED/CANCELLED/REFUNDED")

    # 金额（最小货币单位）
    subtotal = Column(BigInteger, nullable=False)
    tax = Column(BigInteger, nullable=False)
    shipping = Column(BigInteger, nullable=False)
    discounts = Column(BigInteger, nullable=False, default=0)
    grand_total = Column(BigInteger, nullable=False)

    shipping_address = Column(JSON, nullable=False)
    coupon = Column(JSON, nullable=True)
    payment_method = Column(String(32), nullable=False, default="razorpay")

    # 网关支付子记录
    gateway_order_id = Column(String(64), unique=True, nullable=True)
    payment_id = Column(String(64), nullable=True, index=True)
    payment_signature = Column(String(255), nullable=True)
    payment_status = Column(String(32), nullable=False, default="created",
                            comment="created/authorized/captured/refunded/failed")
    payment_instrument = Column(String(32), nullable=True, comment="card/upi/netbanking...")
    payment_amount = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    captured_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refund_amount = Column(BigInteger, nullable=False, default=0)
    refund_id = Column(String(64), nullable=True)

    stock_committed = Column(Boolean, nullable=False, default=False)
    reconciliation_notes = Column(JSON, nullable=False, default=list)

    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    items = relationship(
        "OrderItemModel",
        order_by="OrderItemModel.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    history = relationship(
        "OrderStatusHistoryModel",
        order_by="OrderStatusHistoryModel.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, number={self.order_number}, status={self.status}, v={self.version})>"


class OrderItemModel(Base):
    """订单行（创建后不再修改）"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    seller_id = Column(String(64), nullable=False, index=True)
    seller_name = Column(String(255), nullable=False)
    price = Column(BigInteger, nullable=False)
    quantity = Column(Integer, nullable=False)
    variant = Column(String(100), nullable=True)
    sku = Column(String(100), nullable=True)


class OrderStatusHistoryModel(Base):
    """订单状态历史（只追加）"""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    note = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

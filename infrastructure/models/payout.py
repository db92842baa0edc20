"""
结算单数据库模型
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON, Index, ForeignKey
from datetime import datetime, timezone

from .base import Base


class PayoutModel(Base):
    __tablename__ = "payouts"

    id = Column(String(32), primary_key=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True, comment="来源订单")
    order_ids = Column(JSON, nullable=False, default=list, comment="覆盖的订单ID列表")
    seller_id = Column(String(64), nullable=False)
    seller_name = Column(String(255), nullable=False)

    gross_amount = Column(BigInteger, nullable=False)
    platform_fee = Column(BigInteger, nullable=False, default=0)
    processing_fee = Column(BigInteger, nullable=False, default=0)
    net_amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    method = Column(String(32), nullable=False, default="razorpay_transfer")

    status = Column(String(32), nullable=False, default="pending",
                    comment="pending/processing/completed/failed/reversed")
    transfer_id = Column(String(64), unique=True, nullable=True)
    failure_reason = Column(Text, nullable=True)

    settlement_start = Column(DateTime(timezone=True), nullable=True)
    settlement_end = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_payouts_seller_created", "seller_id", "created_at"),
        Index("ix_payouts_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<PayoutModel(id={self.id}, seller={self.seller_id}, status={self.status})>"

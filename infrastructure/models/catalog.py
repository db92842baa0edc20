"""
目录协作方表（商品/用户/卖家）

由外部子系统维护，结算核心只读取快照并做库存与销售指标的原子增减。
"""
from sqlalchemy import Column, Integer, BigInteger, String, Boolean, CheckConstraint

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    price = Column(BigInteger, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    seller_id = Column(String(64), nullable=False, index=True)
    seller_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    sku = Column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="stock_non_negative"),
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)


class SellerModel(Base):
    __tablename__ = "sellers"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    total_sales = Column(BigInteger, nullable=False, default=0)
    total_orders = Column(Integer, nullable=False, default=0)

"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel, OrderStatusHistoryModel
from .payout import PayoutModel
from .catalog import ProductModel, UserModel, SellerModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "OrderStatusHistoryModel",
    "PayoutModel",
    "ProductModel",
    "UserModel",
    "SellerModel",
]

"""Store Service models package."""

from services.store_service.models.catalog import BuyerProfile, MarketConfig, Product
from services.store_service.models.commerce import Cart, CartItem, Order, OrderItem
from services.store_service.models.enums import (
    ApprovalStatus,
    OrderStatus,
    PaymentStatus,
)

__all__ = [
    "ApprovalStatus",
    "BuyerProfile",
    "Cart",
    "CartItem",
    "MarketConfig",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Product",
]

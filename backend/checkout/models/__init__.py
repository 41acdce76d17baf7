# Database models
from checkout.models.order import Order, OrderStatus, PaymentMethod, SubscriptionPeriod

__all__ = [
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "SubscriptionPeriod",
]

"""
产品目录：静态配置，按产品 ID 查找
"""
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

from checkout.models.order import SubscriptionPeriod


class Product(BaseModel):
    """产品描述"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: Decimal
    price_label: str
    is_subscription: bool = False
    subscription_period: Optional[SubscriptionPeriod] = None


PRODUCTS: Dict[str, Product] = {
    "basic-onetime": Product(
        id="basic-onetime",
        name="基础版（一次性购买）",
        price=Decimal("9.90"),
        price_label="一次性",
    ),
    "pro-monthly": Product(
        id="pro-monthly",
        name="专业版（月付）",
        price=Decimal("29.90"),
        price_label="/月",
        is_subscription=True,
        subscription_period=SubscriptionPeriod.MONTHLY,
    ),
    "pro-yearly": Product(
        id="pro-yearly",
        name="专业版（年付）",
        price=Decimal("299.00"),
        price_label="/年",
        is_subscription=True,
        subscription_period=SubscriptionPeriod.YEARLY,
    ),
}

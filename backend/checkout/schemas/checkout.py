"""
收银台相关Schema
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from checkout.core.dates import as_utc
from checkout.models.order import PaymentMethod
from checkout.services.catalog import Product


class ProductListResponse(BaseModel):
    """产品列表响应"""
    products: List[Product]
    total: int


class PaymentUrlCreate(BaseModel):
    """获取支付链接"""
    product_id: str = Field(..., min_length=1)
    pay_type: str = PaymentMethod.ALIPAY.value


class RepayRequest(BaseModel):
    """为待支付订单重新生成支付链接"""
    out_trade_no: str = Field(..., min_length=1)


class PaymentUrlResponse(BaseModel):
    """支付链接响应"""
    url: str
    out_trade_no: str


class OrderResponse(BaseModel):
    """订单响应（购买记录展示用）"""
    id: str
    product_id: str
    name: str
    money: Decimal
    out_trade_no: str
    trade_no: Optional[str] = None
    type: str
    status: str
    is_subscription: bool
    subscription_period: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_serializer("money")
    def _money(self, value: Decimal) -> str:
        return f"{value:.2f}"

    @field_validator(
        "subscription_start_date", "subscription_end_date", "created_at", "updated_at"
    )
    @classmethod
    def _utc(cls, value):
        return as_utc(value)


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


class SubscriptionResponse(BaseModel):
    """当前有效订阅"""
    out_trade_no: str
    subscription_period: str
    subscription_start_date: datetime
    subscription_end_date: datetime

    class Config:
        from_attributes = True

    @field_validator("subscription_start_date", "subscription_end_date")
    @classmethod
    def _utc(cls, value):
        return as_utc(value)

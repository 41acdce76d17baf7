"""
zpay 订单模型：一次购买尝试一行
"""
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Numeric, String
from sqlalchemy.sql import func

from checkout.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"  # 只由外部策略设置，本服务只做 pending -> paid


class PaymentMethod(str, enum.Enum):
    ALIPAY = "alipay"
    WXPAY = "wxpay"


class SubscriptionPeriod(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Order(Base):
    """订单表"""
    __tablename__ = "zpay_orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)

    # 产品信息（创建后不可变）
    product_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    money = Column(Numeric(10, 2), nullable=False)

    # 订单信息
    out_trade_no = Column(String(32), unique=True, nullable=False, index=True)  # 商户订单号（我方生成）
    trade_no = Column(String(64), nullable=True)  # 网关订单号，支付成功后写入一次
    type = Column(String(16), nullable=False, default=PaymentMethod.ALIPAY.value)  # alipay, wxpay
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)

    # 订阅信息：开始/结束时间与 paid 状态同一次更新写入
    is_subscription = Column(Boolean, nullable=False, default=False)
    subscription_period = Column(String(16), nullable=True)  # monthly, yearly, null(一次性)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        # 查询用户最新的未过期订阅（计算续期开始时间）
        Index(
            "ix_zpay_orders_active_subscription",
            "user_id", "is_subscription", "status", "subscription_end_date",
        ),
    )

    def __repr__(self) -> str:
        return f"<Order {self.out_trade_no} {self.status}>"

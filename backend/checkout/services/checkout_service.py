"""
收银台服务：创建待支付订单并生成 zpay 支付链接，或为已有待支付订单重新生成链接
"""
import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from checkout.core.config import GatewayConfig
from checkout.core.dates import utcnow
from checkout.core.exceptions import (
    AuthenticationRequired,
    DuplicateOrderNumber,
    NotFoundError,
    PersistenceFailure,
    ProductNotFound,
    ValidationError,
)
from checkout.core.signing import SIGN_TYPE, sign_params
from checkout.models.order import Order, PaymentMethod
from checkout.services.catalog import Product
from checkout.services.order_ledger import OrderLedger

logger = logging.getLogger(__name__)

PAYMENT_METHODS = frozenset(m.value for m in PaymentMethod)


def generate_out_trade_no(now: Optional[datetime] = None) -> str:
    """生成订单号：YYYYMMDDHHmmss + 3位随机数（唯一性靠数据库约束兜底）"""
    now = now or utcnow()
    return f"{now:%Y%m%d%H%M%S}{secrets.randbelow(1000):03d}"


def format_money(value: Decimal) -> str:
    """金额统一两位小数，保证下单与重新支付的签名串一致"""
    return f"{Decimal(value):.2f}"


class CheckoutService:
    """收银台服务类"""

    def __init__(
        self,
        db: AsyncSession,
        config: GatewayConfig,
        catalog: Mapping[str, Product],
        order_no_factory: Callable[[], str] = generate_out_trade_no,
    ):
        self.ledger = OrderLedger(db)
        self.config = config
        self.catalog = catalog
        self.order_no_factory = order_no_factory

    async def create_payment_url(
        self,
        user_id: Optional[str],
        product_id: str,
        pay_type: str = PaymentMethod.ALIPAY.value,
    ) -> Tuple[Order, str]:
        """创建待支付订单，返回 (订单, 支付链接)"""
        if not user_id:
            raise AuthenticationRequired()
        if pay_type not in PAYMENT_METHODS:
            raise ValidationError(f"不支持的支付方式: {pay_type}", message="不支持的支付方式")
        product = self.catalog.get(product_id)
        if product is None:
            raise ProductNotFound(f"产品不存在: {product_id}")
        config = self.config.require_complete()

        attempts = max(1, config.order_no_max_attempts)
        for attempt in range(1, attempts + 1):
            out_trade_no = self.order_no_factory()
            order = Order(
                user_id=user_id,
                product_id=product.id,
                name=product.name,
                money=product.price,
                out_trade_no=out_trade_no,
                type=pay_type,
                is_subscription=product.is_subscription,
                subscription_period=product.subscription_period.value if product.subscription_period else None,
            )
            try:
                # 订单必须先落库再返回链接，否则回调可能早于订单可查
                order = await self.ledger.insert_pending(order)
            except DuplicateOrderNumber:
                logger.warning("订单号冲突，重新生成 (第 %s/%s 次): %s", attempt, attempts, out_trade_no)
                continue
            logger.info(
                "创建待支付订单 out_trade_no=%s user=%s product=%s money=%s type=%s",
                order.out_trade_no, user_id, product.id, format_money(product.price), pay_type,
            )
            return order, self.build_payment_url(order)

        raise PersistenceFailure(f"订单号连续冲突 {attempts} 次")

    async def repay_url(self, user_id: Optional[str], out_trade_no: str) -> Tuple[Order, str]:
        """为当前用户自己的待支付订单重新生成支付链接"""
        if not user_id:
            raise AuthenticationRequired()
        if not out_trade_no:
            raise ValidationError("缺少订单号", message="缺少订单号")
        config = self.config.require_complete()

        order = await self.ledger.get_pending_for_user(user_id, out_trade_no)
        if order is None:
            # 已支付和别人的订单一样按不存在处理，不泄露订单是否存在
            raise NotFoundError(f"无可支付订单: {out_trade_no} user={user_id}")
        return order, self.build_payment_url(order, config)

    def build_params(self, order: Order, config: Optional[GatewayConfig] = None) -> Dict[str, str]:
        """由订单字段构建待签名参数（不使用任何前端传入的值）"""
        config = config or self.config
        return {
            "pid": config.pid,
            "money": format_money(order.money),
            "name": order.name,
            "notify_url": config.notify_url,
            "out_trade_no": order.out_trade_no,
            "return_url": config.return_url,
            "type": order.type,
        }

    def build_payment_url(self, order: Order, config: Optional[GatewayConfig] = None) -> str:
        config = config or self.config
        params = self.build_params(order, config)
        params["sign"] = sign_params(params, config.key)
        params["sign_type"] = SIGN_TYPE
        return f"{config.gateway_url}?{urlencode(params)}"

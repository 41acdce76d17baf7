"""
zpay 异步通知处理

处理要点：
  1. 签名验证：防止伪造通知
  2. 金额校验：防止金额篡改或把通知套用到更便宜的订单
  3. 幂等处理：已支付订单直接确认，不重复计算订阅时间
  4. 并发安全：条件更新（WHERE status = 'pending'），只有一个回调能完成状态迁移
  5. 订阅续期：未过期的订阅在其结束时间上叠加

签名错误、金额不符、订单不存在抛异常（不返回 success，由网关重试并告警）；
非成功状态、重复通知、并发落败返回结果（应答 success）；
数据库失败抛 PersistenceFailure（应答失败让网关重试，不能当作已处理）。
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, DecimalException
from typing import Callable, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from checkout.core.config import GatewayConfig
from checkout.core.dates import advance_period, as_utc, utcnow
from checkout.core.exceptions import AmountMismatch, NotFoundError, SignatureMismatch
from checkout.core.signing import build_sign_string, sign_params, verify_sign
from checkout.models.order import Order, OrderStatus
from checkout.services.order_ledger import OrderLedger

logger = logging.getLogger(__name__)

TRADE_SUCCESS = "TRADE_SUCCESS"


class ReconcileOutcome(str, enum.Enum):
    PAID = "paid"                  # 本次回调完成了 pending -> paid
    ALREADY_PAID = "already_paid"  # 重复通知，订单早已支付
    LOST_RACE = "lost_race"        # 并发回调中落败，别的请求已完成迁移
    IGNORED = "ignored"            # 非支付成功状态，仅确认收到


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    out_trade_no: str
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None


class WebhookService:
    """zpay 回调对账服务"""

    def __init__(
        self,
        db: AsyncSession,
        config: GatewayConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = OrderLedger(db)
        self.config = config
        self.clock = clock

    async def handle_notify(self, params: Mapping[str, str]) -> ReconcileResult:
        """处理一次回调通知，params 为原样收到的全部字段"""
        key = self.config.require_key()
        out_trade_no = params.get("out_trade_no", "")

        # 1. 签名验证
        if not verify_sign(params, key):
            logger.error(
                "签名验证失败 out_trade_no=%s received=%s expected=%s sign_string=%s",
                out_trade_no, params.get("sign", ""), sign_params(params, key), build_sign_string(params),
            )
            raise SignatureMismatch(f"签名验证失败: {out_trade_no}")

        # 2. 只有 TRADE_SUCCESS 才是支付成功，其他状态确认收到即可
        trade_status = params.get("trade_status", "")
        if trade_status != TRADE_SUCCESS:
            logger.info("收到非成功状态通知 out_trade_no=%s trade_status=%s", out_trade_no, trade_status)
            return ReconcileResult(ReconcileOutcome.IGNORED, out_trade_no)

        # 3. 查询本地订单
        order = await self.ledger.get_by_out_trade_no(out_trade_no)
        if order is None:
            logger.error("支付成功通知对应的订单不存在 out_trade_no=%s trade_no=%s", out_trade_no, params.get("trade_no"))
            raise NotFoundError(f"订单不存在: {out_trade_no}", message="订单不存在")

        # 4. 幂等：已支付直接确认，不重新计算订阅时间
        if order.status == OrderStatus.PAID.value:
            logger.info("重复通知，订单已支付 out_trade_no=%s", out_trade_no)
            return self._settled(ReconcileOutcome.ALREADY_PAID, order)

        # 5. 金额校验
        if not self._amount_matches(params.get("money", ""), order.money):
            logger.error(
                "金额不匹配 out_trade_no=%s received=%s expected=%s",
                out_trade_no, params.get("money", ""), order.money,
            )
            raise AmountMismatch(f"金额不匹配: {out_trade_no}")

        # 6. 订阅续期：仅在条件更新里与状态一起写入
        now = self.clock()
        values = {
            "trade_no": params.get("trade_no") or None,
            "updated_at": now,
        }
        window = None
        if order.is_subscription and order.subscription_period:
            window = await self.compute_subscription_window(order, now)
            values["subscription_start_date"], values["subscription_end_date"] = window

        # 7. 条件更新
        changed = await self.ledger.mark_paid_if_pending(out_trade_no, values)
        if not changed:
            logger.info("订单已被并发请求处理 out_trade_no=%s", out_trade_no)
            return ReconcileResult(ReconcileOutcome.LOST_RACE, out_trade_no)

        logger.info(
            "订单支付成功 out_trade_no=%s trade_no=%s money=%s user=%s product=%s",
            out_trade_no, values["trade_no"], params.get("money"), order.user_id, order.product_id,
        )
        start, end = window or (None, None)
        return ReconcileResult(ReconcileOutcome.PAID, out_trade_no, start, end)

    async def compute_subscription_window(self, order: Order, now: datetime) -> Tuple[datetime, datetime]:
        """
        计算新订阅的 [开始, 结束)。
        用户有未过期订阅时从其结束时间开始叠加，例：
            2025-03-15 订阅一个月（到期 2025-04-15），2025-04-01 再订阅一个月，
            新订阅为 2025-04-15 ~ 2025-05-15
        否则从 now 开始。
        """
        current = await self.ledger.latest_active_subscription(order.user_id, now)
        if current is not None:
            start = as_utc(current.subscription_end_date)
        else:
            start = as_utc(now)
        return start, advance_period(start, order.subscription_period)

    def _amount_matches(self, received: str, expected: Decimal) -> bool:
        try:
            received_money = Decimal(received)
            if not received_money.is_finite():
                return False
            return abs(received_money - Decimal(expected)) <= self.config.amount_tolerance
        except (DecimalException, TypeError):
            # 非数字或指数过大（Overflow）都按金额不符处理
            return False

    @staticmethod
    def _settled(outcome: ReconcileOutcome, order: Order) -> ReconcileResult:
        return ReconcileResult(
            outcome,
            order.out_trade_no,
            as_utc(order.subscription_start_date),
            as_utc(order.subscription_end_date),
        )

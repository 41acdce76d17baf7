"""
测试辅助函数
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from checkout.core.signing import SIGN_TYPE, sign_params
from checkout.models.order import Order, OrderStatus
from checkout.services.order_ledger import OrderLedger

TEST_KEY = "test-merchant-key"


class FixedClock:
    """可手动拨动的时钟"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def add_order(session, **overrides) -> Order:
    """直接写入一条订单（绕过下单流程，用来准备历史数据）"""
    fields = dict(
        user_id="user-1",
        product_id="basic-onetime",
        name="基础版（一次性购买）",
        money=Decimal("9.90"),
        out_trade_no="20250401000000001",
        type="alipay",
        status=OrderStatus.PENDING.value,
        is_subscription=False,
        subscription_period=None,
    )
    fields.update(overrides)
    order = Order(**fields)
    session.add(order)
    await session.commit()
    await session.refresh(order)
    return order


async def load_order(session_factory, out_trade_no: str) -> Optional[Order]:
    """用新 session 读库里的真实状态"""
    async with session_factory() as session:
        return await OrderLedger(session).get_by_out_trade_no(out_trade_no)


def notify_params(
    out_trade_no: str,
    money: str = "9.90",
    trade_status: str = "TRADE_SUCCESS",
    key: str = TEST_KEY,
    **extra: str,
) -> Dict[str, str]:
    """构造一条带正确签名的 zpay 回调"""
    params = {
        "pid": "1001",
        "name": "测试商品",
        "money": money,
        "out_trade_no": out_trade_no,
        "trade_no": f"T{out_trade_no}",
        "param": "",
        "trade_status": trade_status,
        "type": "alipay",
    }
    params.update(extra)
    params["sign"] = sign_params(params, key)
    params["sign_type"] = SIGN_TYPE
    return params

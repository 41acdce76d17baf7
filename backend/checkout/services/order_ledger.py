"""
订单账本：zpay_orders 表的读写

并发安全只依赖两点：
- out_trade_no 唯一约束（订单号冲突由插入失败发现，不做先查后插）
- mark_paid_if_pending 的条件更新（UPDATE ... WHERE status = 'pending'），
  多个回调并发时只有一个能拿到受影响行
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from checkout.core.exceptions import DuplicateOrderNumber, PersistenceFailure
from checkout.models.order import Order, OrderStatus

logger = logging.getLogger(__name__)


class OrderLedger:
    """订单账本"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert_pending(self, order: Order) -> Order:
        """
        插入待支付订单；订单号已存在时抛 DuplicateOrderNumber。
        提交成功后回读失败同样抛 PersistenceFailure，此时该 pending 订单已落库，
        调用方重试只会多出一条无人支付的 pending 订单。
        """
        order.status = OrderStatus.PENDING.value
        self.db.add(order)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateOrderNumber(f"订单号已存在: {order.out_trade_no}") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailure(f"创建订单失败: {e}") from e
        try:
            await self.db.refresh(order)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"订单已创建但回读失败: {order.out_trade_no}: {e}") from e
        return order

    async def get_by_out_trade_no(self, out_trade_no: str) -> Optional[Order]:
        """按商户订单号查询（总是读库里的最新值）"""
        stmt = (
            select(Order)
            .where(Order.out_trade_no == out_trade_no)
            .execution_options(populate_existing=True)
        )
        return await self._scalar_one_or_none(stmt)

    async def get_pending_for_user(self, user_id: str, out_trade_no: str) -> Optional[Order]:
        """查询属于该用户且仍待支付的订单，他人订单或已支付订单都返回 None"""
        stmt = select(Order).where(
            and_(
                Order.out_trade_no == out_trade_no,
                Order.user_id == user_id,
                Order.status == OrderStatus.PENDING.value,
            )
        )
        return await self._scalar_one_or_none(stmt)

    async def latest_active_subscription(self, user_id: str, now: datetime) -> Optional[Order]:
        """用户最新一条已支付且未过期（结束时间 > now）的订阅订单"""
        stmt = (
            select(Order)
            .where(
                and_(
                    Order.user_id == user_id,
                    Order.is_subscription.is_(True),
                    Order.status == OrderStatus.PAID.value,
                    Order.subscription_end_date.is_not(None),
                    Order.subscription_end_date > now,
                )
            )
            .order_by(Order.subscription_end_date.desc())
            .limit(1)
        )
        return await self._scalar_one_or_none(stmt)

    async def mark_paid_if_pending(self, out_trade_no: str, values: Dict[str, Any]) -> List[str]:
        """
        条件更新：仅当订单仍为 pending 时写入 values 并置为 paid。
        返回实际被更新的订单号列表（0 或 1 个）。
        """
        stmt = (
            update(Order)
            .where(
                and_(
                    Order.out_trade_no == out_trade_no,
                    Order.status == OrderStatus.PENDING.value,
                )
            )
            .values(status=OrderStatus.PAID.value, **values)
            .returning(Order.out_trade_no)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            changed = list(result.scalars().all())
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailure(f"更新订单失败: {e}") from e
        return changed

    async def list_for_user(self, user_id: str, offset: int = 0, limit: int = 20) -> Sequence[Order]:
        """购买记录，最新的在前"""
        stmt = (
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.out_trade_no.desc())
            .offset(offset)
            .limit(limit)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"查询订单失败: {e}") from e
        return result.scalars().all()

    async def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(Order).where(Order.user_id == user_id)
        try:
            return (await self.db.execute(stmt)).scalar() or 0
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"查询订单失败: {e}") from e

    async def _scalar_one_or_none(self, stmt) -> Optional[Order]:
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"查询订单失败: {e}") from e
        return result.scalar_one_or_none()

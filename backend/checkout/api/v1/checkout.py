"""
收银台API：zpay 支付链接、重新支付、异步通知、购买记录
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from checkout.api.deps import get_checkout_service, get_current_user, get_webhook_service
from checkout.core.database import get_db
from checkout.core.dates import utcnow
from checkout.core.exceptions import CheckoutError
from checkout.schemas.auth import CurrentUser
from checkout.schemas.checkout import (
    OrderListResponse,
    OrderResponse,
    PaymentUrlCreate,
    PaymentUrlResponse,
    RepayRequest,
    SubscriptionResponse,
)
from checkout.services.checkout_service import CheckoutService
from checkout.services.order_ledger import OrderLedger
from checkout.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/zpay/url", response_model=PaymentUrlResponse)
async def create_payment_url(
    body: PaymentUrlCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    """创建待支付订单并返回 zpay 支付链接"""
    order, url = await service.create_payment_url(current_user.id, body.product_id, body.pay_type)
    return PaymentUrlResponse(url=url, out_trade_no=order.out_trade_no)


@router.post("/zpay/repay", response_model=PaymentUrlResponse)
async def repay(
    body: RepayRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    """为已存在的待支付订单重新生成支付链接"""
    order, url = await service.repay_url(current_user.id, body.out_trade_no)
    return PaymentUrlResponse(url=url, out_trade_no=order.out_trade_no)


@router.get("/zpay/webhook", response_class=PlainTextResponse)
async def zpay_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    """
    zpay 支付结果异步通知。不需要登录，信任完全来自签名。
    返回纯文本 success 表示已处理；其他响应会让网关重试。
    """
    params = dict(request.query_params)
    try:
        result = await service.handle_notify(params)
    except CheckoutError as e:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR if e.status_code >= 500 else status.HTTP_400_BAD_REQUEST
        logger.warning("zpay 通知未确认 status=%s out_trade_no=%s: %s", code, params.get("out_trade_no"), e)
        return PlainTextResponse(e.message, status_code=code)
    logger.debug("zpay 通知已确认 out_trade_no=%s outcome=%s", result.out_trade_no, result.outcome.value)
    return PlainTextResponse("success")


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """当前用户的购买记录"""
    ledger = OrderLedger(db)
    total = await ledger.count_for_user(current_user.id)
    orders = await ledger.list_for_user(current_user.id, offset=(page - 1) * page_size, limit=page_size)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/subscription", response_model=Optional[SubscriptionResponse])
async def get_subscription(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """当前有效订阅（最新一条未过期的已支付订阅），没有则返回 null"""
    order = await OrderLedger(db).latest_active_subscription(current_user.id, utcnow())
    if order is None:
        return None
    return SubscriptionResponse.model_validate(order)

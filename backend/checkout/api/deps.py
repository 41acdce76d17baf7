"""
通用依赖：当前用户、服务实例
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from checkout.core.config import GatewayConfig, settings
from checkout.core.database import get_db
from checkout.schemas.auth import CurrentUser
from checkout.services.auth_service import AuthService
from checkout.services.catalog import PRODUCTS
from checkout.services.checkout_service import CheckoutService
from checkout.services.webhook_service import WebhookService

# 登录由上游负责，这里只读取 Bearer token；缺失时由 AuthService 抛 401
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """获取当前用户，未登录抛 AuthenticationRequired"""
    token = credentials.credentials if credentials else None
    return AuthService().get_current_user(token)


def get_gateway_config() -> GatewayConfig:
    return settings.gateway_config()


async def get_checkout_service(
    db: AsyncSession = Depends(get_db),
    config: GatewayConfig = Depends(get_gateway_config),
) -> CheckoutService:
    return CheckoutService(db, config, PRODUCTS)


async def get_webhook_service(
    db: AsyncSession = Depends(get_db),
    config: GatewayConfig = Depends(get_gateway_config),
) -> WebhookService:
    return WebhookService(db, config)

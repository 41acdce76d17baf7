"""
API v1 路由
"""
from fastapi import APIRouter
from checkout.api.v1 import checkout, products

api_router = APIRouter()

# 注册子路由
api_router.include_router(products.router, prefix="/products", tags=["产品"])
api_router.include_router(checkout.router, prefix="/checkout", tags=["收银台"])

"""
产品列表API
"""
from fastapi import APIRouter

from checkout.schemas.checkout import ProductListResponse
from checkout.services.catalog import PRODUCTS

router = APIRouter()


@router.get("", response_model=ProductListResponse)
async def list_products():
    """获取所有产品"""
    products = list(PRODUCTS.values())
    return {"products": products, "total": len(products)}

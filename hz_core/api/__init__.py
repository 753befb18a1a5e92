"""
Hazel API 路由模块
"""
from fastapi import APIRouter

from .orders import router as orders_router
from .inventory import router as inventory_router

# 创建主路由器
api_router = APIRouter()

api_router.include_router(orders_router, prefix="/orders", tags=["Orders"])
api_router.include_router(inventory_router, prefix="/inventory", tags=["Inventory"])

__all__ = ["api_router"]

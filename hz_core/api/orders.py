"""
订单 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from hz_core.models.orders import OrderChannel, OrderStatus
from hz_core.services import OrdersService, ReturnProcessor
from hz_core.utils.logger import get_logger
from .models import ApiResponse, PaginatedResponse, CreateOrderRequest, ReturnOrderRequest

router = APIRouter()
logger = get_logger(__name__)


async def get_orders_service() -> OrdersService:
    """依赖注入：获取订单服务"""
    return OrdersService()


async def get_return_processor() -> ReturnProcessor:
    """依赖注入：获取退货处理器"""
    return ReturnProcessor()


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_orders(
    status: Optional[OrderStatus] = Query(None, description="订单状态"),
    channel: Optional[OrderChannel] = Query(None, description="销售渠道"),
    page_size: int = Query(50, ge=1, le=200, description="每页大小"),
    offset: int = Query(0, ge=0, description="偏移量"),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """查询订单列表"""
    result = await orders_service.list_orders(
        status=status.value if status else None,
        channel=channel.value if channel else None,
        page_size=page_size,
        offset=offset
    )
    return ApiResponse.success(PaginatedResponse(**result))


@router.post("", response_model=ApiResponse[dict], status_code=201)
async def create_order(
    order_data: CreateOrderRequest,
    orders_service: OrdersService = Depends(get_orders_service)
):
    """创建订单（DRAFT）"""
    order = await orders_service.create_order(order_data.model_dump(mode="python"))
    return ApiResponse.success(order)


@router.get("/{order_id}", response_model=ApiResponse[dict])
async def get_order(
    order_id: int,
    orders_service: OrdersService = Depends(get_orders_service)
):
    """获取订单详情"""
    return ApiResponse.success(await orders_service.get_order(order_id))


@router.post("/{order_id}/confirm", response_model=ApiResponse[dict])
async def confirm_order(
    order_id: int,
    orders_service: OrdersService = Depends(get_orders_service)
):
    """确认订单并预留库存"""
    order = await orders_service.confirm_order(order_id)
    return ApiResponse.success(order, metadata=order.pop("allocation", None))


@router.post("/{order_id}/cancel", response_model=ApiResponse[dict])
async def cancel_order(
    order_id: int,
    orders_service: OrdersService = Depends(get_orders_service)
):
    """取消订单"""
    return ApiResponse.success(await orders_service.cancel_order(order_id))


@router.post("/{order_id}/ship", response_model=ApiResponse[dict])
async def ship_order(
    order_id: int,
    orders_service: OrdersService = Depends(get_orders_service)
):
    """发货"""
    return ApiResponse.success(await orders_service.ship_order(order_id))


@router.post("/{order_id}/fulfill", response_model=ApiResponse[dict])
async def fulfill_order(
    order_id: int,
    orders_service: OrdersService = Depends(get_orders_service)
):
    """履约完成"""
    return ApiResponse.success(await orders_service.fulfill_order(order_id))


@router.post("/{order_id}/return", response_model=ApiResponse[dict])
async def return_order(
    order_id: int,
    return_data: ReturnOrderRequest,
    return_processor: ReturnProcessor = Depends(get_return_processor)
):
    """退货"""
    items = [item.model_dump() for item in return_data.items]
    return ApiResponse.success(await return_processor.return_order(order_id, items))

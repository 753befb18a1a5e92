"""
API 请求/响应模型
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Generic, TypeVar

from pydantic import BaseModel, Field

from hz_core.models.inventory import InventoryItemType
from hz_core.models.orders import OrderChannel

T = TypeVar('T')


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""
    ok: bool = Field(description="操作是否成功")
    data: Optional[T] = Field(default=None, description="响应数据")
    error: Optional[Dict[str, Any]] = Field(default=None, description="错误信息（RFC7807 Problem Details）")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="元数据")

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        """创建成功响应"""
        return cls(ok=True, data=data, metadata=metadata)


class PaginatedResponse(BaseModel, Generic[T]):
    """分页响应"""
    items: List[T] = Field(description="数据列表")
    total: Optional[int] = Field(default=None, description="总数量")
    page_size: int = Field(description="每页大小")
    offset: int = Field(description="偏移量")
    has_more: bool = Field(description="是否有更多数据")


# 订单相关模型
class CreateOrderItemRequest(BaseModel):
    """订单行"""
    product_variant_id: int
    warehouse_id: int
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)


class CreateOrderRequest(BaseModel):
    """创建订单请求"""
    channel: OrderChannel
    currency: str = Field(min_length=1)
    customer_id: Optional[int] = None
    items: List[CreateOrderItemRequest] = Field(min_length=1)


class ReturnOrderItemRequest(BaseModel):
    """退货行"""
    order_item_id: int
    quantity: int = Field(ge=1)
    warehouse_id: int
    reason: str = Field(min_length=1)


class ReturnOrderRequest(BaseModel):
    """退货请求"""
    items: List[ReturnOrderItemRequest] = Field(min_length=1)


# 库存相关模型
class AddInventoryRequest(BaseModel):
    """入库请求"""
    product_variant_id: int
    warehouse_id: int
    quantity: int = Field(ge=1)
    reason: str = Field(min_length=1)
    item_type: Optional[InventoryItemType] = None


class DeductInventoryRequest(BaseModel):
    """出库请求"""
    product_variant_id: int
    warehouse_id: int
    quantity: int = Field(ge=1)
    reason: str = Field(min_length=1)


class TransferInventoryRequest(BaseModel):
    """调拨请求"""
    product_variant_id: int
    from_warehouse_id: int
    to_warehouse_id: int
    quantity: int = Field(ge=1)
    reason: str = Field(min_length=1)


class UpdateStockLocationRequest(BaseModel):
    """库存位修改请求；未传的字段保持不变，item_type 传 null 恢复默认值"""
    item_type: Optional[InventoryItemType] = None

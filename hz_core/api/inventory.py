"""
库存 API 路由
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from hz_core.services import InventoryService, StockLocationUpdate
from .models import (
    ApiResponse, AddInventoryRequest, DeductInventoryRequest, TransferInventoryRequest,
    UpdateStockLocationRequest
)

router = APIRouter()


async def get_inventory_service() -> InventoryService:
    """依赖注入：获取库存服务"""
    return InventoryService()


@router.post("/add", response_model=ApiResponse[dict])
async def add_inventory(
    request: AddInventoryRequest,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """入库"""
    result = await inventory_service.add_inventory(
        product_variant_id=request.product_variant_id,
        warehouse_id=request.warehouse_id,
        quantity=request.quantity,
        reason=request.reason,
        item_type=request.item_type.value if request.item_type else None
    )
    return ApiResponse.success(result)


@router.post("/deduct", response_model=ApiResponse[dict])
async def deduct_inventory(
    request: DeductInventoryRequest,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """出库"""
    result = await inventory_service.deduct_inventory(
        product_variant_id=request.product_variant_id,
        warehouse_id=request.warehouse_id,
        quantity=request.quantity,
        reason=request.reason
    )
    return ApiResponse.success(result)


@router.post("/transfer", response_model=ApiResponse[dict])
async def transfer_inventory(
    request: TransferInventoryRequest,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """仓间调拨"""
    result = await inventory_service.transfer_inventory(
        product_variant_id=request.product_variant_id,
        from_warehouse_id=request.from_warehouse_id,
        to_warehouse_id=request.to_warehouse_id,
        quantity=request.quantity,
        reason=request.reason
    )
    return ApiResponse.success(result)


@router.get("/variants/{product_variant_id}", response_model=ApiResponse[List[dict]])
async def get_inventory_by_variant(
    product_variant_id: int,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """按规格查询库存"""
    return ApiResponse.success(await inventory_service.get_inventory_by_variant(product_variant_id))


@router.get("/warehouses/{warehouse_id}", response_model=ApiResponse[List[dict]])
async def get_inventory_by_warehouse(
    warehouse_id: int,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """按仓库查询库存"""
    return ApiResponse.success(await inventory_service.get_inventory_by_warehouse(warehouse_id))


@router.patch("/variants/{product_variant_id}/warehouses/{warehouse_id}", response_model=ApiResponse[dict])
async def update_stock_location(
    product_variant_id: int,
    warehouse_id: int,
    request: UpdateStockLocationRequest,
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """修改库存位物料类型"""
    changes = StockLocationUpdate()
    if "item_type" in request.model_fields_set:
        changes.item_type = request.item_type.value if request.item_type else None

    result = await inventory_service.update_stock_location(product_variant_id, warehouse_id, changes)
    return ApiResponse.success(result)


@router.get("/movements", response_model=ApiResponse[List[dict]])
async def get_stock_movements(
    product_variant_id: Optional[int] = Query(None, description="商品规格ID"),
    warehouse_id: Optional[int] = Query(None, description="仓库ID"),
    inventory_service: InventoryService = Depends(get_inventory_service)
):
    """库存流水"""
    movements = await inventory_service.get_stock_movements(
        product_variant_id=product_variant_id,
        warehouse_id=warehouse_id
    )
    return ApiResponse.success(movements, metadata={"count": len(movements)})

"""
库存服务测试：入库、出库、调拨与查询
"""
import pytest

from hz_core.services import StockLocationUpdate
from hz_core.utils.errors import ValidationError, NotFoundError, InsufficientStockError


async def test_add_inventory_creates_location(inventory_service, catalog, event_bus):
    result = await inventory_service.add_inventory(catalog.v1, catalog.w1, 12, "Purchase order PO-17", "RAW_MATERIAL")

    location = result["stock_location"]
    assert location["quantity"] == 12
    assert location["item_type"] == "RAW_MATERIAL"
    assert result["ledger_entry"]["change_quantity"] == 12
    assert result["ledger_entry"]["reason"] == "Purchase order PO-17"
    assert event_bus.published[-1] == {
        "topic": "hz.inventory.changed",
        "payload": {
            "stock_location_id": location["id"],
            "product_variant_id": catalog.v1,
            "warehouse_id": catalog.w1,
            "change_quantity": 12,
            "quantity": 12,
            "reason": "Purchase order PO-17",
        },
    }


async def test_add_inventory_accumulates(inventory_service, catalog, snapshot):
    await inventory_service.add_inventory(catalog.v1, catalog.w1, 5, "Receipt")
    result = await inventory_service.add_inventory(catalog.v1, catalog.w1, 7, "Receipt")

    state = await snapshot(result["stock_location"]["id"])
    assert state["quantity"] == 12
    assert state["ledger_sum"] == 12


@pytest.mark.parametrize("kwargs, error", [
    ({"quantity": 0}, ValidationError),
    ({"reason": ""}, ValidationError),
    ({"item_type": "GADGET"}, ValidationError),
    ({"product_variant_id": 9999}, NotFoundError),
])
async def test_add_inventory_rejects_bad_input(inventory_service, catalog, kwargs, error):
    params = {
        "product_variant_id": catalog.v1,
        "warehouse_id": catalog.w1,
        "quantity": 3,
        "reason": "Receipt",
    }
    params.update(kwargs)

    with pytest.raises(error):
        await inventory_service.add_inventory(**params)


async def test_deduct_inventory(inventory_service, catalog, stock, snapshot):
    location = await stock(catalog.v1, catalog.w1, 10)

    result = await inventory_service.deduct_inventory(catalog.v1, catalog.w1, 4, "Shrinkage")

    assert result["stock_location"]["quantity"] == 6
    assert result["ledger_entry"]["change_quantity"] == -4
    assert (await snapshot(location["id"]))["ledger_sum"] == 6


async def test_deduct_more_than_on_hand(inventory_service, catalog, stock):
    await stock(catalog.v1, catalog.w1, 3)

    with pytest.raises(InsufficientStockError) as exc_info:
        await inventory_service.deduct_inventory(catalog.v1, catalog.w1, 4, "Shrinkage")

    assert exc_info.value.detail == "Insufficient inventory. Available: 3, Requested: 4"


async def test_deduct_without_location(inventory_service, catalog):
    with pytest.raises(NotFoundError) as exc_info:
        await inventory_service.deduct_inventory(catalog.v1, catalog.w1, 1, "Shrinkage")
    assert exc_info.value.code == "STOCK_LOCATION_NOT_FOUND"


async def test_transfer_inventory(inventory_service, catalog, stock, snapshot, check_invariants):
    source = await stock(catalog.v1, catalog.w1, 10, "WIP")

    result = await inventory_service.transfer_inventory(catalog.v1, catalog.w1, catalog.w2, 4, "Rebalance")

    assert result["from_stock_location"]["quantity"] == 6
    assert result["to_stock_location"]["quantity"] == 4
    assert result["to_stock_location"]["item_type"] == "WIP"
    assert result["from_ledger_entry"]["reason"] == f"Transfer to {catalog.w2}: Rebalance"
    assert result["to_ledger_entry"]["reason"] == f"Transfer from {catalog.w1}: Rebalance"
    assert (await snapshot(source["id"]))["quantity"] == 6
    await check_invariants()


async def test_transfer_same_warehouse(inventory_service, catalog, stock):
    await stock(catalog.v1, catalog.w1, 10)

    with pytest.raises(ValidationError) as exc_info:
        await inventory_service.transfer_inventory(catalog.v1, catalog.w1, catalog.w1, 4, "Noop")
    assert exc_info.value.code == "SAME_WAREHOUSE_TRANSFER"


async def test_transfer_insufficient_rolls_back_destination(inventory_service, catalog, stock):
    await stock(catalog.v1, catalog.w1, 2)

    with pytest.raises(InsufficientStockError):
        await inventory_service.transfer_inventory(catalog.v1, catalog.w1, catalog.w2, 4, "Rebalance")

    rows = await inventory_service.get_inventory_by_variant(catalog.v1)
    assert [(r["warehouse_id"], r["quantity"]) for r in rows] == [(catalog.w1, 2)]


async def test_inventory_queries_report_reserved(inventory_service, orders_service, make_order, catalog, stock):
    await stock(catalog.v1, catalog.w1, 10)
    await stock(catalog.v1, catalog.w2, 3)
    await stock(catalog.v2, catalog.w1, 8)
    order = await make_order([(catalog.v1, catalog.w1, 7)])
    await orders_service.confirm_order(order["id"])

    by_variant = {r["warehouse_id"]: r for r in await inventory_service.get_inventory_by_variant(catalog.v1)}
    assert by_variant[catalog.w1]["reserved_quantity"] == 7
    assert by_variant[catalog.w1]["available_quantity"] == 3
    assert by_variant[catalog.w2]["available_quantity"] == 3

    by_warehouse = await inventory_service.get_inventory_by_warehouse(catalog.w1)
    assert {r["product_variant_id"] for r in by_warehouse} == {catalog.v1, catalog.v2}

    assert await inventory_service.get_inventory_by_variant(9999) == []
    assert await inventory_service.get_inventory_by_warehouse(9999) == []


async def test_deduct_cannot_take_reserved_stock(inventory_service, orders_service, make_order, catalog, stock, snapshot, check_invariants):
    location = await stock(catalog.v1, catalog.w1, 10)
    order = await make_order([(catalog.v1, catalog.w1, 8)])
    await orders_service.confirm_order(order["id"])

    with pytest.raises(InsufficientStockError) as exc_info:
        await inventory_service.deduct_inventory(catalog.v1, catalog.w1, 5, "Manual recount")
    assert exc_info.value.extra["available"] == 2

    result = await inventory_service.deduct_inventory(catalog.v1, catalog.w1, 2, "Manual recount")
    assert result["stock_location"]["quantity"] == 8
    assert (await snapshot(location["id"]))["available"] == 0

    shipped = await orders_service.ship_order(order["id"])
    assert shipped["status"] == "SHIPPED"
    await check_invariants()


async def test_transfer_cannot_take_reserved_stock(inventory_service, orders_service, make_order, catalog, stock, snapshot, check_invariants):
    location = await stock(catalog.v1, catalog.w1, 10)
    order = await make_order([(catalog.v1, catalog.w1, 10)])
    await orders_service.confirm_order(order["id"])

    with pytest.raises(InsufficientStockError) as exc_info:
        await inventory_service.transfer_inventory(catalog.v1, catalog.w1, catalog.w2, 10, "Rebalance")
    assert exc_info.value.extra["available"] == 0

    state = await snapshot(location["id"])
    assert state["quantity"] == 10
    assert state["reserved"] == 10
    assert await inventory_service.get_inventory_by_warehouse(catalog.w2) == []
    await check_invariants()


async def test_stock_movements(inventory_service, catalog, stock):
    await stock(catalog.v1, catalog.w1, 10)
    await stock(catalog.v2, catalog.w2, 5)
    await inventory_service.transfer_inventory(catalog.v1, catalog.w1, catalog.w2, 2, "Rebalance")

    everything = await inventory_service.get_stock_movements()
    v1 = await inventory_service.get_stock_movements(product_variant_id=catalog.v1)
    w2 = await inventory_service.get_stock_movements(warehouse_id=catalog.w2)

    assert len(everything) == 4
    assert [m["change_quantity"] for m in v1] == [2, -2, 10]
    assert [m["change_quantity"] for m in w2] == [2, 5]


async def test_update_stock_location_item_type(inventory_service, catalog, stock):
    await stock(catalog.v1, catalog.w1, 4, "WIP")

    unchanged = await inventory_service.update_stock_location(catalog.v1, catalog.w1, StockLocationUpdate())
    changed = await inventory_service.update_stock_location(
        catalog.v1, catalog.w1, StockLocationUpdate(item_type="RAW_MATERIAL")
    )
    reset = await inventory_service.update_stock_location(
        catalog.v1, catalog.w1, StockLocationUpdate(item_type=None)
    )

    assert unchanged["item_type"] == "WIP"
    assert changed["item_type"] == "RAW_MATERIAL"
    assert reset["item_type"] == "FINISHED_GOOD"
    assert reset["quantity"] == 4
    assert reset["available_quantity"] == 4


async def test_update_stock_location_rejects_bad_input(inventory_service, catalog, stock):
    await stock(catalog.v1, catalog.w1, 4)

    with pytest.raises(ValidationError):
        await inventory_service.update_stock_location(catalog.v1, catalog.w1, StockLocationUpdate(item_type="GADGET"))
    with pytest.raises(NotFoundError):
        await inventory_service.update_stock_location(catalog.v1, catalog.w2, StockLocationUpdate(item_type="WIP"))

"""
库存位注册表测试
"""
import asyncio

import pytest

from hz_core.services import StockLocationUpdate, UNSET
from hz_core.utils.errors import NotFoundError, InsufficientStockError, ValidationError


async def test_get_or_create_is_idempotent(db_manager, registry, catalog):
    async with db_manager.get_transaction() as session:
        first = await registry.get_or_create(session, catalog.v1, catalog.w1, "RAW_MATERIAL")
        second = await registry.get_or_create(session, catalog.v1, catalog.w1, "WIP")

    assert first.id == second.id
    assert first.quantity == 0
    assert second.item_type == "RAW_MATERIAL"


async def test_get_or_create_defaults_item_type(db_manager, registry, catalog):
    async with db_manager.get_transaction() as session:
        location = await registry.get_or_create(session, catalog.v2, catalog.w2)

    assert location.item_type == "FINISHED_GOOD"


@pytest.mark.parametrize("variant_attr, warehouse_attr, code", [
    (None, "w1", "PRODUCT_VARIANT_NOT_FOUND"),
    ("v1", None, "WAREHOUSE_NOT_FOUND"),
])
async def test_get_or_create_requires_catalog_entries(db_manager, registry, catalog, variant_attr, warehouse_attr, code):
    variant_id = getattr(catalog, variant_attr) if variant_attr else 9999
    warehouse_id = getattr(catalog, warehouse_attr) if warehouse_attr else 9999

    with pytest.raises(NotFoundError) as exc_info:
        async with db_manager.get_transaction() as session:
            await registry.get_or_create(session, variant_id, warehouse_id)

    assert exc_info.value.code == code


async def test_get_or_create_rejects_unknown_item_type(db_manager, registry, catalog):
    with pytest.raises(ValidationError):
        async with db_manager.get_transaction() as session:
            await registry.get_or_create(session, catalog.v1, catalog.w1, "SPARE_PART")


async def test_increment_and_decrement_write_ledger(db_manager, registry, catalog, snapshot):
    async with db_manager.get_transaction() as session:
        location = await registry.get_or_create(session, catalog.v1, catalog.w1)
        await registry.increment(session, location.id, 10, "Receipt")
        await registry.decrement(session, location.id, 4, "Pick")
        location_id = location.id

    state = await snapshot(location_id)
    assert state["quantity"] == 6
    assert state["ledger_sum"] == 6


async def test_decrement_exact_quantity_then_one_more(db_manager, registry, catalog, stock, snapshot):
    location = await stock(catalog.v1, catalog.w1, 5)

    async with db_manager.get_transaction() as session:
        await registry.decrement(session, location["id"], 5, "Full pick")

    assert (await snapshot(location["id"]))["quantity"] == 0

    with pytest.raises(InsufficientStockError) as exc_info:
        async with db_manager.get_transaction() as session:
            await registry.decrement(session, location["id"], 1, "One too many")

    assert exc_info.value.extra["available"] == 0
    assert exc_info.value.extra["requested"] == 1
    state = await snapshot(location["id"])
    assert state["quantity"] == 0
    assert state["ledger_sum"] == 0


@pytest.mark.parametrize("amount", [0, -3, 2.5, True])
async def test_increment_rejects_non_positive_amounts(db_manager, registry, catalog, stock, amount):
    location = await stock(catalog.v1, catalog.w1, 5)

    with pytest.raises(ValidationError):
        async with db_manager.get_transaction() as session:
            await registry.increment(session, location["id"], amount, "Bad amount")


async def test_lock_missing_location(db_manager, registry):
    with pytest.raises(NotFoundError):
        async with db_manager.get_transaction() as session:
            await registry.lock(session, 12345)


async def test_concurrent_decrements_never_go_negative(db_manager, registry, catalog, stock, snapshot):
    location = await stock(catalog.v1, catalog.w1, 10)

    async def pick(amount):
        async with db_manager.get_transaction() as session:
            await registry.decrement(session, location["id"], amount, "Concurrent pick")

    results = await asyncio.gather(pick(6), pick(6), pick(6), return_exceptions=True)

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 2
    assert all(isinstance(f, InsufficientStockError) for f in failures)

    state = await snapshot(location["id"])
    assert state["quantity"] == 4
    assert state["ledger_sum"] == 4


async def test_reads_by_variant_and_warehouse(db_session, registry, catalog, stock):
    await stock(catalog.v1, catalog.w1, 3)
    await stock(catalog.v1, catalog.w2, 7)
    await stock(catalog.v2, catalog.w1, 1)

    by_variant = await registry.get_by_variant(db_session, catalog.v1)
    by_warehouse = await registry.get_by_warehouse(db_session, catalog.w1)

    assert {loc.warehouse_id for loc in by_variant} == {catalog.w1, catalog.w2}
    assert {loc.product_variant_id for loc in by_warehouse} == {catalog.v1, catalog.v2}
    assert await registry.get_by_variant(db_session, 9999) == []


async def test_infer_item_type(db_session, registry, catalog, stock):
    await stock(catalog.v1, catalog.w1, 3, "RAW_MATERIAL")

    # 同仓库存位优先，其次同规格任意库存位，最后默认值
    assert await registry.infer_item_type(db_session, catalog.v1, catalog.w1) == "RAW_MATERIAL"
    assert await registry.infer_item_type(db_session, catalog.v1, catalog.w3) == "RAW_MATERIAL"
    assert await registry.infer_item_type(db_session, catalog.v2, catalog.w3) == "FINISHED_GOOD"


async def test_update_distinguishes_unset_from_none(db_manager, registry, catalog, stock):
    location = await stock(catalog.v1, catalog.w1, 3, "WIP")

    async with db_manager.get_transaction() as session:
        unchanged = await registry.update(session, location["id"], StockLocationUpdate())
        assert unchanged.item_type == "WIP"

        changed = await registry.update(session, location["id"], StockLocationUpdate(item_type="RAW_MATERIAL"))
        assert changed.item_type == "RAW_MATERIAL"

        reset = await registry.update(session, location["id"], StockLocationUpdate(item_type=None))
        assert reset.item_type == "FINISHED_GOOD"

    assert StockLocationUpdate().item_type is UNSET


async def test_lock_many_orders_by_id(db_manager, registry, catalog, stock):
    first = await stock(catalog.v1, catalog.w1, 1)
    second = await stock(catalog.v1, catalog.w2, 1)
    third = await stock(catalog.v2, catalog.w1, 1)

    async with db_manager.get_transaction() as session:
        locked = await registry.lock_many(session, [third["id"], first["id"], third["id"], second["id"]])
        assert await registry.lock_many(session, []) == []

    assert [loc.id for loc in locked] == [first["id"], second["id"], third["id"]]


async def test_lock_for_variants_covers_all_variants_in_id_order(db_manager, registry, catalog, stock):
    v2_w1 = await stock(catalog.v2, catalog.w1, 1)
    v1_w2 = await stock(catalog.v1, catalog.w2, 1)
    v1_w1 = await stock(catalog.v1, catalog.w1, 1)

    async with db_manager.get_transaction() as session:
        locked = await registry.lock_for_variants(session, [catalog.v2, catalog.v1, catalog.v2])

    assert [loc.id for loc in locked] == sorted([v2_w1["id"], v1_w2["id"], v1_w1["id"]])

"""
订单服务测试：创建校验、生命周期场景、事件发布
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from hz_core.models import LedgerEntry, Order
from hz_core.services import OrdersService
from hz_core.utils.errors import (
    ValidationError, NotFoundError, InvalidStateError, InvalidStatusTransitionError,
    InsufficientInventoryError, UniquenessExhaustedError
)


# ----------------------------------------------------------------------
# 创建
# ----------------------------------------------------------------------

async def test_create_draft_order(orders_service, catalog, event_bus):
    order = await orders_service.create_order({
        "channel": "DTC",
        "currency": "eur",
        "items": [
            {"product_variant_id": catalog.v1, "warehouse_id": catalog.w1, "quantity": 2, "unit_price": "19.99"},
            {"product_variant_id": catalog.v2, "warehouse_id": catalog.w2, "quantity": 1, "unit_price": 5},
        ],
    })

    assert order["status"] == "DRAFT"
    assert order["currency"] == "EUR"
    assert order["order_number"].startswith("ORD-")
    assert Decimal(order["total_amount"]) == Decimal("44.98")
    assert [Decimal(i["total_price"]) for i in order["items"]] == [Decimal("39.98"), Decimal("5")]
    assert order["reservations"] == []
    assert order["allowed_transitions"] == ["CANCELLED", "CONFIRMED"]
    assert event_bus.topics() == ["hz.order.created"]


@pytest.mark.parametrize("channel, customer_attr", [("B2B", "b2b"), ("WHOLESALE", "wholesale")])
async def test_create_customer_channels(make_order, catalog, channel, customer_attr):
    order = await make_order(
        [(catalog.v1, catalog.w1, 1)],
        channel=channel,
        customer_id=getattr(catalog, customer_attr)
    )
    assert order["customer_id"] == getattr(catalog, customer_attr)


async def test_create_retail_channels_without_customer(make_order, catalog):
    for channel in ("DTC", "POS", "RETAIL"):
        order = await make_order([(catalog.v1, catalog.w1, 1)], channel=channel)
        assert order["customer_id"] is None


@pytest.mark.parametrize("channel, customer_attr, code", [
    ("B2B", None, "CUSTOMER_REQUIRED"),
    ("WHOLESALE", None, "CUSTOMER_REQUIRED"),
    ("B2B", "wholesale", "CUSTOMER_TYPE_MISMATCH"),
    ("WHOLESALE", "b2b", "CUSTOMER_TYPE_MISMATCH"),
    ("B2B", "suspended", "CUSTOMER_NOT_ACTIVE"),
    ("FAX", None, "INVALID_CHANNEL"),
])
async def test_create_rejects_invalid_channel_customer(make_order, catalog, channel, customer_attr, code):
    customer_id = getattr(catalog, customer_attr) if customer_attr else None

    with pytest.raises(ValidationError) as exc_info:
        await make_order([(catalog.v1, catalog.w1, 1)], channel=channel, customer_id=customer_id)

    assert exc_info.value.code == code


async def test_create_rejects_unknown_references(make_order, catalog):
    with pytest.raises(NotFoundError) as exc_info:
        await make_order([(9999, catalog.w1, 1)])
    assert exc_info.value.code == "PRODUCT_VARIANT_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc_info:
        await make_order([(catalog.v1, 9999, 1)])
    assert exc_info.value.code == "WAREHOUSE_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc_info:
        await make_order([(catalog.v1, catalog.w1, 1)], channel="DTC", customer_id=9999)
    assert exc_info.value.code == "CUSTOMER_NOT_FOUND"


@pytest.mark.parametrize("payload, code", [
    ({"channel": "DTC", "currency": "EUR", "items": []}, "EMPTY_ORDER"),
    ({"channel": "DTC", "items": [{}]}, "MISSING_REQUIRED_FIELDS"),
    ({"channel": "DTC", "currency": "", "items": [{}]}, "INVALID_CURRENCY"),
])
async def test_create_rejects_malformed_payload(orders_service, catalog, payload, code):
    with pytest.raises(ValidationError) as exc_info:
        await orders_service.create_order(payload)
    assert exc_info.value.code == code


@pytest.mark.parametrize("item_patch, code", [
    ({"quantity": 0}, "INVALID_QUANTITY"),
    ({"quantity": "3"}, "INVALID_QUANTITY"),
    ({"unit_price": "-1"}, "INVALID_PRICE"),
    ({"unit_price": "abc"}, "INVALID_PRICE"),
])
async def test_create_rejects_bad_items(orders_service, catalog, item_patch, code):
    item = {"product_variant_id": catalog.v1, "warehouse_id": catalog.w1, "quantity": 1, "unit_price": "1"}
    item.update(item_patch)

    with pytest.raises(ValidationError) as exc_info:
        await orders_service.create_order({"channel": "DTC", "currency": "EUR", "items": [item]})
    assert exc_info.value.code == code


async def test_failed_create_leaves_no_rows(orders_service, make_order, catalog, db_session):
    with pytest.raises(NotFoundError):
        await make_order([(catalog.v1, catalog.w1, 1), (9999, catalog.w1, 1)])

    orders = (await db_session.execute(select(Order))).scalars().all()
    assert orders == []


async def test_order_number_collision_rerolls(orders_service, make_order, catalog, monkeypatch):
    existing = await make_order([(catalog.v1, catalog.w1, 1)])
    candidates = iter([existing["order_number"], existing["order_number"], "ORD-1-2"])
    monkeypatch.setattr(orders_service, "_generate_order_number", lambda: next(candidates))

    order = await make_order([(catalog.v1, catalog.w1, 1)])

    assert order["order_number"] == "ORD-1-2"


async def test_order_number_exhaustion(orders_service, make_order, catalog, monkeypatch):
    existing = await make_order([(catalog.v1, catalog.w1, 1)])
    calls = []

    def always_taken():
        calls.append(1)
        return existing["order_number"]

    monkeypatch.setattr(orders_service, "_generate_order_number", always_taken)

    with pytest.raises(UniquenessExhaustedError) as exc_info:
        await make_order([(catalog.v1, catalog.w1, 1)])

    assert len(calls) == 10
    assert exc_info.value.status == 503
    assert exc_info.value.extra["attempts"] == 10


# ----------------------------------------------------------------------
# 生命周期场景
# ----------------------------------------------------------------------

async def test_confirm_fully_reserved_advances_to_allocated(orders_service, make_order, catalog, stock, snapshot, event_bus):
    location = await stock(catalog.v1, catalog.w1, 10)
    order = await make_order([(catalog.v1, catalog.w1, 10)])

    confirmed = await orders_service.confirm_order(order["id"])

    assert confirmed["status"] == "ALLOCATED"
    assert confirmed["confirmed_at"] is not None
    assert confirmed["allocated_at"] is not None
    assert [(r["quantity"], r["state"]) for r in confirmed["reservations"]] == [(10, "ACTIVE")]
    assert confirmed["allocation"]["fully_reserved"] is True
    assert (await snapshot(location["id"]))["available"] == 0
    assert event_bus.topics()[-1] == "hz.order.confirmed"


async def test_confirm_spreads_across_warehouses_largest_first(orders_service, make_order, catalog, stock):
    small = await stock(catalog.v1, catalog.w1, 6)
    large = await stock(catalog.v1, catalog.w2, 10)
    order = await make_order([(catalog.v1, catalog.w1, 14)])

    confirmed = await orders_service.confirm_order(order["id"])

    assert confirmed["status"] == "ALLOCATED"
    taken = [(r["stock_location_id"], r["quantity"]) for r in confirmed["reservations"]]
    assert taken == [(large["id"], 10), (small["id"], 4)]


async def test_confirm_partial_stays_confirmed(orders_service, make_order, catalog, stock, check_invariants):
    await stock(catalog.v1, catalog.w1, 4)
    await stock(catalog.v1, catalog.w2, 3)
    order = await make_order([(catalog.v1, catalog.w1, 10)])

    confirmed = await orders_service.confirm_order(order["id"])

    assert confirmed["status"] == "CONFIRMED"
    assert confirmed["allocated_at"] is None
    assert sum(r["quantity"] for r in confirmed["reservations"]) == 7
    assert confirmed["allocation"]["fully_reserved"] is False
    await check_invariants()


async def test_confirm_without_any_stock_fails_and_stays_draft(orders_service, make_order, catalog, event_bus):
    order = await make_order([(catalog.v1, catalog.w1, 5)])

    with pytest.raises(InsufficientInventoryError):
        await orders_service.confirm_order(order["id"])

    reloaded = await orders_service.get_order(order["id"])
    assert reloaded["status"] == "DRAFT"
    assert reloaded["reservations"] == []
    assert "hz.order.confirmed" not in event_bus.topics()


async def test_ship_consumes_reservations(orders_service, make_order, catalog, stock, snapshot, db_session):
    location = await stock(catalog.v1, catalog.w1, 10)
    order = await make_order([(catalog.v1, catalog.w1, 10)])
    await orders_service.confirm_order(order["id"])

    shipped = await orders_service.ship_order(order["id"])

    assert shipped["status"] == "SHIPPED"
    assert shipped["shipped_at"] is not None
    assert all(r["state"] == "CONSUMED" for r in shipped["reservations"])
    state = await snapshot(location["id"])
    assert state["quantity"] == 0
    assert state["ledger_sum"] == 0

    last_entry = (await db_session.execute(
        select(LedgerEntry).order_by(LedgerEntry.id.desc()).limit(1)
    )).scalar_one()
    assert last_entry.change_quantity == -10
    assert last_entry.reason.startswith(f"Order {order['order_number']} (DTC) shipment")


async def test_cancel_releases_without_touching_stock(orders_service, make_order, catalog, stock, snapshot):
    location = await stock(catalog.v1, catalog.w1, 20)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await orders_service.confirm_order(order["id"])
    assert (await snapshot(location["id"]))["available"] == 15

    cancelled = await orders_service.cancel_order(order["id"])

    assert cancelled["status"] == "CANCELLED"
    assert cancelled["cancelled_at"] is not None
    assert [r["state"] for r in cancelled["reservations"]] == ["RELEASED"]
    state = await snapshot(location["id"])
    assert state["quantity"] == 20
    assert state["available"] == 20


async def test_cancel_draft_with_no_reservations(orders_service, make_order, catalog):
    order = await make_order([(catalog.v1, catalog.w1, 5)])

    cancelled = await orders_service.cancel_order(order["id"])

    assert cancelled["status"] == "CANCELLED"
    assert cancelled["reservations"] == []


async def test_cancelled_order_cannot_be_confirmed(orders_service, make_order, catalog, stock):
    await stock(catalog.v1, catalog.w1, 5)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await orders_service.cancel_order(order["id"])

    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        await orders_service.confirm_order(order["id"])

    assert exc_info.value.extra["current_status"] == "CANCELLED"
    assert exc_info.value.extra["allowed"] == []


async def test_cancel_fulfilled_order_is_rejected(orders_service, make_order, catalog, stock):
    await stock(catalog.v1, catalog.w1, 5)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await orders_service.confirm_order(order["id"])
    await orders_service.ship_order(order["id"])
    await orders_service.fulfill_order(order["id"])

    with pytest.raises(InvalidStatusTransitionError):
        await orders_service.cancel_order(order["id"])


async def test_ship_requires_confirmed_order(orders_service, make_order, catalog):
    order = await make_order([(catalog.v1, catalog.w1, 5)])

    with pytest.raises(InvalidStateError) as exc_info:
        await orders_service.ship_order(order["id"])

    assert exc_info.value.code == "INVALID_ORDER_STATE"


async def test_ship_twice_fails(orders_service, make_order, catalog, stock):
    await stock(catalog.v1, catalog.w1, 5)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await orders_service.confirm_order(order["id"])
    await orders_service.ship_order(order["id"])

    with pytest.raises(InvalidStateError):
        await orders_service.ship_order(order["id"])


async def test_fulfill_with_active_reservations_is_permissive(orders_service, make_order, catalog, stock):
    await stock(catalog.v1, catalog.w1, 5)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await orders_service.confirm_order(order["id"])

    fulfilled = await orders_service.fulfill_order(order["id"])

    assert fulfilled["status"] == "FULFILLED"
    assert fulfilled["fulfilled_at"] is not None
    assert [r["state"] for r in fulfilled["reservations"]] == ["ACTIVE"]


async def test_strict_fulfillment_blocks_active_reservations(db_manager, event_bus, settings, make_order, catalog, stock):
    strict = OrdersService(
        db_manager=db_manager,
        event_bus=event_bus,
        settings=settings.model_copy(update={"strict_fulfillment": True})
    )
    await stock(catalog.v1, catalog.w1, 5)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await strict.confirm_order(order["id"])

    with pytest.raises(InvalidStateError) as exc_info:
        await strict.fulfill_order(order["id"])
    assert exc_info.value.code == "ACTIVE_RESERVATIONS_REMAIN"

    await strict.ship_order(order["id"])
    fulfilled = await strict.fulfill_order(order["id"])
    assert fulfilled["status"] == "FULFILLED"


async def test_fulfill_draft_is_rejected(orders_service, make_order, catalog):
    order = await make_order([(catalog.v1, catalog.w1, 5)])

    with pytest.raises(InvalidStatusTransitionError):
        await orders_service.fulfill_order(order["id"])


async def test_full_lifecycle_events(orders_service, make_order, catalog, stock, event_bus):
    await stock(catalog.v1, catalog.w1, 5)
    order = await make_order([(catalog.v1, catalog.w1, 5)])
    await orders_service.confirm_order(order["id"])
    await orders_service.ship_order(order["id"])
    await orders_service.fulfill_order(order["id"])

    order_topics = [t for t in event_bus.topics() if t.startswith("hz.order.")]
    assert order_topics == [
        "hz.order.created", "hz.order.confirmed", "hz.order.shipped", "hz.order.fulfilled"
    ]
    assert event_bus.published[-1]["payload"]["status"] == "FULFILLED"


async def test_event_bus_failure_does_not_fail_operation(orders_service, make_order, catalog, event_bus):
    event_bus.fail = True

    order = await make_order([(catalog.v1, catalog.w1, 1)])

    assert order["status"] == "DRAFT"
    assert (await orders_service.get_order(order["id"]))["id"] == order["id"]


# ----------------------------------------------------------------------
# 查询
# ----------------------------------------------------------------------

async def test_get_missing_order(orders_service):
    with pytest.raises(NotFoundError) as exc_info:
        await orders_service.get_order(4242)
    assert exc_info.value.code == "ORDER_NOT_FOUND"


@pytest.mark.parametrize("operation", ["confirm_order", "cancel_order", "ship_order", "fulfill_order"])
async def test_lifecycle_on_missing_order(orders_service, operation):
    with pytest.raises(NotFoundError):
        await getattr(orders_service, operation)(4242)


async def test_list_orders_filters_and_pages(orders_service, make_order, catalog, stock):
    await stock(catalog.v1, catalog.w1, 10)
    first = await make_order([(catalog.v1, catalog.w1, 1)])
    second = await make_order([(catalog.v1, catalog.w1, 1)], channel="POS")
    third = await make_order([(catalog.v1, catalog.w1, 1)])
    await orders_service.confirm_order(first["id"])

    page = await orders_service.list_orders(page_size=2)
    assert page["total"] == 3
    assert page["has_more"] is True
    assert [o["id"] for o in page["items"]] == [third["id"], second["id"]]
    assert page["items"][0]["items"][0]["quantity"] == 1

    drafts = await orders_service.list_orders(status="DRAFT")
    assert {o["id"] for o in drafts["items"]} == {second["id"], third["id"]}

    pos = await orders_service.list_orders(channel="POS")
    assert [o["id"] for o in pos["items"]] == [second["id"]]

"""
Pytest 配置和 fixtures
每个用例使用独立的 SQLite 文件数据库，事件总线替换为内存记录器
"""
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.config import Settings
from hz_core.database import DatabaseManager
from hz_core.models import (
    ProductVariant, Warehouse, Customer, StockLocation, LedgerEntry, Reservation
)
from hz_core.services import (
    OrdersService, ReturnProcessor, InventoryService,
    StockLocationRegistry, ReservationManager, InventoryLedgerStore
)


class FakeEventBus:
    """记录发布的事件，不连接 Redis"""

    def __init__(self):
        self.published: List[Dict[str, Any]] = []
        self.fail = False

    async def publish(self, topic: str, payload: Dict[str, Any], key: Optional[str] = None) -> str:
        if self.fail:
            raise ConnectionError("event bus unavailable")
        self.published.append({"topic": topic, "payload": payload})
        return f"evt-{len(self.published)}"

    def topics(self) -> List[str]:
        return [event["topic"] for event in self.published]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """测试配置"""
    return Settings(
        db_url=f"sqlite+aiosqlite:///{tmp_path / 'hazel_test.db'}",
        event_bus_enabled=False,
        log_format="text",
    )


@pytest_asyncio.fixture
async def db_manager(settings) -> AsyncGenerator[DatabaseManager, None]:
    """数据库管理器 fixture"""
    manager = DatabaseManager(settings)
    await manager.create_tables()

    yield manager

    await manager.drop_tables()
    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager) -> AsyncGenerator[AsyncSession, None]:
    """只读检查用的会话"""
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def event_bus() -> FakeEventBus:
    return FakeEventBus()


@pytest.fixture
def registry(settings) -> StockLocationRegistry:
    return StockLocationRegistry(default_item_type=settings.default_item_type)


@pytest.fixture
def reservation_manager(registry) -> ReservationManager:
    return ReservationManager(registry)


@pytest.fixture
def ledger(registry) -> InventoryLedgerStore:
    return registry.ledger


@pytest.fixture
def orders_service(db_manager, event_bus, settings) -> OrdersService:
    return OrdersService(db_manager=db_manager, event_bus=event_bus, settings=settings)


@pytest.fixture
def return_processor(db_manager, event_bus, settings, orders_service) -> ReturnProcessor:
    return ReturnProcessor(
        db_manager=db_manager,
        event_bus=event_bus,
        settings=settings,
        orders=orders_service
    )


@pytest.fixture
def inventory_service(db_manager, event_bus, settings) -> InventoryService:
    return InventoryService(db_manager=db_manager, event_bus=event_bus, settings=settings)


@pytest_asyncio.fixture
async def catalog(db_manager) -> SimpleNamespace:
    """基础目录数据：2 个规格、3 个仓库、若干客户"""
    async with db_manager.get_transaction() as session:
        v1 = ProductVariant(sku="HZ-TEE-BLK-M", name="Tee Black M")
        v2 = ProductVariant(sku="HZ-TEE-WHT-L", name="Tee White L")
        w1 = Warehouse(name="Main", location="Amsterdam")
        w2 = Warehouse(name="Overflow", location="Rotterdam")
        w3 = Warehouse(name="Returns", location="Utrecht")
        b2b = Customer(type="B2B", company_name="Acme Retail BV", status="ACTIVE")
        wholesale = Customer(type="WHOLESALE", company_name="Bulk Goods GmbH", status="ACTIVE")
        suspended = Customer(type="B2B", company_name="Late Payer Ltd", status="SUSPENDED")
        retail = Customer(type="RETAIL", company_name="Jane Doe", status="ACTIVE")
        session.add_all([v1, v2, w1, w2, w3, b2b, wholesale, suspended, retail])
        await session.flush()

        return SimpleNamespace(
            v1=v1.id, v2=v2.id,
            w1=w1.id, w2=w2.id, w3=w3.id,
            b2b=b2b.id, wholesale=wholesale.id, suspended=suspended.id, retail=retail.id,
        )


@pytest.fixture
def stock(inventory_service):
    """入库辅助函数"""
    async def _stock(product_variant_id: int, warehouse_id: int, quantity: int, item_type: Optional[str] = None):
        result = await inventory_service.add_inventory(
            product_variant_id, warehouse_id, quantity, "Initial stock", item_type
        )
        return result["stock_location"]
    return _stock


@pytest.fixture
def make_order(orders_service, catalog):
    """创建 DTC 订单辅助函数"""
    async def _make_order(lines, channel: str = "DTC", customer_id: Optional[int] = None):
        items = [
            {
                "product_variant_id": variant,
                "warehouse_id": warehouse,
                "quantity": quantity,
                "unit_price": "10.00",
            }
            for variant, warehouse, quantity in lines
        ]
        return await orders_service.create_order({
            "channel": channel,
            "currency": "EUR",
            "customer_id": customer_id,
            "items": items,
        })
    return _make_order


@pytest.fixture
def snapshot(db_manager):
    """库存位现存量、台账合计与活跃预留"""
    async def _snapshot(stock_location_id: int) -> Dict[str, int]:
        async with db_manager.get_session() as session:
            location = await session.get(StockLocation, stock_location_id)
            registry = StockLocationRegistry()
            ledger_sum = await registry.ledger.sum_for_location(session, stock_location_id)
            reserved = await registry.active_reserved_quantity(session, stock_location_id)
            return {
                "quantity": location.quantity,
                "ledger_sum": ledger_sum,
                "reserved": reserved,
                "available": location.quantity - reserved,
            }
    return _snapshot


@pytest.fixture
def check_invariants(db_manager):
    """全部库存位：台账合计 == 现存量 >= 活跃预留；预留最多一个终态"""
    async def _check() -> None:
        async with db_manager.get_session() as session:
            locations = (await session.execute(select(StockLocation))).scalars().all()
            registry = StockLocationRegistry()
            for location in locations:
                ledger_sum = await registry.ledger.sum_for_location(session, location.id)
                reserved = await registry.active_reserved_quantity(session, location.id)
                assert location.quantity == ledger_sum, f"ledger drift on location {location.id}"
                assert location.quantity >= 0
                assert reserved <= location.quantity, f"oversold location {location.id}"

            reservations = (await session.execute(select(Reservation))).scalars().all()
            for reservation in reservations:
                assert reservation.consumed_at is None or reservation.released_at is None

            entries = (await session.execute(select(LedgerEntry))).scalars().all()
            assert all(entry.change_quantity != 0 for entry in entries)
    return _check

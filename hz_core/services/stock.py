"""
库存位注册表
库存位 = 商品规格 × 仓库；现存量的每次变动都在同一事务内写一条台账
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.models.inventory import StockLocation, InventoryItemType
from hz_core.models.reservations import Reservation
from hz_core.utils.errors import NotFoundError, InsufficientStockError, ValidationError
from hz_core.utils.logger import get_logger
from .catalog import CatalogLookup
from .ledger import InventoryLedgerStore

logger = get_logger(__name__)


class _Unset:
    """未设置标记：与 None（清空/恢复默认）区分"""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass
class StockLocationUpdate:
    """库存位可修改字段；UNSET 表示保持不变，None 表示恢复默认值"""
    item_type: Union[str, None, _Unset] = UNSET


def validate_item_type(item_type: str) -> str:
    """校验物料类型"""
    valid = {t.value for t in InventoryItemType}
    if item_type not in valid:
        raise ValidationError(
            code="INVALID_ITEM_TYPE",
            detail=f"Invalid item type: {item_type}. Must be one of: {', '.join(sorted(valid))}"
        )
    return item_type


class StockLocationRegistry:
    """库存位注册表"""

    def __init__(
        self,
        ledger: Optional[InventoryLedgerStore] = None,
        catalog: Optional[CatalogLookup] = None,
        default_item_type: str = InventoryItemType.FINISHED_GOOD.value
    ):
        self.ledger = ledger or InventoryLedgerStore()
        self.catalog = catalog or CatalogLookup()
        self.default_item_type = validate_item_type(default_item_type)

    async def find(
        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int
    ) -> Optional[StockLocation]:
        stmt = select(StockLocation).where(
            StockLocation.product_variant_id == product_variant_id,
            StockLocation.warehouse_id == warehouse_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, session: AsyncSession, stock_location_id: int) -> StockLocation:
        location = await session.get(StockLocation, stock_location_id)
        if location is None:
            raise NotFoundError(
                code="STOCK_LOCATION_NOT_FOUND",
                resource=f"Stock location {stock_location_id}"
            )
        return location

    async def get_by_variant(self, session: AsyncSession, product_variant_id: int) -> List[StockLocation]:
        stmt = select(StockLocation).where(
            StockLocation.product_variant_id == product_variant_id
        ).order_by(StockLocation.warehouse_id, StockLocation.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_warehouse(self, session: AsyncSession, warehouse_id: int) -> List[StockLocation]:
        stmt = select(StockLocation).where(
            StockLocation.warehouse_id == warehouse_id
        ).order_by(StockLocation.product_variant_id, StockLocation.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_or_create(
        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int,
        item_type: Optional[str] = None
    ) -> StockLocation:
        """获取库存位，不存在时以数量 0 创建"""
        location = await self.find(session, product_variant_id, warehouse_id)
        if location is not None:
            return location

        if not await self.catalog.product_variant_exists(session, product_variant_id):
            raise NotFoundError(
                code="PRODUCT_VARIANT_NOT_FOUND",
                resource=f"Product variant {product_variant_id}"
            )
        if not await self.catalog.warehouse_exists(session, warehouse_id):
            raise NotFoundError(
                code="WAREHOUSE_NOT_FOUND",
                resource=f"Warehouse {warehouse_id}"
            )

        location = StockLocation(
            product_variant_id=product_variant_id,
            warehouse_id=warehouse_id,
            quantity=0,
            item_type=validate_item_type(item_type or self.default_item_type)
        )

        # 并发创建同一库存位时唯一约束会冲突，回滚保存点后读取已存在的行
        try:
            async with session.begin_nested():
                session.add(location)
                await session.flush()
        except IntegrityError:
            logger.info(
                "Stock location created concurrently, reusing existing row",
                product_variant_id=product_variant_id,
                warehouse_id=warehouse_id
            )
            existing = await self.find(session, product_variant_id, warehouse_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Stock location created",
            stock_location_id=location.id,
            product_variant_id=product_variant_id,
            warehouse_id=warehouse_id,
            item_type=location.item_type
        )
        return location

    async def lock(self, session: AsyncSession, stock_location_id: int) -> StockLocation:
        """加行锁读取库存位（SELECT ... FOR UPDATE）"""
        stmt = (
            select(StockLocation)
            .where(StockLocation.id == stock_location_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        location = result.scalar_one_or_none()
        if location is None:
            raise NotFoundError(
                code="STOCK_LOCATION_NOT_FOUND",
                resource=f"Stock location {stock_location_id}"
            )
        return location

    async def lock_many(self, session: AsyncSession, stock_location_ids: Iterable[int]) -> List[StockLocation]:
        """按 id 升序一次性锁定多个库存位

        同一事务要写多个库存位时先调用本方法，所有事务的加锁顺序一致，避免死锁
        """
        ids = sorted(set(stock_location_ids))
        if not ids:
            return []

        stmt = (
            select(StockLocation)
            .where(StockLocation.id.in_(ids))
            .order_by(StockLocation.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def lock_for_variants(
        self,
        session: AsyncSession,
        product_variant_ids: Iterable[int]
    ) -> List[StockLocation]:
        """锁定若干规格下的全部库存位，单条查询按 id 顺序加锁"""
        ids = sorted(set(product_variant_ids))
        if not ids:
            return []

        stmt = (
            select(StockLocation)
            .where(StockLocation.product_variant_id.in_(ids))
            .order_by(StockLocation.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def increment(
        self,
        session: AsyncSession,
        stock_location_id: int,
        amount: int,
        reason: str
    ) -> StockLocation:
        """增加现存量并记账"""
        _validate_amount(amount)

        location = await self.lock(session, stock_location_id)
        location.quantity = location.quantity + amount
        await session.flush()

        await self.ledger.append(session, location.id, amount, reason)

        logger.info(
            "Stock incremented",
            stock_location_id=location.id,
            amount=amount,
            quantity=location.quantity
        )
        return location

    async def decrement(
        self,
        session: AsyncSession,
        stock_location_id: int,
        amount: int,
        reason: str
    ) -> StockLocation:
        """减少现存量并记账；检查与扣减在同一行锁下完成"""
        _validate_amount(amount)

        location = await self.lock(session, stock_location_id)
        if amount > location.quantity:
            raise InsufficientStockError(
                stock_location_id=location.id,
                available=location.quantity,
                requested=amount
            )

        location.quantity = location.quantity - amount
        await session.flush()

        await self.ledger.append(session, location.id, -amount, reason)

        logger.info(
            "Stock decremented",
            stock_location_id=location.id,
            amount=amount,
            quantity=location.quantity
        )
        return location

    async def update(
        self,
        session: AsyncSession,
        stock_location_id: int,
        changes: StockLocationUpdate
    ) -> StockLocation:
        """修改库存位属性（不涉及数量）"""
        location = await self.lock(session, stock_location_id)

        if changes.item_type is not UNSET:
            location.item_type = validate_item_type(changes.item_type or self.default_item_type)

        await session.flush()
        return location

    async def infer_item_type(
        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int
    ) -> str:
        """推断物料类型：同仓库存位 > 同规格任意库存位 > 默认值"""
        location = await self.find(session, product_variant_id, warehouse_id)
        if location is not None:
            return location.item_type

        stmt = (
            select(StockLocation.item_type)
            .where(StockLocation.product_variant_id == product_variant_id)
            .order_by(StockLocation.id)
            .limit(1)
        )
        result = await session.execute(stmt)
        item_type = result.scalar_one_or_none()
        return item_type or self.default_item_type

    async def active_reserved_quantity(self, session: AsyncSession, stock_location_id: int) -> int:
        """库存位上未消耗、未释放的预留总量"""
        stmt = select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
            Reservation.stock_location_id == stock_location_id,
            Reservation.consumed_at.is_(None),
            Reservation.released_at.is_(None)
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())


def _validate_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(
            code="INVALID_QUANTITY",
            detail=f"Quantity must be a positive integer, got: {amount!r}"
        )

"""
库存管理服务
手工入库、出库、调拨以及库存查询；每个操作一个事务，变动全部记账
"""
from typing import Dict, List, Optional, Any

from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.config import Settings, get_settings
from hz_core.database import DatabaseManager
from hz_core.event_bus import EventBus
from hz_core.models.inventory import StockLocation
from hz_core.utils.errors import ValidationError, NotFoundError, InsufficientStockError
from .base import BaseService
from .ledger import InventoryLedgerStore
from .stock import StockLocationRegistry, StockLocationUpdate, UNSET, validate_item_type


class InventoryService(BaseService):
    """库存服务"""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        registry: Optional[StockLocationRegistry] = None
    ):
        super().__init__(db_manager, event_bus)
        self.settings = settings or get_settings()
        self.registry = registry or StockLocationRegistry(
            default_item_type=self.settings.default_item_type
        )
        self.ledger: InventoryLedgerStore = self.registry.ledger

    def _validate_reason(self, reason: Any) -> str:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(
                code="MISSING_REASON",
                detail="Inventory movements require a reason"
            )
        return reason.strip()

    # ------------------------------------------------------------------
    # 入库 / 出库 / 调拨
    # ------------------------------------------------------------------

    async def add_inventory(
        self,
        product_variant_id: int,
        warehouse_id: int,
        quantity: int,
        reason: str,
        item_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """入库：库存位不存在时自动创建"""
        self.validate_positive_int(quantity, "quantity")
        reason = self._validate_reason(reason)
        if item_type is not None:
            validate_item_type(item_type)

        result = await self.execute_with_transaction(
            self._add_inventory_tx, product_variant_id, warehouse_id, quantity, reason, item_type
        )

        await self._publish_inventory_event(result["stock_location"], quantity, reason)
        return result

    async def _add_inventory_tx(
        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int,
        quantity: int,
        reason: str,
        item_type: Optional[str]
    ) -> Dict[str, Any]:
        location = await self.registry.get_or_create(
            session, product_variant_id, warehouse_id, item_type
        )
        location = await self.registry.increment(session, location.id, quantity, reason)
        entry = await self.ledger.latest_for_location(session, location.id)

        return {
            "stock_location": location.to_dict(),
            "ledger_entry": entry.to_dict(),
        }

    async def deduct_inventory(
        self,
        product_variant_id: int,
        warehouse_id: int,
        quantity: int,
        reason: str
    ) -> Dict[str, Any]:
        """出库：不能超过可用量（现存量减去活跃预留）"""
        self.validate_positive_int(quantity, "quantity")
        reason = self._validate_reason(reason)

        result = await self.execute_with_transaction(
            self._deduct_inventory_tx, product_variant_id, warehouse_id, quantity, reason
        )

        await self._publish_inventory_event(result["stock_location"], -quantity, reason)
        return result

    async def _deduct_inventory_tx(
        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int,
        quantity: int,
        reason: str
    ) -> Dict[str, Any]:
        location = await self._require_location(session, product_variant_id, warehouse_id)
        location = await self._decrement_with_reservation_check(session, location, quantity, reason)
        entry = await self.ledger.latest_for_location(session, location.id)

        return {
            "stock_location": location.to_dict(),
            "ledger_entry": entry.to_dict(),
        }

    async def transfer_inventory(
        self,
        product_variant_id: int,
        from_warehouse_id: int,
        to_warehouse_id: int,
        quantity: int,
        reason: str
    ) -> Dict[str, Any]:
        """仓间调拨：源仓出库 + 目标仓入库，同一事务"""
        self.validate_positive_int(quantity, "quantity")
        reason = self._validate_reason(reason)

        if from_warehouse_id == to_warehouse_id:
            raise ValidationError(
                code="SAME_WAREHOUSE_TRANSFER",
                detail="Source and destination warehouses cannot be the same"
            )

        result = await self.execute_with_transaction(
            self._transfer_inventory_tx,
            product_variant_id, from_warehouse_id, to_warehouse_id, quantity, reason
        )

        await self._publish_inventory_event(result["from_stock_location"], -quantity, reason)
        await self._publish_inventory_event(result["to_stock_location"], quantity, reason)
        return result

    async def _transfer_inventory_tx(
        self,
        session: AsyncSession,
        product_variant_id: int,
        from_warehouse_id: int,
        to_warehouse_id: int,
        quantity: int,
        reason: str
    ) -> Dict[str, Any]:
        source = await self._require_location(session, product_variant_id, from_warehouse_id)

        # 目标库存位沿用源库存位的物料类型
        destination = await self.registry.get_or_create(
            session, product_variant_id, to_warehouse_id, source.item_type
        )
        # 反向调拨并发时，两个库存位按 id 顺序加锁
        await self.registry.lock_many(session, [source.id, destination.id])

        source = await self._decrement_with_reservation_check(
            session, source, quantity, f"Transfer to {to_warehouse_id}: {reason}"
        )
        from_entry = await self.ledger.latest_for_location(session, source.id)

        destination = await self.registry.increment(
            session, destination.id, quantity, f"Transfer from {from_warehouse_id}: {reason}"
        )
        to_entry = await self.ledger.latest_for_location(session, destination.id)

        self.logger.info(
            "Inventory transferred",
            product_variant_id=product_variant_id,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            quantity=quantity
        )

        return {
            "from_stock_location": source.to_dict(),
            "to_stock_location": destination.to_dict(),
            "from_ledger_entry": from_entry.to_dict(),
            "to_ledger_entry": to_entry.to_dict(),
        }

    async def update_stock_location(
        self,
        product_variant_id: int,
        warehouse_id: int,
        changes: StockLocationUpdate
    ) -> Dict[str, Any]:
        """修改库存位物料类型；item_type 为 None 时恢复默认值"""
        if changes.item_type is not UNSET and changes.item_type is not None:
            validate_item_type(changes.item_type)

        return await self.execute_with_transaction(
            self._update_stock_location_tx, product_variant_id, warehouse_id, changes
        )

    async def _update_stock_location_tx(
        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int,
        changes: StockLocationUpdate
    ) -> Dict[str, Any]:
        location = await self._require_location(session, product_variant_id, warehouse_id)
        location = await self.registry.update(session, location.id, changes)

        self.logger.info(
            "Stock location updated",
            stock_location_id=location.id,
            item_type=location.item_type
        )
        return await self._location_row(session, location)

    async def _require_location(

        self,
        session: AsyncSession,
        product_variant_id: int,
        warehouse_id: int
    ) -> StockLocation:
        location = await self.registry.find(session, product_variant_id, warehouse_id)
        if location is None:
            raise NotFoundError(
                code="STOCK_LOCATION_NOT_FOUND",
                resource=(
                    f"Inventory item for product variant {product_variant_id} "
                    f"in warehouse {warehouse_id}"
                )
            )
        return location

    async def _decrement_with_reservation_check(
        self,
        session: AsyncSession,
        location: StockLocation,
        quantity: int,
        reason: str
    ) -> StockLocation:
        location = await self.registry.lock(session, location.id)
        if quantity > location.quantity:
            raise InsufficientStockError(
                stock_location_id=location.id,
                available=location.quantity,
                requested=quantity
            )

        # 已被活跃预留占用的部分不能手工扣减
        reserved = await self.registry.active_reserved_quantity(session, location.id)
        available = location.quantity - reserved
        if quantity > available:
            self.logger.warning(
                "Deduction rejected, stock is reserved",
                stock_location_id=location.id,
                quantity=location.quantity,
                requested=quantity,
                reserved=reserved
            )
            raise InsufficientStockError(
                stock_location_id=location.id,
                available=available,
                requested=quantity
            )

        return await self.registry.decrement(session, location.id, quantity, reason)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_inventory_by_variant(self, product_variant_id: int) -> List[Dict[str, Any]]:
        """规格在各仓库的库存（未知规格返回空列表）"""
        return await self.execute_with_session(self._inventory_by_variant_query, product_variant_id)

    async def _inventory_by_variant_query(self, session: AsyncSession, product_variant_id: int) -> List[Dict[str, Any]]:
        locations = await self.registry.get_by_variant(session, product_variant_id)
        return [await self._location_row(session, location) for location in locations]

    async def get_inventory_by_warehouse(self, warehouse_id: int) -> List[Dict[str, Any]]:
        """仓库内各规格的库存（未知仓库返回空列表）"""
        return await self.execute_with_session(self._inventory_by_warehouse_query, warehouse_id)

    async def _inventory_by_warehouse_query(self, session: AsyncSession, warehouse_id: int) -> List[Dict[str, Any]]:
        locations = await self.registry.get_by_warehouse(session, warehouse_id)
        return [await self._location_row(session, location) for location in locations]

    async def _location_row(self, session: AsyncSession, location: StockLocation) -> Dict[str, Any]:
        row = location.to_dict()
        reserved = await self.registry.active_reserved_quantity(session, location.id)
        row["reserved_quantity"] = reserved
        row["available_quantity"] = location.quantity - reserved
        return row

    async def get_stock_movements(
        self,
        product_variant_id: Optional[int] = None,
        warehouse_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """库存流水，最新的在前"""
        return await self.execute_with_session(
            self._stock_movements_query, product_variant_id, warehouse_id
        )

    async def _stock_movements_query(
        self,
        session: AsyncSession,
        product_variant_id: Optional[int],
        warehouse_id: Optional[int]
    ) -> List[Dict[str, Any]]:
        entries = await self.ledger.list_entries(
            session,
            product_variant_id=product_variant_id,
            warehouse_id=warehouse_id,
            limit=self.settings.stock_movements_limit
        )
        return [entry.to_dict() for entry in entries]

    async def _publish_inventory_event(self, location: Dict[str, Any], change: int, reason: str) -> None:
        await self.publish_event("hz.inventory.changed", {
            "stock_location_id": location["id"],
            "product_variant_id": location["product_variant_id"],
            "warehouse_id": location["warehouse_id"],
            "change_quantity": change,
            "quantity": location["quantity"],
            "reason": reason,
        })

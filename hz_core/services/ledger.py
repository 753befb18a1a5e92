"""
库存台账存储
台账只追加、不修改；每条记录对应一次带符号的库存变动
"""
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.models.inventory import LedgerEntry, StockLocation
from hz_core.utils.errors import ValidationError
from hz_core.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 1000


class InventoryLedgerStore:
    """库存台账"""

    async def append(
        self,
        session: AsyncSession,
        stock_location_id: int,
        change_quantity: int,
        reason: str
    ) -> LedgerEntry:
        """追加一条台账记录（只 flush，由调用方事务提交）"""
        if change_quantity == 0:
            raise ValidationError(
                code="ZERO_LEDGER_CHANGE",
                detail="Ledger change quantity must not be zero"
            )
        if not reason or not reason.strip():
            raise ValidationError(
                code="MISSING_LEDGER_REASON",
                detail="Ledger entry requires a reason"
            )

        entry = LedgerEntry(
            stock_location_id=stock_location_id,
            change_quantity=change_quantity,
            reason=reason
        )
        session.add(entry)
        await session.flush()

        logger.debug(
            "Ledger entry appended",
            ledger_entry_id=entry.id,
            stock_location_id=stock_location_id,
            change_quantity=change_quantity
        )
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        product_variant_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        limit: int = DEFAULT_LIST_LIMIT
    ) -> List[LedgerEntry]:
        """按规格/仓库过滤，最新的在前"""
        stmt = select(LedgerEntry).join(
            StockLocation, StockLocation.id == LedgerEntry.stock_location_id
        )

        if product_variant_id is not None:
            stmt = stmt.where(StockLocation.product_variant_id == product_variant_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockLocation.warehouse_id == warehouse_id)

        stmt = stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def sum_for_location(self, session: AsyncSession, stock_location_id: int) -> int:
        """台账累计变动量，用于与现存量对账"""
        stmt = select(func.coalesce(func.sum(LedgerEntry.change_quantity), 0)).where(
            LedgerEntry.stock_location_id == stock_location_id
        )
        result = await session.execute(stmt)
        return int(result.scalar_one())

    async def latest_for_location(self, session: AsyncSession, stock_location_id: int) -> Optional[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.stock_location_id == stock_location_id)
            .order_by(LedgerEntry.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

"""
库存数据模型
库存位（规格 × 仓库）的现存量，以及只增不改的库存台账
"""
from datetime import datetime
from enum import Enum
from typing import List

from sqlalchemy import (
    BigInteger, Text, Integer,
    CheckConstraint, UniqueConstraint, Index, ForeignKey, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK, enum_values, utcnow


class InventoryItemType(str, Enum):
    """库存物料类型"""
    RAW_MATERIAL = "RAW_MATERIAL"
    WIP = "WIP"
    FINISHED_GOOD = "FINISHED_GOOD"


class StockLocation(Base):
    """库存位表"""
    __tablename__ = "stock_locations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    product_variant_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("product_variants.id"),
        nullable=False,
        comment="商品规格ID"
    )
    warehouse_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("warehouses.id"),
        nullable=False,
        comment="仓库ID"
    )

    # 现存量，只能通过台账操作修改
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="现存数量"
    )
    item_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=InventoryItemType.FINISHED_GOOD.value,
        comment="物料类型"
    )

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="记录创建时间"
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        comment="最后更新时间"
    )

    __table_args__ = (
        UniqueConstraint("product_variant_id", "warehouse_id", name="uq_stock_locations_variant_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_stock_locations_quantity_non_negative"),
        CheckConstraint(f"item_type IN ({enum_values(InventoryItemType)})", name="ck_stock_locations_item_type"),
        Index("ix_stock_locations_variant", "product_variant_id"),
        Index("ix_stock_locations_warehouse", "warehouse_id"),
    )

    ledger_entries: Mapped[List["LedgerEntry"]] = relationship(
        "LedgerEntry",
        back_populates="stock_location",
        order_by="LedgerEntry.id"
    )


class LedgerEntry(Base):
    """库存台账表（只增不改）"""
    __tablename__ = "inventory_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    stock_location_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("stock_locations.id"),
        nullable=False,
        comment="库存位ID"
    )
    change_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="变动数量（带符号）"
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False, comment="变动原因")

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="记录创建时间"
    )

    __table_args__ = (
        CheckConstraint("change_quantity <> 0", name="ck_inventory_ledger_change_non_zero"),
        Index("ix_inventory_ledger_location", "stock_location_id"),
        Index("ix_inventory_ledger_created_at", "created_at"),
    )

    stock_location: Mapped["StockLocation"] = relationship("StockLocation", back_populates="ledger_entries")

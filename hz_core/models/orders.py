"""
订单相关数据模型
订单行创建后不可修改；状态与各阶段时间戳只由订单状态机修改
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    BigInteger, Text, Integer, DateTime,
    CheckConstraint, Index, ForeignKey, UniqueConstraint, Numeric, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK, enum_values, utcnow


class OrderChannel(str, Enum):
    """销售渠道"""
    DTC = "DTC"
    B2B = "B2B"
    POS = "POS"
    WHOLESALE = "WHOLESALE"
    RETAIL = "RETAIL"


class OrderStatus(str, Enum):
    """订单状态"""
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    ALLOCATED = "ALLOCATED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


class Order(Base):
    """订单表"""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    order_number: Mapped[str] = mapped_column(Text, nullable=False, comment="订单号")
    channel: Mapped[str] = mapped_column(Text, nullable=False, comment="销售渠道")
    customer_id: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        ForeignKey("customers.id"),
        nullable=True,
        comment="客户ID（DTC/POS/RETAIL 可为空）"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=OrderStatus.DRAFT.value,
        comment="订单状态"
    )

    # 金额（必须使用 Decimal）
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 4),
        nullable=False,
        default=Decimal("0"),
        comment="订单总额"
    )
    currency: Mapped[str] = mapped_column(Text, nullable=False, comment="币种")

    # 各阶段时间戳
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="确认时间")
    allocated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="全部分配时间")
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="发货时间")
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="履约完成时间")
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="取消时间")
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="退货时间")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="记录创建时间"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        comment="记录更新时间"
    )

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_orders_order_number"),
        CheckConstraint(f"channel IN ({enum_values(OrderChannel)})", name="ck_orders_channel"),
        CheckConstraint(f"status IN ({enum_values(OrderStatus)})", name="ck_orders_status"),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_amount"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_channel", "channel"),
        Index("ix_orders_created_at", "created_at"),
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id"
    )


class OrderItem(Base):
    """订单行项目表"""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id"),
        nullable=False,
        comment="关联订单ID"
    )
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
        comment="下单时指定的仓库ID"
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, comment="数量")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, comment="单价")
    total_price: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, comment="行总价")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price"),
        Index("ix_order_items_order", "order_id"),
        Index("ix_order_items_variant", "product_variant_id"),
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    reservations: Mapped[List["Reservation"]] = relationship(
        "Reservation",
        back_populates="order_item",
        order_by="Reservation.id"
    )

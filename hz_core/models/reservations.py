"""
库存预留数据模型
预留是挂在库存位上的软占用，只影响可用量，不影响现存量
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger, Integer, DateTime,
    CheckConstraint, Index, ForeignKey, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK, utcnow


class ReservationState(str, Enum):
    """预留状态（由时间戳推导，不单独存储）"""
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    RELEASED = "RELEASED"


class Reservation(Base):
    """库存预留表"""
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("orders.id"),
        nullable=False,
        comment="订单ID"
    )
    order_item_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("order_items.id"),
        nullable=False,
        comment="订单行ID"
    )
    stock_location_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("stock_locations.id"),
        nullable=False,
        comment="库存位ID"
    )

    # 冗余字段，便于按规格/仓库查询
    product_variant_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="商品规格ID")
    warehouse_id: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="仓库ID")

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, comment="预留数量")

    reserved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="预留时间"
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="消耗时间（发货扣减库存）"
    )
    released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="释放时间（取消订单）"
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
        # 消耗与释放互斥
        CheckConstraint(
            "consumed_at IS NULL OR released_at IS NULL",
            name="ck_reservations_single_terminal_state"
        ),
        Index("ix_reservations_order", "order_id"),
        Index("ix_reservations_location_active", "stock_location_id", "consumed_at", "released_at"),
        Index("ix_reservations_variant", "product_variant_id"),
    )

    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="reservations")

    @property
    def state(self) -> ReservationState:
        """预留当前状态"""
        if self.consumed_at is not None:
            return ReservationState.CONSUMED
        if self.released_at is not None:
            return ReservationState.RELEASED
        return ReservationState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.consumed_at is None and self.released_at is None

    def to_dict(self):
        result = super().to_dict()
        result["state"] = self.state.value
        return result

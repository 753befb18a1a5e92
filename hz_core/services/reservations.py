"""
库存预留管理
预留只占用可用量（现存量 − 活跃预留），发货时消耗才真正扣减现存量
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.models.base import utcnow
from hz_core.models.inventory import StockLocation
from hz_core.models.orders import OrderItem
from hz_core.models.reservations import Reservation
from hz_core.utils.errors import NotFoundError, InvalidStateError
from hz_core.utils.logger import get_logger
from .stock import StockLocationRegistry

logger = get_logger(__name__)


@dataclass
class ItemReservationOutcome:
    """单个订单行的预留结果"""
    order_item_id: int
    product_variant_id: int
    requested: int
    reserved: int

    @property
    def fully_reserved(self) -> bool:
        return self.reserved >= self.requested

    def to_dict(self) -> Dict[str, int]:
        return {
            "order_item_id": self.order_item_id,
            "product_variant_id": self.product_variant_id,
            "requested": self.requested,
            "reserved": self.reserved,
            "fully_reserved": self.fully_reserved,
        }


@dataclass
class ReservationResult:
    """一次 reserve 调用的结果；部分预留不视为错误"""
    reservations: List[Reservation] = field(default_factory=list)
    items: List[ItemReservationOutcome] = field(default_factory=list)

    @property
    def fully_reserved(self) -> bool:
        return all(item.fully_reserved for item in self.items)

    @property
    def reserved_quantity(self) -> int:
        return sum(r.quantity for r in self.reservations)


class ReservationManager:
    """库存预留管理器"""

    def __init__(self, registry: Optional[StockLocationRegistry] = None):
        self.registry = registry or StockLocationRegistry()

    async def _active_by_location(
        self,
        session: AsyncSession,
        stock_location_ids: Sequence[int]
    ) -> Dict[int, int]:
        """各库存位上的活跃预留量"""
        if not stock_location_ids:
            return {}

        stmt = (
            select(Reservation.stock_location_id, func.sum(Reservation.quantity))
            .where(
                Reservation.stock_location_id.in_(stock_location_ids),
                Reservation.consumed_at.is_(None),
                Reservation.released_at.is_(None)
            )
            .group_by(Reservation.stock_location_id)
        )
        result = await session.execute(stmt)
        return {location_id: int(total) for location_id, total in result.all()}

    async def reserve(
        self,
        session: AsyncSession,
        order_id: int,
        order_items: Iterable[OrderItem]
    ) -> ReservationResult:
        """为订单行贪心分配库存：现存量大的库存位优先，同量按 id 升序

        库存位行锁与预留写入在调用方的同一事务内，
        并发确认的订单看不到彼此未提交的预留，只能排队等锁。
        """
        result = ReservationResult()
        items = list(order_items)

        # 全部规格的库存位一次性按 id 加锁，行的顺序与订单行顺序无关
        all_locations = await self.registry.lock_for_variants(
            session, [item.product_variant_id for item in items]
        )
        locations_by_variant: Dict[int, List[StockLocation]] = {}
        for location in all_locations:
            locations_by_variant.setdefault(location.product_variant_id, []).append(location)

        reserved_by_location = await self._active_by_location(
            session, [loc.id for loc in all_locations]
        )

        for item in items:
            locations = locations_by_variant.get(item.product_variant_id, [])

            remaining = item.quantity
            reserved_for_item = 0

            for location in sorted(locations, key=lambda loc: (-loc.quantity, loc.id)):
                if remaining <= 0:
                    break

                available = location.quantity - reserved_by_location.get(location.id, 0)
                if available <= 0:
                    continue

                take = min(available, remaining)
                reservation = Reservation(
                    order_id=order_id,
                    order_item_id=item.id,
                    stock_location_id=location.id,
                    product_variant_id=location.product_variant_id,
                    warehouse_id=location.warehouse_id,
                    quantity=take
                )
                session.add(reservation)
                result.reservations.append(reservation)

                reserved_by_location[location.id] = reserved_by_location.get(location.id, 0) + take
                remaining -= take
                reserved_for_item += take

            await session.flush()

            outcome = ItemReservationOutcome(
                order_item_id=item.id,
                product_variant_id=item.product_variant_id,
                requested=item.quantity,
                reserved=reserved_for_item
            )
            result.items.append(outcome)

            if not outcome.fully_reserved:
                logger.warning(
                    "Order item partially reserved",
                    order_item_id=item.id,
                    product_variant_id=item.product_variant_id,
                    requested=item.quantity,
                    reserved=reserved_for_item
                )

        logger.info(
            "Inventory reserved",
            order_id=order_id,
            reservation_count=len(result.reservations),
            reserved_quantity=result.reserved_quantity,
            fully_reserved=result.fully_reserved
        )
        return result

    async def _lock_reservations(
        self,
        session: AsyncSession,
        reservation_ids: Sequence[int]
    ) -> List[Reservation]:
        """按 id 顺序锁定预留，缺失的直接报错"""
        ids = list(reservation_ids)
        if not ids:
            return []

        stmt = (
            select(Reservation)
            .where(Reservation.id.in_(ids))
            .order_by(Reservation.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        found = {r.id: r for r in result.scalars().all()}

        missing = [rid for rid in ids if rid not in found]
        if missing:
            raise NotFoundError(
                code="RESERVATION_NOT_FOUND",
                resource=f"Reservation {missing[0]}",
                reservation_ids=missing
            )

        return [found[rid] for rid in sorted(found)]

    @staticmethod
    def _ensure_active(reservation: Reservation, action: str) -> None:
        if not reservation.is_active:
            raise InvalidStateError(
                code="RESERVATION_NOT_ACTIVE",
                detail=(
                    f"Cannot {action} reservation {reservation.id}: "
                    f"reservation is {reservation.state.value}"
                ),
                reservation_id=reservation.id,
                state=reservation.state.value
            )

    async def consume(
        self,
        session: AsyncSession,
        reservation_ids: Sequence[int],
        reason: str = "Reservation consumed"
    ) -> List[Reservation]:
        """消耗预留：扣减对应库存位现存量（记账）并标记 consumed_at"""
        reservations = await self._lock_reservations(session, reservation_ids)

        for reservation in reservations:
            self._ensure_active(reservation, "consume")

        # 先按库存位 id 统一加锁，再逐条扣减
        await self.registry.lock_many(session, [r.stock_location_id for r in reservations])

        now = utcnow()
        for reservation in reservations:
            await self.registry.decrement(
                session,
                reservation.stock_location_id,
                reservation.quantity,
                f"{reason} - Reservation {reservation.id}"
            )
            reservation.consumed_at = now

        await session.flush()

        logger.info(
            "Reservations consumed",
            reservation_ids=[r.id for r in reservations],
            quantity=sum(r.quantity for r in reservations)
        )
        return reservations

    async def release(
        self,
        session: AsyncSession,
        reservation_ids: Sequence[int]
    ) -> List[Reservation]:
        """释放预留：只标记 released_at，不改动现存量"""
        reservations = await self._lock_reservations(session, reservation_ids)

        for reservation in reservations:
            self._ensure_active(reservation, "release")

        now = utcnow()
        for reservation in reservations:
            reservation.released_at = now

        await session.flush()

        logger.info(
            "Reservations released",
            reservation_ids=[r.id for r in reservations],
            quantity=sum(r.quantity for r in reservations)
        )
        return reservations

    async def list_for_order(self, session: AsyncSession, order_id: int) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.order_id == order_id).order_by(Reservation.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def active_for_order(self, session: AsyncSession, order_id: int) -> List[Reservation]:
        stmt = select(Reservation).where(
            Reservation.order_id == order_id,
            Reservation.consumed_at.is_(None),
            Reservation.released_at.is_(None)
        ).order_by(Reservation.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def available_quantity(self, session: AsyncSession, stock_location_id: int) -> int:
        """可用量 = 现存量 − 活跃预留"""
        location = await self.registry.get(session, stock_location_id)
        reserved = await self.registry.active_reserved_quantity(session, stock_location_id)
        return location.quantity - reserved

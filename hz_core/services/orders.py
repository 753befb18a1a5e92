"""
订单服务
订单生命周期的唯一入口：创建、确认（预留库存）、取消、发货（消耗预留）、履约
每个公开操作在一个事务内完成，提交成功后再发布领域事件
"""
import random
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Any

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.config import Settings, get_settings
from hz_core.database import DatabaseManager
from hz_core.event_bus import EventBus
from hz_core.models.base import utcnow
from hz_core.models.catalog import CustomerStatus
from hz_core.models.orders import Order, OrderItem, OrderChannel, OrderStatus
from hz_core.utils.errors import (
    ValidationError, NotFoundError, InvalidStateError,
    InsufficientInventoryError, UniquenessExhaustedError
)
from hz_core.utils.logger import LogContext
from .base import BaseService, RepositoryMixin
from .catalog import CatalogLookup
from .order_state import validate_transition, allowed_transitions
from .reservations import ReservationManager, ReservationResult
from .stock import StockLocationRegistry

# 必须绑定同类型客户的渠道
CUSTOMER_REQUIRED_CHANNELS = {OrderChannel.B2B.value, OrderChannel.WHOLESALE.value}

SHIPPABLE_STATUSES = {OrderStatus.CONFIRMED.value, OrderStatus.ALLOCATED.value}


class OrdersService(BaseService, RepositoryMixin):
    """订单服务"""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        reservations: Optional[ReservationManager] = None,
        catalog: Optional[CatalogLookup] = None
    ):
        super().__init__(db_manager, event_bus)
        self.settings = settings or get_settings()
        self.catalog = catalog or CatalogLookup()
        self.reservations = reservations or ReservationManager(
            StockLocationRegistry(
                catalog=self.catalog,
                default_item_type=self.settings.default_item_type
            )
        )

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create_order(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        """创建 DRAFT 订单及其订单行"""
        self._validate_order_data(order_data)

        order = await self.execute_with_transaction(self._create_order_tx, order_data)

        await self.publish_order_event(order, "created")
        return order

    def _validate_order_data(self, order_data: Dict[str, Any]) -> None:
        """验证订单数据（不访问数据库的部分）"""
        self.validate_required_fields(order_data, ["channel", "currency", "items"])

        channel = order_data["channel"]
        if isinstance(channel, OrderChannel):
            channel = channel.value
        valid_channels = [c.value for c in OrderChannel]
        if channel not in valid_channels:
            raise ValidationError(
                code="INVALID_CHANNEL",
                detail=f"Invalid channel: {channel}. Must be one of: {', '.join(valid_channels)}"
            )
        order_data["channel"] = channel

        if not isinstance(order_data["currency"], str) or not order_data["currency"].strip():
            raise ValidationError(
                code="INVALID_CURRENCY",
                detail="Currency must be a non-empty string"
            )

        items = order_data["items"]
        if not isinstance(items, list) or not items:
            raise ValidationError(
                code="EMPTY_ORDER",
                detail="Order must contain at least one item"
            )

        for item_data in items:
            self._validate_order_item_data(item_data)

    def _validate_order_item_data(self, item_data: Dict[str, Any]) -> None:
        """验证订单行数据"""
        self.validate_required_fields(
            item_data, ["product_variant_id", "warehouse_id", "quantity", "unit_price"]
        )
        self.validate_positive_int(item_data["quantity"], "quantity")

        try:
            price = Decimal(str(item_data["unit_price"]))
            if not price.is_finite() or price < 0:
                raise ValueError("Price cannot be negative")
            item_data["unit_price"] = price
        except (ValueError, TypeError, InvalidOperation):
            raise ValidationError(
                code="INVALID_PRICE",
                detail=f"Invalid unit price: {item_data['unit_price']}"
            )

    async def _validate_customer(self, session: AsyncSession, channel: str, customer_id: Optional[int]) -> None:
        """B2B/WHOLESALE 必须有同类型的活跃客户；其余渠道客户可选"""
        if customer_id is None:
            if channel in CUSTOMER_REQUIRED_CHANNELS:
                raise ValidationError(
                    code="CUSTOMER_REQUIRED",
                    detail=f"Channel {channel} requires a customer"
                )
            return

        customer = await self.catalog.customer_by_id(session, customer_id)
        if customer is None:
            raise NotFoundError(code="CUSTOMER_NOT_FOUND", resource=f"Customer {customer_id}")

        if channel in CUSTOMER_REQUIRED_CHANNELS:
            if customer.type != channel:
                raise ValidationError(
                    code="CUSTOMER_TYPE_MISMATCH",
                    detail=f"Customer type {customer.type} does not match channel {channel}",
                    customer_id=customer_id
                )
            if customer.status != CustomerStatus.ACTIVE.value:
                raise ValidationError(
                    code="CUSTOMER_NOT_ACTIVE",
                    detail=f"Customer {customer_id} is {customer.status}",
                    customer_id=customer_id
                )

    def _generate_order_number(self) -> str:
        """候选订单号：<前缀>-<毫秒时间戳>-<0..9999>"""
        timestamp = int(time.time() * 1000)
        return f"{self.settings.order_number_prefix}-{timestamp}-{random.randint(0, 9999)}"

    async def _generate_unique_order_number(self, session: AsyncSession) -> str:
        """生成唯一订单号，冲突时重新生成，超过最大次数失败"""
        max_attempts = self.settings.order_number_max_attempts

        for attempt in range(1, max_attempts + 1):
            order_number = self._generate_order_number()
            if not await self.exists(session, Order, order_number=order_number):
                return order_number

            self.logger.warning(
                "Order number collision",
                order_number=order_number,
                attempt=attempt,
                max_attempts=max_attempts
            )

        raise UniquenessExhaustedError(
            code="ORDER_NUMBER_EXHAUSTED",
            detail="Failed to generate unique order number after multiple attempts",
            attempts=max_attempts
        )

    async def _create_order_tx(self, session: AsyncSession, order_data: Dict[str, Any]) -> Dict[str, Any]:
        """事务中的订单创建逻辑"""
        channel = order_data["channel"]
        customer_id = order_data.get("customer_id")
        items_data = order_data["items"]

        await self._validate_customer(session, channel, customer_id)

        for item_data in items_data:
            if not await self.catalog.product_variant_exists(session, item_data["product_variant_id"]):
                raise NotFoundError(
                    code="PRODUCT_VARIANT_NOT_FOUND",
                    resource=f"Product variant {item_data['product_variant_id']}"
                )
            if not await self.catalog.warehouse_exists(session, item_data["warehouse_id"]):
                raise NotFoundError(
                    code="WAREHOUSE_NOT_FOUND",
                    resource=f"Warehouse {item_data['warehouse_id']}"
                )

        total_amount = sum(
            (item["unit_price"] * item["quantity"] for item in items_data),
            Decimal("0")
        )
        order_number = await self._generate_unique_order_number(session)

        order = await self.create(session, Order, {
            "order_number": order_number,
            "channel": channel,
            "customer_id": customer_id,
            "status": OrderStatus.DRAFT.value,
            "total_amount": total_amount,
            "currency": order_data["currency"].strip().upper(),
        })

        for item_data in items_data:
            await self.create(session, OrderItem, {
                "order_id": order.id,
                "product_variant_id": item_data["product_variant_id"],
                "warehouse_id": item_data["warehouse_id"],
                "quantity": item_data["quantity"],
                "unit_price": item_data["unit_price"],
                "total_price": item_data["unit_price"] * item_data["quantity"],
            })

        self.logger.info(
            "Order created",
            order_id=order.id,
            order_number=order_number,
            channel=channel,
            item_count=len(items_data),
            total_amount=str(total_amount)
        )
        return await self.serialize_order(session, order)

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def confirm_order(self, order_id: int) -> Dict[str, Any]:
        """确认订单并预留库存；全部预留时直接推进到 ALLOCATED"""
        with LogContext(order_id=order_id):
            order = await self.execute_with_transaction(self._confirm_order_tx, order_id)
            await self.publish_order_event(order, "confirmed")
            return order

    async def _confirm_order_tx(self, session: AsyncSession, order_id: int) -> Dict[str, Any]:
        order = await self.lock_order(session, order_id)
        validate_transition(order.status, OrderStatus.CONFIRMED)

        items = await self.get_items(session, order.id)
        result: ReservationResult = await self.reservations.reserve(session, order.id, items)

        if not result.reservations:
            self.logger.warning(
                "No inventory could be reserved, order remains DRAFT",
                order_number=order.order_number,
                channel=order.channel
            )
            raise InsufficientInventoryError(
                detail=(
                    f"Could not allocate inventory for any items in order {order.order_number}. "
                    f"Order remains in DRAFT status."
                ),
                order_id=order.id,
                items=[outcome.to_dict() for outcome in result.items]
            )

        now = utcnow()
        order.status = OrderStatus.CONFIRMED.value
        order.confirmed_at = now

        if result.fully_reserved:
            validate_transition(order.status, OrderStatus.ALLOCATED)
            order.status = OrderStatus.ALLOCATED.value
            order.allocated_at = now

        await session.flush()

        self.logger.info(
            "Order confirmed",
            order_number=order.order_number,
            channel=order.channel,
            status=order.status,
            reserved_quantity=result.reserved_quantity,
            fully_reserved=result.fully_reserved
        )

        data = await self.serialize_order(session, order)
        data["allocation"] = {
            "fully_reserved": result.fully_reserved,
            "items": [outcome.to_dict() for outcome in result.items],
        }
        return data

    async def cancel_order(self, order_id: int) -> Dict[str, Any]:
        """取消订单并释放全部活跃预留"""
        with LogContext(order_id=order_id):
            order = await self.execute_with_transaction(self._cancel_order_tx, order_id)
            await self.publish_order_event(order, "cancelled")
            return order

    async def _cancel_order_tx(self, session: AsyncSession, order_id: int) -> Dict[str, Any]:
        order = await self.lock_order(session, order_id)
        validate_transition(order.status, OrderStatus.CANCELLED)

        active = await self.reservations.active_for_order(session, order.id)
        await self.reservations.release(session, [r.id for r in active])

        order.status = OrderStatus.CANCELLED.value
        order.cancelled_at = utcnow()
        await session.flush()

        self.logger.info(
            "Order cancelled",
            order_number=order.order_number,
            channel=order.channel,
            released_reservations=len(active)
        )
        return await self.serialize_order(session, order)

    async def ship_order(self, order_id: int) -> Dict[str, Any]:
        """发货：消耗全部活跃预留，真正扣减现存量"""
        with LogContext(order_id=order_id):
            order = await self.execute_with_transaction(self._ship_order_tx, order_id)
            await self.publish_order_event(order, "shipped")
            return order

    async def _ship_order_tx(self, session: AsyncSession, order_id: int) -> Dict[str, Any]:
        order = await self.lock_order(session, order_id)

        if order.status not in SHIPPABLE_STATUSES:
            raise InvalidStateError(
                code="INVALID_ORDER_STATE",
                detail=f"Cannot ship order {order.order_number} in status {order.status}",
                current_status=order.status
            )

        active = await self.reservations.active_for_order(session, order.id)
        if not active:
            raise InvalidStateError(
                code="NO_ACTIVE_RESERVATIONS",
                detail=f"Order {order.order_number} has no active reservations to ship"
            )

        validate_transition(order.status, OrderStatus.SHIPPED)

        await self.reservations.consume(
            session,
            [r.id for r in active],
            reason=f"Order {order.order_number} ({order.channel}) shipment"
        )

        order.status = OrderStatus.SHIPPED.value
        order.shipped_at = utcnow()
        await session.flush()

        self.logger.info(
            "Order shipped",
            order_number=order.order_number,
            channel=order.channel,
            shipped_quantity=sum(r.quantity for r in active)
        )
        return await self.serialize_order(session, order)

    async def fulfill_order(self, order_id: int) -> Dict[str, Any]:
        """标记履约完成"""
        with LogContext(order_id=order_id):
            order = await self.execute_with_transaction(self._fulfill_order_tx, order_id)
            await self.publish_order_event(order, "fulfilled")
            return order

    async def _fulfill_order_tx(self, session: AsyncSession, order_id: int) -> Dict[str, Any]:
        order = await self.lock_order(session, order_id)
        validate_transition(order.status, OrderStatus.FULFILLED)

        active = await self.reservations.active_for_order(session, order.id)
        if active:
            if self.settings.strict_fulfillment:
                raise InvalidStateError(
                    code="ACTIVE_RESERVATIONS_REMAIN",
                    detail=(
                        f"Order {order.order_number} still has {len(active)} active reservations; "
                        f"ship the order before fulfilling it"
                    ),
                    reservation_ids=[r.id for r in active]
                )
            self.logger.warning(
                "Fulfilling order with active reservations",
                order_number=order.order_number,
                active_reservations=len(active)
            )

        order.status = OrderStatus.FULFILLED.value
        order.fulfilled_at = utcnow()
        await session.flush()

        self.logger.info("Order fulfilled", order_number=order.order_number, channel=order.channel)
        return await self.serialize_order(session, order)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        """获取订单详情（含订单行与预留）"""
        return await self.execute_with_session(self._get_order_query, order_id)

    async def _get_order_query(self, session: AsyncSession, order_id: int) -> Dict[str, Any]:
        order = await self.get_by_id(session, Order, order_id)
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        return await self.serialize_order(session, order)

    async def list_orders(
        self,
        status: Optional[str] = None,
        channel: Optional[str] = None,
        page_size: int = 50,
        offset: int = 0
    ) -> Dict[str, Any]:
        """查询订单列表（最新的在前）"""
        return await self.execute_with_session(
            self._list_orders_query, status, channel, page_size, offset
        )

    async def _list_orders_query(
        self,
        session: AsyncSession,
        status: Optional[str],
        channel: Optional[str],
        page_size: int,
        offset: int
    ) -> Dict[str, Any]:
        stmt = select(Order)

        if status:
            stmt = stmt.where(Order.status == status)
        if channel:
            stmt = stmt.where(Order.channel == channel)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await session.execute(count_stmt)).scalar_one()

        stmt = stmt.order_by(desc(Order.created_at), desc(Order.id)).offset(offset).limit(page_size)
        result = await session.execute(stmt)
        orders = list(result.scalars().all())

        orders_data = []
        for order in orders:
            order_dict = order.to_dict()
            order_dict["items"] = [item.to_dict() for item in await self.get_items(session, order.id)]
            orders_data.append(order_dict)

        return {
            "items": orders_data,
            "total": total,
            "page_size": page_size,
            "offset": offset,
            "has_more": offset + page_size < total
        }

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    async def lock_order(self, session: AsyncSession, order_id: int) -> Order:
        """锁定订单行，串行化同一订单上的并发状态变更"""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        return order

    async def get_items(self, session: AsyncSession, order_id: int) -> List[OrderItem]:
        return await self.get_many_by_field(session, OrderItem, "order_id", order_id)

    async def serialize_order(self, session: AsyncSession, order: Order) -> Dict[str, Any]:
        """订单 + 订单行 + 预留"""
        data = order.to_dict()
        data["items"] = [item.to_dict() for item in await self.get_items(session, order.id)]
        data["reservations"] = [
            r.to_dict() for r in await self.reservations.list_for_order(session, order.id)
        ]
        data["allowed_transitions"] = sorted(s.value for s in allowed_transitions(order.status))
        return data

    async def publish_order_event(self, order: Dict[str, Any], action: str) -> None:
        """发布订单事件"""
        await self.publish_event(f"hz.order.{action}", {
            "order_id": order["id"],
            "order_number": order["order_number"],
            "channel": order["channel"],
            "status": order["status"],
            "total_amount": order["total_amount"],
            "currency": order["currency"],
        })

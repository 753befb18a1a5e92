"""
退货处理
退回的数量加回到每行指定的仓库（记账），全部退回时订单进入 RETURNED
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hz_core.config import Settings, get_settings
from hz_core.database import DatabaseManager
from hz_core.event_bus import EventBus
from hz_core.models.base import utcnow
from hz_core.models.orders import OrderStatus
from hz_core.utils.errors import ValidationError, NotFoundError, InvalidStatusTransitionError
from hz_core.utils.logger import LogContext
from .base import BaseService
from .order_state import RETURNABLE_STATUSES, allowed_transitions, validate_transition
from .orders import OrdersService
from .stock import StockLocationRegistry


class ReturnProcessor(BaseService):
    """退货处理器"""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        event_bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        registry: Optional[StockLocationRegistry] = None,
        orders: Optional[OrdersService] = None
    ):
        super().__init__(db_manager, event_bus)
        self.settings = settings or get_settings()
        self.registry = registry or StockLocationRegistry(
            default_item_type=self.settings.default_item_type
        )
        self.orders = orders or OrdersService(
            db_manager=self.db_manager,
            event_bus=self.event_bus,
            settings=self.settings
        )

    async def return_order(self, order_id: int, return_items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """处理订单退货"""
        self._validate_return_items(return_items)

        with LogContext(order_id=order_id):
            order = await self.execute_with_transaction(self._return_order_tx, order_id, return_items)
            await self.orders.publish_order_event(order, "returned")
            return order

    def _validate_return_items(self, return_items: List[Dict[str, Any]]) -> None:
        if not isinstance(return_items, list) or not return_items:
            raise ValidationError(
                code="EMPTY_RETURN",
                detail="Return must contain at least one item"
            )

        for line in return_items:
            self.validate_required_fields(line, ["order_item_id", "quantity", "warehouse_id", "reason"])
            self.validate_positive_int(line["quantity"], "quantity")
            if not isinstance(line["reason"], str) or not line["reason"].strip():
                raise ValidationError(
                    code="MISSING_RETURN_REASON",
                    detail="Each return line requires a reason"
                )

    async def _return_order_tx(
        self,
        session: AsyncSession,
        order_id: int,
        return_items: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        order = await self.orders.lock_order(session, order_id)

        if order.status not in {s.value for s in RETURNABLE_STATUSES}:
            self.logger.warning(
                "Attempted to return order in non-returnable status",
                order_number=order.order_number,
                status=order.status
            )
            raise InvalidStatusTransitionError(
                current_status=order.status,
                target_status=OrderStatus.RETURNED.value,
                allowed=[s.value for s in allowed_transitions(order.status)]
            )
        validate_transition(order.status, OrderStatus.RETURNED)

        items = {item.id: item for item in await self.orders.get_items(session, order.id)}

        # 只校验本次请求内同一订单行的累计数量，不与历史退货合并
        requested: Dict[int, int] = {}
        for line in return_items:
            order_item = items.get(line["order_item_id"])
            if order_item is None:
                raise NotFoundError(
                    code="ORDER_ITEM_NOT_FOUND",
                    resource=f"Order item {line['order_item_id']} in order {order.order_number}"
                )

            total = requested.get(order_item.id, 0) + line["quantity"]
            if total > order_item.quantity:
                raise ValidationError(
                    code="RETURN_QUANTITY_EXCEEDED",
                    detail=(
                        f"Return quantity {total} exceeds ordered quantity "
                        f"{order_item.quantity} for order item {order_item.id}"
                    ),
                    order_item_id=order_item.id
                )
            requested[order_item.id] = total

        locations = []
        for line in return_items:
            order_item = items[line["order_item_id"]]
            item_type = await self.registry.infer_item_type(
                session, order_item.product_variant_id, line["warehouse_id"]
            )
            location = await self.registry.get_or_create(
                session, order_item.product_variant_id, line["warehouse_id"], item_type
            )
            locations.append(location)

        await self.registry.lock_many(session, [location.id for location in locations])

        for line, location in zip(return_items, locations):
            await self.registry.increment(
                session,
                location.id,
                line["quantity"],
                f"Order {order.order_number} ({order.channel}) return - {line['reason'].strip()}"
            )

        total_returned = sum(requested.values())
        total_ordered = sum(item.quantity for item in items.values())

        if total_returned >= total_ordered:
            order.status = OrderStatus.RETURNED.value
            order.returned_at = utcnow()
            self.logger.info(
                "Order fully returned",
                order_number=order.order_number,
                channel=order.channel,
                returned_quantity=total_returned
            )
        else:
            order.status = OrderStatus.SHIPPED.value
            self.logger.warning(
                "Partial return, order status set to SHIPPED",
                order_number=order.order_number,
                channel=order.channel,
                returned_quantity=total_returned,
                ordered_quantity=total_ordered
            )

        await session.flush()
        return await self.orders.serialize_order(session, order)

"""
订单状态机
"""
from typing import Dict, FrozenSet, Union

from hz_core.models.orders import OrderStatus
from hz_core.utils.errors import InvalidStatusTransitionError

S = OrderStatus

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    S.DRAFT: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.ALLOCATED, S.SHIPPED, S.FULFILLED, S.CANCELLED}),
    S.ALLOCATED: frozenset({S.SHIPPED, S.FULFILLED, S.CANCELLED}),
    S.SHIPPED: frozenset({S.FULFILLED, S.RETURNED}),
    S.DELIVERED: frozenset({S.FULFILLED, S.RETURNED}),
    S.COMPLETED: frozenset({S.FULFILLED, S.RETURNED}),
    S.FULFILLED: frozenset({S.RETURNED}),
    S.CANCELLED: frozenset(),
    S.RETURNED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)

# 可以发起退货的状态
RETURNABLE_STATUSES = frozenset({S.FULFILLED, S.SHIPPED, S.DELIVERED, S.COMPLETED})


def _coerce(status: Union[str, OrderStatus]) -> OrderStatus:
    return status if isinstance(status, OrderStatus) else OrderStatus(status)


def allowed_transitions(current: Union[str, OrderStatus]) -> FrozenSet[OrderStatus]:
    return ORDER_TRANSITIONS[_coerce(current)]


def can_transition(current: Union[str, OrderStatus], target: Union[str, OrderStatus]) -> bool:
    return _coerce(target) in allowed_transitions(current)


def validate_transition(current: Union[str, OrderStatus], target: Union[str, OrderStatus]) -> None:
    """校验状态流转，非法时抛出 InvalidStatusTransitionError"""
    current_status = _coerce(current)
    target_status = _coerce(target)
    allowed = ORDER_TRANSITIONS[current_status]

    if target_status not in allowed:
        raise InvalidStatusTransitionError(
            current_status=current_status.value,
            target_status=target_status.value,
            allowed=[s.value for s in allowed]
        )

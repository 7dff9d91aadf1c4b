from datetime import datetime
from typing import Dict, FrozenSet, Union

from shared.utils import InvalidStatusException

from blossomhub.models import OrderDB, OrderStatus

INITIAL_STATUS = OrderStatus.PENDING

# Allowed targets per current status. Every status may currently move to any
# other one, including backwards (delivered -> pending).
TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    current: frozenset(OrderStatus) for current in OrderStatus
}


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise InvalidStatusException(f"Invalid status '{value}', expected one of: {allowed}")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def set_status(order: OrderDB, new_status: Union[str, OrderStatus], now: datetime) -> OrderDB:
    """
    Move `order` to `new_status`.

    Returns an updated copy; only `status` and `updated_at` differ from the
    input. Authorization is the caller's job.
    """
    target = parse_status(new_status)
    if not can_transition(order.status, target):
        raise InvalidStatusException(
            f"Cannot move order from '{order.status.value}' to '{target.value}'"
        )
    return order.model_copy(update={"status": target, "updated_at": now})

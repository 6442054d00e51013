"""
Order status state machine.

Happy path: confirmed -> processing -> shipped -> delivered.
Refunds from confirmed, processing or shipped. Cancellation from any
non-terminal status. Unpaid orders reach `confirmed` only through payment
confirmation.
"""
from marketorders.core.exceptions import InvalidStatusTransition
from marketorders.models.order import TERMINAL_STATUSES, UNPAID_STATUSES, OrderStatus

S = OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING_CONFIRMATION: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.PAYMENT_PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PROCESSING, S.REFUNDED, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SHIPPED, S.REFUNDED, S.CANCELLED}),
    S.SHIPPED: frozenset({S.DELIVERED, S.REFUNDED, S.CANCELLED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}


def is_unpaid(status: str | OrderStatus) -> bool:
    return OrderStatus(status) in UNPAID_STATUSES


def is_terminal(status: str | OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def can_transition(current: str | OrderStatus, requested: str | OrderStatus) -> bool:
    return OrderStatus(requested) in ALLOWED_TRANSITIONS[OrderStatus(current)]


def check_transition(
    order_number: str,
    current: str | OrderStatus,
    requested: str | OrderStatus,
    *,
    force: bool = False,
) -> bool:
    """
    Validate a status change requested through `update_status`.

    Returns True when the move is outside the table and was let through
    by `force`. Raises InvalidStatusTransition otherwise.
    """
    current, requested = OrderStatus(current), OrderStatus(requested)

    if current == requested:
        raise InvalidStatusTransition(
            order_number, current.value, requested.value, hint="order is already in that status"
        )
    if current in UNPAID_STATUSES and requested == S.CONFIRMED:
        raise InvalidStatusTransition(
            order_number, current.value, requested.value, hint="use payment confirmation"
        )
    if can_transition(current, requested):
        return False

    if not force:
        raise InvalidStatusTransition(order_number, current.value, requested.value)

    # The override only reorders paid, live statuses
    blocked = UNPAID_STATUSES | {S.CANCELLED}
    if current in blocked or requested in blocked:
        raise InvalidStatusTransition(
            order_number,
            current.value,
            requested.value,
            hint="override cannot touch unpaid or cancelled orders",
        )
    return True

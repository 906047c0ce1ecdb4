"""Order state machine: the only writer of ``status`` and ``payment_status``.

Every write is a conditional UPDATE guarded by the values the caller last
observed (``WHERE status = <expected>``). Zero affected rows means another
request won the race, and the caller gets ``StaleOrderError`` instead of a
silent overwrite. Each status change appends one ``OrderStatusHistory`` row
inside the same transaction.

The functions here never touch inventory or notifications; callers compose
those side effects around them.
"""

import logging

from django.db import transaction
from django.utils import timezone

from .domain import ALLOWED_TRANSITIONS, OrderStatus, PaymentStatus, TERMINAL_STATUSES
from .errors import AlreadyTerminalError, StaleOrderError, TransitionError
from .models import OrderModel, OrderStatusHistory

logger = logging.getLogger(__name__)


def _check_precondition(order: OrderModel, from_status: OrderStatus, to_status: OrderStatus) -> None:
    if OrderStatus(order.status) != from_status:
        raise StaleOrderError(
            f"Order {order.order_number} is {order.status}, expected {from_status.value}"
        )
    if to_status == from_status:
        raise TransitionError(f"Order is already in this status ({to_status.value})")


def transition(order: OrderModel, from_status, to_status, note: str | None = None, actor: str | None = None):
    """Move an order along the status graph.

    Args:
        order: Order instance as last read by the caller.
        from_status: Status the caller believes the order is in.
        to_status: Requested successor status.
        note: Optional note stored on the history row.
        actor: Optional identifier of who triggered the change.

    Returns:
        OrderModel: The refreshed order.

    Raises:
        StaleOrderError: ``order.status`` differs from ``from_status`` or the
            row changed concurrently.
        TransitionError: ``to_status`` equals the current status or is not
            an allowed successor.
    """
    from_status, to_status = OrderStatus(from_status), OrderStatus(to_status)
    _check_precondition(order, from_status, to_status)
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        raise TransitionError(f"Cannot transition from {from_status.value} to {to_status.value}")
    return _write(order, {"status": to_status.value}, from_status=from_status, to_status=to_status,
                  note=note, actor=actor)


def override(order: OrderModel, from_status, to_status, note: str | None = None, actor: str | None = None,
             **fields):
    """Status change driven by payment or reservation events.

    Payment confirmation, deposit receipt, expiry and reservation
    cancellation may jump across the graph; the only rule is that the order
    is not already terminal. Extra ``fields`` are written in the same UPDATE.
    """
    from_status, to_status = OrderStatus(from_status), OrderStatus(to_status)
    _check_precondition(order, from_status, to_status)
    if from_status in TERMINAL_STATUSES:
        raise AlreadyTerminalError(f"Order {order.order_number} is already {from_status.value}")
    values = dict(fields)
    values["status"] = to_status.value
    return _write(order, values, from_status=from_status, to_status=to_status, note=note, actor=actor)


def record_payment(order: OrderModel, payment_status, *, status=None, note: str | None = None,
                   actor: str | None = None, **fields):
    """Set ``payment_status`` and, optionally, move the order status with it.

    The UPDATE is guarded on both the status and the payment status the
    caller observed. When ``status`` is given and differs from the current
    one, the move follows ``override`` rules and writes a history row.
    """
    payment_status = PaymentStatus(payment_status)
    current = OrderStatus(order.status)
    values = dict(fields)
    values["payment_status"] = payment_status.value
    to_status = None
    if status is not None and OrderStatus(status) != current:
        if current in TERMINAL_STATUSES:
            raise AlreadyTerminalError(f"Order {order.order_number} is already {current.value}")
        to_status = OrderStatus(status)
        values["status"] = to_status.value
    return _write(order, values, from_status=current, to_status=to_status, note=note, actor=actor,
                  expected_payment_status=order.payment_status)


@transaction.atomic
def _write(order, values, *, from_status, to_status=None, note=None, actor=None, expected_payment_status=None):
    values["updated_at"] = timezone.now()
    qs = OrderModel.objects.filter(pk=order.pk, status=from_status.value)
    if expected_payment_status is not None:
        qs = qs.filter(payment_status=expected_payment_status)
    if not qs.update(**values):
        raise StaleOrderError(f"Order {order.order_number} changed concurrently")

    if to_status is not None:
        OrderStatusHistory.objects.create(
            order_id=order.pk,
            from_status=from_status.value,
            to_status=to_status.value,
            note=note or "",
            changed_by=actor or "",
        )
        logger.info(
            "order status changed",
            extra={"order": order.order_number, "from_status": from_status.value, "to_status": to_status.value},
        )
    order.refresh_from_db()
    return order


def record_creation(order: OrderModel, note: str = "Order created", actor: str | None = None) -> None:
    """Append the initial ``None -> pending`` history entry."""
    OrderStatusHistory.objects.create(
        order_id=order.pk, from_status=None, to_status=order.status, note=note, changed_by=actor or ""
    )

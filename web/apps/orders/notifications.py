"""Fire-and-forget customer notifications.

``dispatch`` records a ``NotificationLog`` row in the caller's transaction
and defers the actual send until that transaction commits. Delivery runs
on a small thread pool (or inline when ``NOTIFICATIONS_ASYNC`` is off) and
its outcome is written back to the log row. A failed send is logged and
left in the ``failed`` state for manual follow-up; it never reaches the
code path that triggered it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
import threading

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.db import DatabaseError, close_old_connections, transaction
from django.utils import timezone

from .domain import NotificationStatus
from .models import NotificationLog, OrderModel

logger = logging.getLogger(__name__)

ORDER_CONFIRMATION = "order_confirmation"
STATUS_UPDATE = "status_update"
DEPOSIT_RECEIVED = "deposit_received"
DEPOSIT_REJECTED = "deposit_rejected"
RESERVATION_EXPIRED = "reservation_expired"
ORDER_CANCELLED = "order_cancelled"
REFUND = "refund"

SUBJECTS = {
    ORDER_CONFIRMATION: "Order {code} received",
    STATUS_UPDATE: "Order {code} is now {status}",
    DEPOSIT_RECEIVED: "Deposit received for order {code}",
    DEPOSIT_REJECTED: "Deposit proof for order {code} needs attention",
    RESERVATION_EXPIRED: "Reservation {code} has expired",
    ORDER_CANCELLED: "Order {code} was cancelled",
    REFUND: "Refund issued for order {code}",
}

_executor = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=getattr(settings, "NOTIFICATIONS_MAX_WORKERS", 2),
                thread_name_prefix="notify",
            )
        return _executor


def _body(order: OrderModel, kind: str, context: dict) -> str:
    lines = [f"Hello {order.customer_name},", ""]
    if kind == ORDER_CONFIRMATION:
        lines.append(f"We received your order {order.order_number}. Total: {order.total:,} {order.currency}.")
        if order.is_deposit:
            lines.append(f"Deposit due: {order.deposit_amount:,} {order.currency} before {order.deposit_due_at:%Y-%m-%d %H:%M}.")
        if order.bank_transfer_memo:
            lines.append(f"Please use the transfer memo: {order.bank_transfer_memo}")
    elif kind == STATUS_UPDATE:
        lines.append(f"Your order {order.order_number} is now {order.status}.")
    elif kind == DEPOSIT_RECEIVED:
        lines.append(f"We received the deposit for order {order.order_number}. "
                     f"Remaining: {order.remaining_amount:,} {order.currency}.")
    elif kind == DEPOSIT_REJECTED:
        lines.append(f"We could not verify your transfer proof for order {order.order_number}.")
        if context.get("note"):
            lines.append(f"Reviewer note: {context['note']}")
        lines.append("You can upload a new proof from the tracking page.")
    elif kind == RESERVATION_EXPIRED:
        lines.append(f"The reservation for order {order.order_number} expired before the deposit arrived.")
    elif kind == ORDER_CANCELLED:
        lines.append(f"Order {order.order_number} was cancelled.")
        if context.get("reason"):
            lines.append(f"Reason: {context['reason']}")
    elif kind == REFUND:
        lines.append(f"A refund of {context.get('amount', 0):,} {order.currency} was issued for "
                     f"order {order.order_number}.")
    return "\n".join(lines)


def build_message(order: OrderModel, kind: str, **context) -> EmailMultiAlternatives:
    subject = SUBJECTS[kind].format(code=order.order_number, status=order.status)
    return EmailMultiAlternatives(
        subject,
        _body(order, kind, context),
        settings.DEFAULT_FROM_EMAIL,
        [order.customer_email],
    )


def dispatch(order: OrderModel, kind: str, **context) -> None:
    """Queue a notification for ``order``; never raises."""
    try:
        with transaction.atomic():
            if not order.customer_email:
                NotificationLog.objects.create(order=order, kind=kind, status=NotificationStatus.SKIPPED.value)
                return
            message = build_message(order, kind, **context)
            log = NotificationLog.objects.create(order=order, kind=kind, recipient=order.customer_email)
    except (DatabaseError, KeyError, ValueError):
        logger.exception("could not queue notification", extra={"order": order.order_number, "kind": kind})
        return
    transaction.on_commit(lambda: _submit(log.pk, message))


def _submit(log_id: int, message: EmailMultiAlternatives) -> None:
    if getattr(settings, "NOTIFICATIONS_ASYNC", True):
        _get_executor().submit(_deliver_in_thread, log_id, message)
    else:
        _deliver(log_id, message)


def _deliver_in_thread(log_id: int, message: EmailMultiAlternatives) -> None:
    try:
        _deliver(log_id, message)
    finally:
        close_old_connections()


def _deliver(log_id: int, message: EmailMultiAlternatives) -> None:
    status, error = NotificationStatus.SENT, ""
    try:
        message.send(fail_silently=False)
    except Exception as exc:
        # dead-letter: the row stays "failed" for manual resend
        logger.exception("notification send failed", extra={"notification_id": log_id})
        status, error = NotificationStatus.FAILED, str(exc)
    try:
        NotificationLog.objects.filter(pk=log_id).update(status=status.value, error=error, updated_at=timezone.now())
    except DatabaseError:
        logger.exception("could not record notification outcome", extra={"notification_id": log_id})

"""Applies verified payment-provider events to orders.

Each event is resolved to an order, checked against the per-order set of
applied event ids, applied, and then recorded. Every mutation is also
value-idempotent: replaying an event whose effect is already visible
changes nothing, so a lost race or a redelivery is harmless.
"""

import logging

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from . import notifications, state_machine
from .domain import (
    FINAL_REFUND_STATUSES,
    REFUND_PAYMENT_STATUSES,
    SETTLED_PAYMENT_STATUSES,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
)
from .errors import ExternalDependencyError, StaleOrderError
from .events import PaymentFailed, PaymentSucceeded, RefundObserved, RefundSnapshot, Unhandled
from .models import OrderModel, PaymentEventRecord, RefundRecord
from .repository import OrderRepository

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"

_ATTEMPTS = 2


class PaymentReconciler:
    def __init__(self, inventory, provider, repository: OrderRepository | None = None):
        self.inventory = inventory
        self.provider = provider
        self.repository = repository or OrderRepository()

    def handle(self, event) -> str:
        """Apply one typed event.

        Returns:
            str: ``applied``, ``duplicate`` or ``ignored``.
        """
        if isinstance(event, Unhandled):
            logger.info("webhook event ignored", extra={"event_id": event.event_id, "event_type": event.event_type})
            return IGNORED

        order = self._resolve_order(event)
        if order is None:
            logger.warning(
                "webhook event has no matching order",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return IGNORED

        if PaymentEventRecord.objects.filter(order=order, event_id=event.event_id).exists():
            logger.info("webhook event already applied", extra={"event_id": event.event_id, "order": order.order_number})
            return DUPLICATE

        for attempt in range(1, _ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    self._apply(order, event)
                    PaymentEventRecord.objects.get_or_create(
                        order=order, event_id=event.event_id, defaults={"event_type": event.event_type}
                    )
                break
            except StaleOrderError:
                if attempt == _ATTEMPTS:
                    raise
                logger.info("order changed while applying event, retrying",
                            extra={"event_id": event.event_id, "order": order.order_number})
                order.refresh_from_db()

        if isinstance(event, PaymentFailed):
            self._release_after_failure(order)
        return APPLIED

    # ---- resolution ----
    def _resolve_order(self, event) -> OrderModel | None:
        if event.order_id:
            order = self.repository.get_by_id(event.order_id)
            if order is not None:
                return order
        if isinstance(event, RefundObserved):
            return self.repository.find_by_payment_reference(
                payment_intent_id=event.payment_intent_id, charge_id=event.charge_id
            )
        return None

    def _apply(self, order: OrderModel, event) -> None:
        if isinstance(event, PaymentSucceeded):
            self._on_success(order, event)
        elif isinstance(event, PaymentFailed):
            self._on_failure(order, event)
        elif isinstance(event, RefundObserved):
            self._on_refund(order, event)

    # ---- payment succeeded ----
    def _store_references(self, order: OrderModel, event: PaymentSucceeded) -> dict:
        fields = {}
        if event.payment_intent_id and not order.provider_payment_intent_id:
            fields["provider_payment_intent_id"] = event.payment_intent_id
        if event.session_id and not order.provider_checkout_session_id:
            fields["provider_checkout_session_id"] = event.session_id
        if event.charge_id and not order.provider_charge_id:
            fields["provider_charge_id"] = event.charge_id
        return fields

    def _on_success(self, order: OrderModel, event: PaymentSucceeded) -> None:
        references = self._store_references(order, event)
        current = PaymentStatus(order.payment_status)
        settled = PaymentStatus.DEPOSITED if order.is_deposit else PaymentStatus.PAID

        if current == settled or current in REFUND_PAYMENT_STATUSES or order.is_terminal:
            if order.is_terminal and current not in SETTLED_PAYMENT_STATUSES:
                logger.warning(
                    "payment succeeded for a closed order",
                    extra={"order": order.order_number, "status": order.status, "event_id": event.event_id},
                )
            if references:
                OrderModel.objects.filter(pk=order.pk).update(updated_at=timezone.now(), **references)
            return

        if order.inventory_released_at is not None:
            logger.warning(
                "payment succeeded after stock was released, check availability manually",
                extra={"order": order.order_number, "event_id": event.event_id},
            )

        status = OrderStatus(order.status)
        if order.is_deposit:
            target = OrderStatus.DEPOSITED if status in (OrderStatus.PENDING, OrderStatus.CONFIRMED) else None
            state_machine.record_payment(
                order,
                PaymentStatus.DEPOSITED,
                status=target,
                note="Deposit paid by card",
                actor="payment-webhook",
                deposit_received_at=timezone.now(),
                **references,
            )
            notifications.dispatch(order, notifications.DEPOSIT_RECEIVED)
        else:
            target = OrderStatus.CONFIRMED if status == OrderStatus.PENDING else None
            state_machine.record_payment(
                order,
                PaymentStatus.PAID,
                status=target,
                note="Payment confirmed by provider",
                actor="payment-webhook",
                **references,
            )
            notifications.dispatch(order, notifications.STATUS_UPDATE)
        logger.info("payment applied", extra={"order": order.order_number, "payment_status": order.payment_status})

    # ---- payment failed ----
    def _on_failure(self, order: OrderModel, event: PaymentFailed) -> None:
        current = PaymentStatus(order.payment_status)
        if current == PaymentStatus.FAILED or current in SETTLED_PAYMENT_STATUSES or order.is_terminal:
            return
        fields = {}
        if event.payment_intent_id and not order.provider_payment_intent_id:
            fields["provider_payment_intent_id"] = event.payment_intent_id
        state_machine.record_payment(order, PaymentStatus.FAILED, actor="payment-webhook", **fields)
        logger.info("payment failed", extra={"order": order.order_number, "reason": event.reason})

    def _release_after_failure(self, order: OrderModel) -> None:
        if order.payment_status != PaymentStatus.FAILED.value or order.inventory_released_at is not None:
            return
        try:
            self.repository.release_stock(order, self.inventory)
        except ExternalDependencyError:
            logger.exception("stock release after failed payment did not complete",
                             extra={"order": order.order_number})

    # ---- refunds ----
    def _snapshots(self, event: RefundObserved) -> tuple:
        if event.refunds or not event.charge_id:
            return event.refunds
        try:
            listed = self.provider.list_refunds(event.charge_id)
        except ExternalDependencyError:
            logger.exception("could not list refunds for charge", extra={"charge_id": event.charge_id})
            return ()
        return tuple(
            RefundSnapshot(refund_id=r.id, amount=r.amount, status=r.status, currency=r.currency, reason=r.reason)
            for r in listed
        )

    def _upsert_refund(self, order: OrderModel, snap: RefundSnapshot) -> bool:
        """Store one refund; True when it is newly observed as succeeded."""
        try:
            incoming = RefundStatus(snap.status)
        except ValueError:
            logger.warning("unknown refund status", extra={"refund_id": snap.refund_id, "status": snap.status})
            return False

        record, created = RefundRecord.objects.select_for_update().get_or_create(
            refund_id=snap.refund_id,
            defaults={
                "order": order,
                "amount": snap.amount,
                "currency": snap.currency or order.currency,
                "status": incoming.value,
                "reason": snap.reason,
            },
        )
        if created:
            return incoming == RefundStatus.SUCCEEDED
        if record.order_id != order.pk:
            logger.error("refund belongs to another order",
                         extra={"refund_id": snap.refund_id, "order": order.order_number})
            return False

        previous = RefundStatus(record.status)
        if previous == incoming or previous in FINAL_REFUND_STATUSES:
            return False
        record.status = incoming.value
        record.amount = snap.amount or record.amount
        record.save(update_fields=["status", "amount", "updated_at"])
        return incoming == RefundStatus.SUCCEEDED

    def _on_refund(self, order: OrderModel, event: RefundObserved) -> None:
        succeeded = [snap for snap in self._snapshots(event) if self._upsert_refund(order, snap)]

        refunds = order.refunds.all()
        total = refunds.filter(status=RefundStatus.SUCCEEDED.value).aggregate(s=Sum("amount"))["s"] or 0
        still_pending = refunds.filter(
            status__in=[RefundStatus.PENDING.value, RefundStatus.REQUIRES_ACTION.value]
        ).exists()

        current = PaymentStatus(order.payment_status)
        paid = order.paid_amount
        if paid > 0 and total >= paid:
            target = PaymentStatus.REFUNDED
        elif total > 0:
            target = PaymentStatus.PARTIALLY_REFUNDED
        elif current == PaymentStatus.REFUND_PENDING and not still_pending:
            target = PaymentStatus.DEPOSITED if order.is_deposit else PaymentStatus.PAID
        else:
            target = current

        if target != current or total != order.total_refunded_amount:
            state_machine.record_payment(order, target, actor="payment-webhook", total_refunded_amount=total)
            logger.info(
                "refund state updated",
                extra={"order": order.order_number, "payment_status": target.value, "refunded": total},
            )

        for snap in succeeded:
            notifications.dispatch(order, notifications.REFUND, amount=snap.amount)

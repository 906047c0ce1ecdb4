"""Staff-initiated refunds of card payments.

The refund is requested from the provider and recorded as ``pending``; its
final outcome arrives later through the payment webhook, which owns the
refunded totals.
"""

import logging

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from . import state_machine
from .domain import REFUNDABLE_PAYMENT_STATUSES, OrderStatus, PaymentStatus, RefundStatus, allowed_successors
from .errors import ConflictError, ValidationError
from .models import OrderModel, RefundRecord
from .repository import OrderRepository

logger = logging.getLogger(__name__)

_OPEN_OR_SUCCEEDED = [RefundStatus.PENDING.value, RefundStatus.REQUIRES_ACTION.value, RefundStatus.SUCCEEDED.value]


class RefundService:
    def __init__(self, inventory, provider, repository: OrderRepository | None = None):
        self.inventory = inventory
        self.provider = provider
        self.repository = repository or OrderRepository()

    def refundable_amount(self, order: OrderModel) -> int:
        committed = order.refunds.filter(status__in=_OPEN_OR_SUCCEEDED).aggregate(s=Sum("amount"))["s"] or 0
        return max(order.paid_amount - committed, 0)

    def _charge_id(self, order: OrderModel) -> str:
        if order.provider_charge_id:
            return order.provider_charge_id
        if not order.provider_payment_intent_id:
            raise ValidationError(
                f"Order {order.order_number} has no card payment to refund", field="provider_payment_intent_id"
            )
        charge_id = self.provider.resolve_charge(order.provider_payment_intent_id)
        if not charge_id:
            raise ValidationError(f"Payment for order {order.order_number} has no charge yet",
                                  field="provider_charge_id")
        OrderModel.objects.filter(pk=order.pk).update(provider_charge_id=charge_id, updated_at=timezone.now())
        order.provider_charge_id = charge_id
        return charge_id

    def _restock(self, order: OrderModel, note: str | None, actor: str | None) -> None:
        with transaction.atomic():
            if not order.is_terminal:
                current = OrderStatus(order.status)
                # delivered goods came back: the only successor is refunded
                if OrderStatus.CANCELLED in allowed_successors(current):
                    target, default_note = OrderStatus.CANCELLED, "Cancelled for refund"
                else:
                    target, default_note = OrderStatus.REFUNDED, "Returned for refund"
                state_machine.transition(order, current, target, note=note or default_note, actor=actor)
            self.repository.release_stock(order, self.inventory, strict=True)

    def request_refund(self, order: OrderModel, amount: int | None = None, reason: str | None = None,
                       note: str | None = None, restock: bool = False, actor: str | None = None) -> RefundRecord:
        """Refund up to the remaining refundable balance of ``order``.

        Args:
            order: A paid or deposited card order.
            amount: Requested amount; capped at the remaining balance. ``None``
                refunds everything left.
            reason: Free-form reason kept on the refund record.
            note: Note for the refund record and the cancellation history.
            restock: Close the order (cancelled, or refunded once delivered) and
                return its stock before refunding.
            actor: Staff identifier.

        Raises:
            ConflictError: Nothing left to refund or payment not refundable.
            ValidationError: No provider payment reference on the order.
            ExternalDependencyError: The provider rejected or failed the call.
        """
        if PaymentStatus(order.payment_status) not in REFUNDABLE_PAYMENT_STATUSES:
            raise ConflictError(f"Order {order.order_number} payment is {order.payment_status}, not refundable")
        charge_id = self._charge_id(order)

        remaining = self.refundable_amount(order)
        if remaining <= 0:
            raise ConflictError(f"Order {order.order_number} has nothing left to refund")
        amount = remaining if amount is None else min(amount, remaining)
        if amount <= 0:
            raise ValidationError("Refund amount must be positive", field="amount")

        if restock:
            self._restock(order, note, actor)

        refund = self.provider.create_refund(
            charge_id=charge_id,
            amount=amount,
            metadata={"order_id": str(order.pk), "order_code": order.order_number},
            idempotency_key=f"refund_{order.order_number}_{order.paid_amount - remaining}_{amount}",
        )

        with transaction.atomic():
            record, _ = RefundRecord.objects.get_or_create(
                refund_id=refund.id,
                defaults={
                    "order": order,
                    "amount": refund.amount or amount,
                    "currency": refund.currency or order.currency,
                    "status": RefundStatus.PENDING.value,
                    "reason": reason or "",
                    "note": note or "",
                    "requested_by": actor or "",
                },
            )
            order.refresh_from_db()
            if PaymentStatus(order.payment_status) in REFUNDABLE_PAYMENT_STATUSES:
                state_machine.record_payment(order, PaymentStatus.REFUND_PENDING, actor=actor)

        logger.info(
            "refund requested",
            extra={"order": order.order_number, "refund_id": refund.id, "amount": amount, "restock": restock},
        )
        return record

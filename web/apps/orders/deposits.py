"""Deposit reservations: receipt, expiry, cancellation and transfer proofs.

A deposit reservation holds stock until the deposit arrives or its due time
passes. There is no scheduler: overdue reservations are expired lazily when
the order is read, and in bulk by ``expire_overdue`` (cron endpoint and the
``expire_deposits`` management command).
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import notifications, state_machine
from .domain import (
    TERMINAL_STATUSES,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    ProofStatus,
)
from .errors import (
    AlreadyProcessedError,
    AlreadyTerminalError,
    ConflictError,
    InventoryReleaseError,
    NotFoundError,
    ProofConflictError,
    StaleOrderError,
    ValidationError,
)
from .models import DepositTransferProof, OrderModel
from .repository import OrderRepository

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class DepositManager:
    def __init__(self, inventory, repository: OrderRepository | None = None):
        self.inventory = inventory
        self.repository = repository or OrderRepository()

    @staticmethod
    def _require_deposit(order: OrderModel) -> None:
        if order.order_type != OrderType.DEPOSIT_RESERVATION.value:
            raise ValidationError(f"Order {order.order_number} is not a deposit reservation", field="order_type")

    # ---- deposit receipt ----
    def mark_deposit_received(self, order: OrderModel, note: str | None = None, actor: str | None = None):
        """Record the deposit as received and move the order to ``deposited``.

        Raises:
            ValidationError: Not a deposit reservation.
            AlreadyProcessedError: Deposit already recorded.
            AlreadyTerminalError: Order is closed.
        """
        self._require_deposit(order)
        if order.payment_status == PaymentStatus.DEPOSITED.value or order.status == OrderStatus.DEPOSITED.value:
            raise AlreadyProcessedError(f"Deposit for order {order.order_number} was already received")
        if order.is_terminal:
            raise AlreadyTerminalError(f"Order {order.order_number} is already {order.status}")

        target = OrderStatus.DEPOSITED if order.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED) else None
        state_machine.record_payment(
            order,
            PaymentStatus.DEPOSITED,
            status=target,
            note=note or "Deposit received",
            actor=actor,
            deposit_received_at=timezone.now(),
        )
        notifications.dispatch(order, notifications.DEPOSIT_RECEIVED)
        return order

    # ---- expiry / cancellation ----
    def _close(self, order: OrderModel, to_status: OrderStatus, note: str, actor: str | None, kind: str):
        self._require_deposit(order)
        if order.is_terminal:
            raise AlreadyTerminalError(f"Order {order.order_number} is already {order.status}")
        with transaction.atomic():
            state_machine.override(order, order.status, to_status, note=note, actor=actor)
            self.repository.release_stock(order, self.inventory, strict=True)
            notifications.dispatch(order, kind, reason=note)
        logger.info("reservation closed", extra={"order": order.order_number, "status": to_status.value})
        return order

    def expire(self, order: OrderModel, note: str | None = None, actor: str | None = None):
        """Expire the reservation and return its stock.

        Raises:
            AlreadyTerminalError: Order already expired, cancelled or refunded.
            InventoryReleaseError: Stock release failed; nothing was changed.
        """
        return self._close(order, OrderStatus.EXPIRED, note or "Reservation expired",
                           actor, notifications.RESERVATION_EXPIRED)

    def cancel(self, order: OrderModel, note: str | None = None, actor: str | None = None):
        return self._close(order, OrderStatus.CANCELLED, note or "Reservation cancelled",
                           actor, notifications.ORDER_CANCELLED)

    def is_due(self, order: OrderModel, now=None) -> bool:
        now = now or timezone.now()
        return (
            order.is_deposit
            and order.payment_status == PaymentStatus.DEPOSIT_PENDING.value
            and order.deposit_due_at is not None
            and order.deposit_due_at <= now
            and not order.is_terminal
        )

    def expire_if_due(self, order: OrderModel, now=None) -> bool:
        """Expire ``order`` when its deposit is overdue. Returns True when it was expired here."""
        if not self.is_due(order, now):
            return False
        try:
            self.expire(order, note="Deposit not received before the due time", actor=SYSTEM_ACTOR)
        except (StaleOrderError, AlreadyTerminalError):
            order.refresh_from_db()
            return False
        except InventoryReleaseError:
            logger.exception("lazy expiry failed", extra={"order": order.order_number})
            order.refresh_from_db()
            return False
        return True

    def expire_overdue(self, limit: int | None = None, now=None) -> int:
        """Expire every overdue deposit reservation, oldest due first."""
        now = now or timezone.now()
        qs = (
            OrderModel.objects.filter(
                order_type=OrderType.DEPOSIT_RESERVATION.value,
                payment_status=PaymentStatus.DEPOSIT_PENDING.value,
                deposit_due_at__lte=now,
            )
            .exclude(status__in=[s.value for s in TERMINAL_STATUSES])
            .order_by("deposit_due_at")
        )
        if limit:
            qs = qs[:limit]
        expired = 0
        for order in qs:
            if self.expire_if_due(order, now):
                expired += 1
        logger.info("overdue reservations expired", extra={"expired": expired})
        return expired

    # ---- transfer proofs ----
    def submit_proof(self, order: OrderModel, image_urls: list, customer_note: str = "") -> DepositTransferProof:
        """Attach a bank-transfer receipt for review.

        Raises:
            ValidationError: Not a bank-transfer deposit order, or no images.
            AlreadyTerminalError: Order closed (including lazy expiry right now).
            AlreadyProcessedError: Deposit already received.
            ProofConflictError: A proof is already waiting for review.
        """
        self._require_deposit(order)
        if order.payment_method != PaymentMethod.BANK_TRANSFER.value:
            raise ValidationError("Transfer proofs are only accepted for bank transfer deposits",
                                  field="payment_method")
        if not image_urls:
            raise ValidationError(field="image_urls")
        self.expire_if_due(order)
        if order.is_terminal:
            raise AlreadyTerminalError(f"Order {order.order_number} is already {order.status}")
        if order.payment_status != PaymentStatus.DEPOSIT_PENDING.value:
            raise AlreadyProcessedError(f"Deposit for order {order.order_number} was already received")
        if order.deposit_proofs.filter(status=ProofStatus.PENDING.value).exists():
            raise ProofConflictError("A transfer proof is already waiting for review")

        try:
            with transaction.atomic():
                proof = DepositTransferProof.objects.create(
                    order=order, image_urls=list(image_urls), customer_note=customer_note or ""
                )
        except IntegrityError:
            raise ProofConflictError("A transfer proof is already waiting for review") from None
        logger.info("transfer proof submitted", extra={"order": order.order_number, "proof": proof.pk})
        return proof

    def review_proof(self, order: OrderModel, proof_id, approve: bool, note: str | None = None,
                     actor: str | None = None) -> DepositTransferProof:
        """Approve (records the deposit) or reject (customer may resubmit) a pending proof."""
        self._require_deposit(order)
        proof = order.deposit_proofs.filter(pk=proof_id).first()
        if proof is None:
            raise NotFoundError(f"Proof {proof_id} not found for order {order.order_number}")
        if proof.status != ProofStatus.PENDING.value:
            raise ConflictError(f"Proof {proof_id} was already {proof.status}")

        outcome = ProofStatus.APPROVED if approve else ProofStatus.REJECTED
        with transaction.atomic():
            updated = DepositTransferProof.objects.filter(pk=proof.pk, status=ProofStatus.PENDING.value).update(
                status=outcome.value, reviewed_by=actor or "", reviewed_at=timezone.now(), review_note=note or ""
            )
            if not updated:
                raise ConflictError(f"Proof {proof_id} was reviewed concurrently")
            if approve:
                self.mark_deposit_received(order, note=note or "Transfer proof approved", actor=actor)
            else:
                notifications.dispatch(order, notifications.DEPOSIT_REJECTED, note=note or "")
        proof.refresh_from_db()
        logger.info("transfer proof reviewed", extra={"order": order.order_number, "proof": proof.pk,
                                                      "outcome": outcome.value})
        return proof

import uuid
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

from .domain import (
    NotificationStatus,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentMode,
    PaymentStatus,
    ProofStatus,
    RefundStatus,
    TERMINAL_STATUSES,
    choices,
)


class OrderModel(models.Model):
    # UUID PK exposed through the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Internal incremental counter, source of the human readable order number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)
    order_number = models.CharField(max_length=32, unique=True, editable=False, null=True)

    customer_name = models.CharField(max_length=200)
    customer_phone = models.CharField(max_length=32)
    customer_email = models.EmailField(blank=True)
    shipping_address = models.CharField(max_length=300)
    shipping_city = models.CharField(max_length=120)
    shipping_district = models.CharField(max_length=120, blank=True)

    subtotal = models.PositiveBigIntegerField(default=0)
    shipping_fee = models.PositiveBigIntegerField(default=0)
    tax = models.PositiveBigIntegerField(default=0)
    discount = models.PositiveBigIntegerField(default=0)
    total = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="VND")

    order_type = models.CharField(max_length=32, choices=choices(OrderType), default=OrderType.STANDARD.value)
    status = models.CharField(
        max_length=32, choices=choices(OrderStatus), default=OrderStatus.PENDING.value, db_index=True
    )
    payment_status = models.CharField(
        max_length=32, choices=choices(PaymentStatus), default=PaymentStatus.PENDING.value
    )
    payment_method = models.CharField(max_length=32, choices=choices(PaymentMethod))
    payment_mode = models.CharField(max_length=16, choices=choices(PaymentMode))

    deposit_amount = models.PositiveBigIntegerField(default=0)
    remaining_amount = models.PositiveBigIntegerField(default=0)
    deposit_due_at = models.DateTimeField(null=True, blank=True)
    deposit_received_at = models.DateTimeField(null=True, blank=True)
    bank_transfer_memo = models.CharField(max_length=64, blank=True)

    provider_checkout_session_id = models.CharField(max_length=255, blank=True, db_index=True)
    provider_payment_intent_id = models.CharField(max_length=255, blank=True, db_index=True)
    provider_charge_id = models.CharField(max_length=255, blank=True, db_index=True)
    total_refunded_amount = models.PositiveBigIntegerField(default=0)
    inventory_released_at = models.DateTimeField(null=True, blank=True)

    customer_note = models.TextField(blank=True)
    admin_note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        indexes = [
            models.Index(fields=["order_type", "payment_status", "deposit_due_at"], name="orders_deposit_due_idx"),
        ]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` and the order number only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1
                self.order_number = f"ORD-{timezone.localdate():%Y%m%d}-{self.internal_id:06d}"
                super().save(*args, **kwargs)
            return

        super().save(*args, **kwargs)

    def __str__(self):
        return self.order_number or str(self.id)

    @property
    def is_deposit(self) -> bool:
        return self.order_type == OrderType.DEPOSIT_RESERVATION.value

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    @property
    def paid_amount(self) -> int:
        """Amount actually collected online: the deposit for deposit orders, else the total."""
        return self.deposit_amount if self.is_deposit else self.total


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        "catalog.Product", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    product_name = models.CharField(max_length=200)
    product_slug = models.CharField(max_length=200, blank=True)
    product_sku = models.CharField(max_length=64, blank=True)
    image_url = models.URLField(max_length=500, blank=True)
    unit_price = models.PositiveBigIntegerField()
    quantity = models.PositiveIntegerField()
    subtotal = models.PositiveBigIntegerField()

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class OrderStatusHistory(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="history")
    from_status = models.CharField(max_length=32, choices=choices(OrderStatus), null=True, blank=True)
    to_status = models.CharField(max_length=32, choices=choices(OrderStatus))
    note = models.TextField(blank=True)
    changed_by = models.CharField(max_length=150, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_status_history"
        ordering = ["created_at", "id"]


class PaymentEventRecord(models.Model):
    """A provider event id already applied to an order."""

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="payment_events")
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100)
    applied_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payment_events"
        constraints = [
            models.UniqueConstraint(fields=["order", "event_id"], name="uniq_payment_event_per_order"),
        ]


class RefundRecord(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="refunds")
    refund_id = models.CharField(max_length=255, unique=True)
    amount = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, blank=True)
    status = models.CharField(max_length=32, choices=choices(RefundStatus), default=RefundStatus.PENDING.value)
    reason = models.CharField(max_length=255, blank=True)
    note = models.TextField(blank=True)
    requested_by = models.CharField(max_length=150, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "refunds"
        ordering = ["created_at", "id"]


class DepositTransferProof(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="deposit_proofs")
    image_urls = models.JSONField(default=list)
    status = models.CharField(max_length=16, choices=choices(ProofStatus), default=ProofStatus.PENDING.value)
    customer_note = models.TextField(blank=True)
    submitted_at = models.DateTimeField(auto_now_add=True)
    reviewed_by = models.CharField(max_length=150, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_note = models.TextField(blank=True)

    class Meta:
        db_table = "deposit_transfer_proofs"
        ordering = ["-submitted_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["order"], condition=Q(status="pending"), name="uniq_pending_proof_per_order"
            ),
        ]


class OrderTrackingToken(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="tracking_tokens")
    token_hash = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField()
    created_by = models.CharField(max_length=150, blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)
    last_accessed_at = models.DateTimeField(null=True, blank=True)
    access_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_tracking_tokens"


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=255, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"


class NotificationLog(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="notifications")
    kind = models.CharField(max_length=64)
    recipient = models.CharField(max_length=254, blank=True)
    status = models.CharField(
        max_length=32, choices=choices(NotificationStatus), default=NotificationStatus.QUEUED.value
    )
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "notification_log"
        ordering = ["created_at", "id"]

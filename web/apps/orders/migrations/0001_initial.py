import uuid

import django.db.models.deletion
from django.db import migrations, models

ORDER_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("confirmed", "Confirmed"),
    ("deposited", "Deposited"),
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
    ("cancelled", "Cancelled"),
    ("refunded", "Refunded"),
    ("expired", "Expired"),
]
PAYMENT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("deposit_pending", "Deposit pending"),
    ("deposited", "Deposited"),
    ("paid", "Paid"),
    ("failed", "Failed"),
    ("refund_pending", "Refund pending"),
    ("partially_refunded", "Partially refunded"),
    ("refunded", "Refunded"),
]
REFUND_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("requires_action", "Requires action"),
    ("succeeded", "Succeeded"),
    ("failed", "Failed"),
    ("canceled", "Canceled"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("internal_id", models.BigIntegerField(editable=False, null=True, unique=True)),
                ("order_number", models.CharField(editable=False, max_length=32, null=True, unique=True)),
                ("customer_name", models.CharField(max_length=200)),
                ("customer_phone", models.CharField(max_length=32)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
                ("shipping_address", models.CharField(max_length=300)),
                ("shipping_city", models.CharField(max_length=120)),
                ("shipping_district", models.CharField(blank=True, max_length=120)),
                ("subtotal", models.PositiveBigIntegerField(default=0)),
                ("shipping_fee", models.PositiveBigIntegerField(default=0)),
                ("tax", models.PositiveBigIntegerField(default=0)),
                ("discount", models.PositiveBigIntegerField(default=0)),
                ("total", models.PositiveBigIntegerField(default=0)),
                ("currency", models.CharField(default="VND", max_length=3)),
                (
                    "order_type",
                    models.CharField(
                        choices=[("standard", "Standard"), ("deposit_reservation", "Deposit reservation")],
                        default="standard",
                        max_length=32,
                    ),
                ),
                (
                    "status",
                    models.CharField(choices=ORDER_STATUS_CHOICES, db_index=True, default="pending", max_length=32),
                ),
                (
                    "payment_status",
                    models.CharField(choices=PAYMENT_STATUS_CHOICES, default="pending", max_length=32),
                ),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("cod", "Cod"), ("bank_transfer", "Bank transfer"), ("card", "Card")],
                        max_length=32,
                    ),
                ),
                (
                    "payment_mode",
                    models.CharField(
                        choices=[("deposit", "Deposit"), ("full", "Full"), ("cod", "Cod")],
                        max_length=16,
                    ),
                ),
                ("deposit_amount", models.PositiveBigIntegerField(default=0)),
                ("remaining_amount", models.PositiveBigIntegerField(default=0)),
                ("deposit_due_at", models.DateTimeField(blank=True, null=True)),
                ("deposit_received_at", models.DateTimeField(blank=True, null=True)),
                ("bank_transfer_memo", models.CharField(blank=True, max_length=64)),
                ("provider_checkout_session_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("provider_payment_intent_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("provider_charge_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("total_refunded_amount", models.PositiveBigIntegerField(default=0)),
                ("inventory_released_at", models.DateTimeField(blank=True, null=True)),
                ("customer_note", models.TextField(blank=True)),
                ("admin_note", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-internal_id"],
                "indexes": [
                    models.Index(
                        fields=["order_type", "payment_status", "deposit_due_at"], name="orders_deposit_due_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=255, unique=True)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "idempotency_keys",
            },
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_name", models.CharField(max_length=200)),
                ("product_slug", models.CharField(blank=True, max_length=200)),
                ("product_sku", models.CharField(blank=True, max_length=64)),
                ("image_url", models.URLField(blank=True, max_length=500)),
                ("unit_price", models.PositiveBigIntegerField()),
                ("quantity", models.PositiveIntegerField()),
                ("subtotal", models.PositiveBigIntegerField()),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="items", to="orders.ordermodel"
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "db_table": "order_items",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="OrderStatusHistory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(blank=True, choices=ORDER_STATUS_CHOICES, max_length=32, null=True)),
                ("to_status", models.CharField(choices=ORDER_STATUS_CHOICES, max_length=32)),
                ("note", models.TextField(blank=True)),
                ("changed_by", models.CharField(blank=True, max_length=150)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="history", to="orders.ordermodel"
                    ),
                ),
            ],
            options={
                "db_table": "order_status_history",
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="PaymentEventRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(max_length=100)),
                ("applied_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_events",
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "payment_events",
                "constraints": [
                    models.UniqueConstraint(fields=("order", "event_id"), name="uniq_payment_event_per_order")
                ],
            },
        ),
        migrations.CreateModel(
            name="RefundRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("refund_id", models.CharField(max_length=255, unique=True)),
                ("amount", models.PositiveBigIntegerField()),
                ("currency", models.CharField(blank=True, max_length=3)),
                ("status", models.CharField(choices=REFUND_STATUS_CHOICES, default="pending", max_length=32)),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("note", models.TextField(blank=True)),
                ("requested_by", models.CharField(blank=True, max_length=150)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE, related_name="refunds", to="orders.ordermodel"
                    ),
                ),
            ],
            options={
                "db_table": "refunds",
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="DepositTransferProof",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("image_urls", models.JSONField(default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("customer_note", models.TextField(blank=True)),
                ("submitted_at", models.DateTimeField(auto_now_add=True)),
                ("reviewed_by", models.CharField(blank=True, max_length=150)),
                ("reviewed_at", models.DateTimeField(blank=True, null=True)),
                ("review_note", models.TextField(blank=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="deposit_proofs",
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "deposit_transfer_proofs",
                "ordering": ["-submitted_at", "-id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "pending")),
                        fields=("order",),
                        name="uniq_pending_proof_per_order",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderTrackingToken",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("token_hash", models.CharField(max_length=64, unique=True)),
                ("expires_at", models.DateTimeField()),
                ("created_by", models.CharField(blank=True, max_length=150)),
                ("revoked_at", models.DateTimeField(blank=True, null=True)),
                ("last_accessed_at", models.DateTimeField(blank=True, null=True)),
                ("access_count", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tracking_tokens",
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "order_tracking_tokens",
            },
        ),
        migrations.CreateModel(
            name="NotificationLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("kind", models.CharField(max_length=64)),
                ("recipient", models.CharField(blank=True, max_length=254)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("sent", "Sent"),
                            ("failed", "Failed"),
                            ("skipped_no_email", "Skipped no email"),
                        ],
                        default="queued",
                        max_length=32,
                    ),
                ),
                ("error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "notification_log",
                "ordering": ["created_at", "id"],
            },
        ),
    ]

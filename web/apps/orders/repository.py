"""Repository layer for reading and persisting orders.

Keeps ORM lookups out of the services: locating orders by public code or
by a provider payment reference, persisting a freshly priced order with
its item snapshots, and returning an order's stock exactly once.
"""

import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .domain import (
    CheckoutRequest,
    OrderQuote,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentMode,
    PricedLine,
    transfer_memo,
)
from .errors import InventoryReleaseError, NotFoundError
from .models import OrderItemModel, OrderModel

logger = logging.getLogger(__name__)


class OrderRepository:
    """Repository that maps between domain values and the Django ORM."""

    def get_by_code(self, code: str) -> OrderModel:
        """Fetch an order by its public order number.

        Raises:
            NotFoundError: No order has this code.
        """
        try:
            return OrderModel.objects.get(order_number=code)
        except OrderModel.DoesNotExist:
            raise NotFoundError(f"Order {code} not found") from None

    def get_by_id(self, order_id) -> OrderModel | None:
        return OrderModel.objects.filter(pk=order_id).first()

    def find_by_payment_reference(self, payment_intent_id: str = "", charge_id: str = "") -> OrderModel | None:
        """Locate an order by provider payment intent or charge id (indexed columns)."""
        cond = Q()
        if payment_intent_id:
            cond |= Q(provider_payment_intent_id=payment_intent_id)
        if charge_id:
            cond |= Q(provider_charge_id=charge_id)
        if not cond:
            return None
        return OrderModel.objects.filter(cond).order_by("-created_at").first()

    def create(self, request: CheckoutRequest, quote: OrderQuote, payment_status, memo_prefix: str) -> OrderModel:
        """Insert the order row in status ``pending``.

        The bank-transfer memo needs the generated order number, so it is
        written right after the insert.
        """
        is_deposit = request.payment_mode == PaymentMode.DEPOSIT
        order = OrderModel(
            customer_name=request.customer.full_name.strip(),
            customer_phone=request.customer.phone.strip(),
            customer_email=request.customer.email.strip(),
            shipping_address=request.shipping.address.strip(),
            shipping_city=request.shipping.city.strip(),
            shipping_district=request.shipping.district.strip(),
            subtotal=quote.subtotal,
            shipping_fee=quote.shipping_fee,
            tax=quote.tax,
            discount=quote.discount,
            total=quote.total,
            order_type=(OrderType.DEPOSIT_RESERVATION if is_deposit else OrderType.STANDARD).value,
            status=OrderStatus.PENDING.value,
            payment_status=payment_status.value,
            payment_method=request.payment_method.value,
            payment_mode=request.payment_mode.value,
            deposit_amount=quote.deposit_amount if is_deposit else 0,
            remaining_amount=quote.remaining_amount if is_deposit else 0,
            deposit_due_at=quote.deposit_due_at if is_deposit else None,
            customer_note=request.note.strip(),
        )
        order.save()
        if is_deposit and request.payment_method == PaymentMethod.BANK_TRANSFER:
            order.bank_transfer_memo = transfer_memo(order.order_number, memo_prefix)
            order.save(update_fields=["bank_transfer_memo", "updated_at"])
        return order

    def add_item(self, order: OrderModel, line: PricedLine) -> OrderItemModel:
        return OrderItemModel.objects.create(
            order=order,
            product_id=line.product_id,
            product_name=line.name,
            product_slug=line.slug,
            product_sku=line.sku,
            image_url=line.image_url,
            unit_price=line.unit_price,
            quantity=line.quantity,
            subtotal=line.subtotal,
        )

    def release_stock(self, order: OrderModel, inventory, *, strict: bool = False) -> bool:
        """Return every item's quantity to stock, at most once per order.

        The ``inventory_released_at`` column is claimed with a conditional
        UPDATE so a failed-payment webhook and a later cancellation cannot
        both restock the same order.

        Args:
            order: Order whose items are released.
            inventory: ``InventoryPort`` implementation.
            strict: Raise ``InventoryReleaseError`` (rolling back the claim
                and the caller's transaction) instead of logging failures.

        Returns:
            bool: False when at least one line could not be released.
        """
        with transaction.atomic():
            claimed = OrderModel.objects.filter(pk=order.pk, inventory_released_at__isnull=True).update(
                inventory_released_at=timezone.now()
            )
            if not claimed:
                logger.info("stock already released", extra={"order": order.order_number})
                return True

            failed = []
            for item in order.items.all():
                if item.product_id is None:
                    logger.warning("order item has no product, skipping release",
                                   extra={"order": order.order_number, "item": item.pk})
                    continue
                if not inventory.release(str(item.product_id), item.quantity):
                    failed.append(str(item.product_id))

            if failed and strict:
                raise InventoryReleaseError(f"Could not release stock for products {', '.join(failed)}")

        if failed:
            logger.error("stock release incomplete", extra={"order": order.order_number, "products": failed})
            return False
        return True

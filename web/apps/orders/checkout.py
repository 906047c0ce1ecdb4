"""Checkout orchestration: cart -> priced, stock-reserved, persisted order.

Order row, item snapshots and stock decrements happen inside one database
transaction. A remote stock ledger is not covered by that transaction, so
once the transaction has rolled back every successful reservation is
compensated explicitly before the error propagates. The database ledger's
decrements are undone by the rollback itself and are never compensated.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.catalog.models import Product

from . import notifications, state_machine, tracking
from .domain import (
    CheckoutRequest,
    DepositConfig,
    InventoryPort,
    PaymentMethod,
    PaymentMode,
    PricedLine,
    deposit_per_unit,
    initial_payment_status,
    merge_lines,
    quote,
)
from .errors import EmptyCartError, InsufficientStockError, NotFoundError, ValidationError
from .models import OrderModel
from .repository import OrderRepository

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = (
    ("customer.full_name", lambda r: r.customer.full_name),
    ("customer.phone", lambda r: r.customer.phone),
    ("shipping.address", lambda r: r.shipping.address),
    ("shipping.city", lambda r: r.shipping.city),
)


@dataclass
class CheckoutResult:
    order: OrderModel
    tracking_token: str

    @property
    def transfer_memo(self) -> str | None:
        return self.order.bank_transfer_memo or None


class CheckoutService:
    """Turns a validated checkout request into a durable ``pending`` order."""

    def __init__(self, inventory: InventoryPort, repository: OrderRepository | None = None):
        self.inventory = inventory
        self.repository = repository or OrderRepository()

    # ---- validation ----
    def _validate(self, request: CheckoutRequest) -> None:
        if not request.lines:
            raise EmptyCartError()
        for name, getter in _REQUIRED_FIELDS:
            value = getter(request)
            if not value or not value.strip():
                raise ValidationError(field=name)
        for line in request.lines:
            if line.quantity < 1:
                raise ValidationError(f"Quantity for product {line.product_id} must be at least 1",
                                      field="items.quantity")
        if request.payment_mode == PaymentMode.COD and request.payment_method != PaymentMethod.COD:
            raise ValidationError("Payment mode cod requires payment method cod", field="payment_method")

    def _price(self, request: CheckoutRequest) -> list[PricedLine]:
        lines = merge_lines(request.lines)
        products = {str(p.pk): p for p in Product.objects.filter(pk__in=[l.product_id for l in lines],
                                                                 is_active=True)}
        priced = []
        for line in lines:
            product = products.get(str(line.product_id))
            if product is None:
                raise NotFoundError(f"Product {line.product_id} not found")

            deposit = 0
            if request.payment_mode == PaymentMode.DEPOSIT:
                config = DepositConfig(
                    allow_deposit=product.allow_deposit,
                    deposit_type=product.deposit_type,
                    percentage=product.deposit_percentage,
                    fixed_amount=product.deposit_amount,
                    due_hours=product.deposit_due_hours,
                )
                deposit = deposit_per_unit(str(product.pk), product.price, config) * line.quantity

            priced.append(
                PricedLine(
                    product_id=str(product.pk),
                    name=product.name,
                    slug=product.slug,
                    sku=product.sku,
                    image_url=product.image_url,
                    unit_price=product.price,
                    quantity=line.quantity,
                    deposit_amount=deposit,
                    deposit_due_hours=product.deposit_due_hours,
                )
            )
        return priced

    # ---- orchestration ----
    def place_order(self, request: CheckoutRequest) -> CheckoutResult:
        """Validate, price, reserve stock and persist an order.

        Args:
            request: Checkout input.

        Returns:
            CheckoutResult: The ``pending`` order and its plaintext tracking token.

        Raises:
            EmptyCartError: No lines.
            ValidationError: Missing customer/shipping field or bad mode/method pair.
            NotFoundError: Unknown or inactive product.
            InsufficientStockError: A line exceeds stock (names the product).
            DepositNotEligibleError: Deposit mode on an ineligible product.
        """
        self._validate(request)
        priced = self._price(request)
        order_quote = quote(
            priced,
            request.payment_mode,
            timezone.now(),
            default_due_hours=getattr(settings, "DEPOSIT_DEFAULT_DUE_HOURS", 24),
        )
        payment_status = initial_payment_status(request.payment_mode)

        order = None
        reserved: list[PricedLine] = []
        try:
            with transaction.atomic():
                order = self.repository.create(
                    request, order_quote, payment_status, getattr(settings, "TRANSFER_MEMO_PREFIX", "RTB")
                )
                state_machine.record_creation(order)

                for line in priced:
                    try:
                        self.inventory.reserve(line.product_id, line.quantity)
                    except InsufficientStockError as exc:
                        raise InsufficientStockError(line.product_id, line.name) from exc
                    reserved.append(line)
                    self.repository.add_item(order, line)

                token = tracking.issue_token(order)
                notifications.dispatch(order, notifications.ORDER_CONFIRMATION)
        except Exception:
            # runs after the rollback, so it also covers a failed commit
            if not getattr(self.inventory, "transactional", False):
                self._compensate(order, reserved)
            raise

        logger.info(
            "order created",
            extra={
                "order": order.order_number,
                "order_type": order.order_type,
                "payment_method": order.payment_method,
                "total": order.total,
                "deposit_amount": order.deposit_amount,
            },
        )
        return CheckoutResult(order=order, tracking_token=token)

    def _compensate(self, order: OrderModel | None, reserved: list[PricedLine]) -> None:
        """Best-effort reversal of remote reservations whose order was rolled back."""
        code = order.order_number if order is not None else None
        for line in reserved:
            if not self.inventory.release(line.product_id, line.quantity):
                logger.error(
                    "checkout compensation failed",
                    extra={"order": code, "product_id": line.product_id, "quantity": line.quantity},
                )

"""Hosted card checkout sessions for pending orders."""

import logging

from django.conf import settings
from django.utils import timezone

from .domain import SETTLED_PAYMENT_STATUSES, PaymentStatus, ProviderSession, online_amount_due
from .errors import AlreadyTerminalError, PaymentSettledError, ValidationError
from .models import OrderModel

logger = logging.getLogger(__name__)


class CardCheckoutService:
    def __init__(self, provider, deposits):
        self.provider = provider
        self.deposits = deposits

    def create_checkout_session(self, order: OrderModel) -> ProviderSession:
        """Open a provider checkout session for what ``order`` owes online now.

        Raises:
            PaymentSettledError: Already paid or deposited.
            AlreadyTerminalError: Order closed (including lazy expiry).
            ValidationError: Nothing to collect online (COD).
            ExternalDependencyError: Provider failure.
        """
        self.deposits.expire_if_due(order)
        if order.is_terminal:
            raise AlreadyTerminalError(f"Order {order.order_number} is already {order.status}")
        if PaymentStatus(order.payment_status) in SETTLED_PAYMENT_STATUSES:
            raise PaymentSettledError(f"Order {order.order_number} is already {order.payment_status}")

        amount = online_amount_due(order.order_type, order.payment_method, order.total, order.deposit_amount)
        if amount <= 0:
            raise ValidationError(f"Order {order.order_number} is paid on delivery", field="payment_method")

        label = "Deposit" if order.is_deposit else "Order"
        session = self.provider.create_checkout_session(
            order_code=order.order_number,
            amount=amount,
            currency=order.currency or getattr(settings, "CURRENCY", "VND"),
            description=f"{label} {order.order_number}",
            metadata={"order_id": str(order.pk), "order_code": order.order_number},
            customer_email=order.customer_email,
        )
        OrderModel.objects.filter(pk=order.pk).update(
            provider_checkout_session_id=session.id, updated_at=timezone.now()
        )
        order.provider_checkout_session_id = session.id
        logger.info("checkout session created", extra={"order": order.order_number, "amount": amount})
        return session

    def session_status(self, session_id: str) -> ProviderSession:
        """Provider-side session state, for client polling only; the webhook is authoritative."""
        if not session_id:
            raise ValidationError(field="session_id")
        return self.provider.retrieve_session(session_id)

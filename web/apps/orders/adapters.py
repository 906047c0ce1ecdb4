"""In-process adapters for the orders domain ports.

``DatabaseInventory`` keeps stock in the ``products`` table and is the
default ledger. ``PaymentProviderStub`` implements ``PaymentProviderPort``
without any network calls; it is used for local development and tests
where deterministic behavior is useful and the card provider is not
reachable.
"""

import hmac
import json
import logging
import uuid
from typing import List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F

from apps.catalog.models import Product

from .domain import InventoryPort, PaymentProviderPort, ProviderRefund, ProviderSession
from .errors import InsufficientStockError, MalformedEventError, NotFoundError, SignatureVerificationError

logger = logging.getLogger(__name__)


class DatabaseInventory(InventoryPort):
    """Stock ledger backed by ``Product.stock_quantity``.

    Reservation is a single conditional UPDATE (``stock >= qty``) so two
    concurrent checkouts can never both take the last unit.
    """

    transactional = True

    def reserve(self, product_id: str, quantity: int) -> None:
        """Atomically decrement stock.

        Raises:
            NotFoundError: Unknown product.
            InsufficientStockError: Stock is lower than ``quantity``.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        updated = Product.objects.filter(pk=product_id, stock_quantity__gte=quantity).update(
            stock_quantity=F("stock_quantity") - quantity
        )
        if updated:
            return
        name = Product.objects.filter(pk=product_id).values_list("name", flat=True).first()
        if name is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(product_id, name)

    def release(self, product_id: str, quantity: int) -> bool:
        """Return stock; never raises.

        Tries an atomic increment first and falls back to a locked
        read-then-write when the increment itself errors.
        """
        try:
            with transaction.atomic():
                updated = Product.objects.filter(pk=product_id).update(
                    stock_quantity=F("stock_quantity") + quantity
                )
            if updated:
                return True
            logger.warning("stock release for unknown product", extra={"product_id": str(product_id)})
            return False
        except DatabaseError:
            logger.warning("atomic stock increment failed, trying fallback",
                           extra={"product_id": str(product_id)}, exc_info=True)

        try:
            with transaction.atomic():
                product = Product.objects.select_for_update().get(pk=product_id)
                product.stock_quantity = product.stock_quantity + quantity
                product.save(update_fields=["stock_quantity", "updated_at"])
            return True
        except (DatabaseError, Product.DoesNotExist):
            logger.error("stock release failed", extra={"product_id": str(product_id), "quantity": quantity},
                         exc_info=True)
            return False

    def available(self, product_id: str) -> int:
        stock = Product.objects.filter(pk=product_id).values_list("stock_quantity", flat=True).first()
        if stock is None:
            raise NotFoundError(f"Product {product_id} not found")
        return stock


class PaymentProviderStub(PaymentProviderPort):
    """Offline stand-in for the card provider.

    Webhook payloads are accepted when the signature header equals the
    configured webhook secret. Sessions and refunds get generated ids and
    are kept in memory so callers can inspect what was requested.
    """

    def __init__(self, webhook_secret: str | None = None):
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.sessions: dict[str, ProviderSession] = {}
        self.refunds: List[ProviderRefund] = []
        self.charges: dict[str, str] = {}
        self._refunds_by_key: dict[str, ProviderRefund] = {}

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        if not signature or not hmac.compare_digest(signature, self.webhook_secret or ""):
            raise SignatureVerificationError("Invalid webhook signature")
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise MalformedEventError("Webhook payload is not valid JSON") from exc

    def create_checkout_session(self, *, order_code, amount, currency, description, metadata, customer_email=""):
        sid = f"cs_test_{uuid.uuid4().hex}"
        session = ProviderSession(id=sid, url=f"https://checkout.invalid/{sid}", status="open",
                                  payment_status="unpaid")
        self.sessions[sid] = session
        return session

    def retrieve_session(self, session_id: str) -> ProviderSession:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise NotFoundError(f"Session {session_id} not found") from None

    def resolve_charge(self, payment_intent_id: str) -> Optional[str]:
        return self.charges.setdefault(payment_intent_id, f"ch_{payment_intent_id}")

    def list_refunds(self, charge_id: str) -> List[ProviderRefund]:
        return [r for r in self.refunds if r.charge_id == charge_id]

    def create_refund(self, *, charge_id, amount, metadata, idempotency_key):
        if idempotency_key in self._refunds_by_key:
            return self._refunds_by_key[idempotency_key]
        refund = ProviderRefund(id=f"re_{uuid.uuid4().hex[:24]}", amount=amount, status="pending",
                                charge_id=charge_id)
        self._refunds_by_key[idempotency_key] = refund
        self.refunds.append(refund)
        return refund

"""Service provider helpers for wiring the order services with their ports.

``USE_HTTP_ADAPTERS`` selects the stock ledger (remote stock service vs.
the ``products`` table) and ``PAYMENT_PROVIDER`` selects the card provider
(``stripe`` or the offline ``stub``). Views never instantiate adapters
directly; tests monkeypatch these factories to inject fakes.
"""

from django.conf import settings

from .adapters import DatabaseInventory, PaymentProviderStub
from .card_checkout import CardCheckoutService
from .checkout import CheckoutService
from .deposits import DepositManager
from .domain import InventoryPort, PaymentProviderPort
from .http_adapters import HttpInventoryClient
from .payments import StripePaymentProvider
from .reconciler import PaymentReconciler
from .refunds import RefundService


def get_inventory() -> InventoryPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpInventoryClient()
    return DatabaseInventory()


def get_payment_provider() -> PaymentProviderPort:
    if getattr(settings, "PAYMENT_PROVIDER", "stripe") == "stub":
        return PaymentProviderStub()
    return StripePaymentProvider()


def get_checkout_service():
    return CheckoutService(inventory=get_inventory())


def get_reconciler():
    return PaymentReconciler(inventory=get_inventory(), provider=get_payment_provider())


def get_deposit_manager():
    return DepositManager(inventory=get_inventory())


def get_refund_service():
    return RefundService(inventory=get_inventory(), provider=get_payment_provider())


def get_card_checkout_service():
    return CardCheckoutService(provider=get_payment_provider(), deposits=get_deposit_manager())

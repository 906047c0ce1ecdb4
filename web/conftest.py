import logging

import pytest
from django.core.cache import cache
from django.test import Client

from apps.catalog.models import Product


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = False
    settings.PAYMENT_PROVIDER = "stub"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    settings.NOTIFICATIONS_ASYNC = False
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.CRON_SECRET = "cron-secret"
    # throttle counters live in the default cache
    cache.clear()
    # let caplog see the app loggers
    monkeypatch.setattr(logging.getLogger("apps"), "propagate", True)


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        n = counter["n"]
        defaults = {
            "name": f"Product {n}",
            "slug": f"product-{n}",
            "sku": f"SKU-{n:03d}",
            "price": 100_000,
            "stock_quantity": 10,
        }
        defaults.update(kwargs)
        return Product.objects.create(**defaults)

    return _make


@pytest.fixture
def checkout_payload():
    def _payload(product, quantity=1, method="cod", mode="cod", email="an@example.com", **extra):
        body = {
            "items": [{"product_id": str(product.pk), "quantity": quantity}],
            "customer": {"full_name": "An Nguyen", "phone": "0900000000", "email": email},
            "shipping": {"address": "1 Le Loi", "city": "Hanoi", "district": "Hoan Kiem"},
            "payment_method": method,
            "payment_mode": mode,
        }
        body.update(extra)
        return body

    return _payload


@pytest.fixture
def staff_client(db, django_user_model):
    user = django_user_model.objects.create_user(username="staff", password="pw", is_staff=True)
    staff = Client()
    staff.force_login(user)
    return staff


@pytest.fixture
def place_order(make_product):
    """Create an order through the checkout service (database ledger)."""
    from apps.orders.adapters import DatabaseInventory
    from apps.orders.checkout import CheckoutService
    from apps.orders.domain import CartLine, CheckoutRequest, Customer, PaymentMethod, PaymentMode, ShippingAddress

    def _place(product=None, quantity=1, method=PaymentMethod.COD, mode=PaymentMode.COD, email="an@example.com"):
        product = product or make_product()
        request = CheckoutRequest(
            lines=[CartLine(product_id=str(product.pk), quantity=quantity)],
            customer=Customer(full_name="An Nguyen", phone="0900000000", email=email),
            shipping=ShippingAddress(address="1 Le Loi", city="Hanoi"),
            payment_method=PaymentMethod(method),
            payment_mode=PaymentMode(mode),
        )
        return CheckoutService(inventory=DatabaseInventory()).place_order(request)

    return _place


@pytest.fixture
def deposit_product(make_product):
    def _make(**kwargs):
        defaults = {"allow_deposit": True, "deposit_type": "percent", "deposit_percentage": 20}
        defaults.update(kwargs)
        return make_product(**defaults)

    return _make

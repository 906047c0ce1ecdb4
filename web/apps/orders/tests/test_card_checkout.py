import pytest

from apps.orders.adapters import DatabaseInventory, PaymentProviderStub
from apps.orders.card_checkout import CardCheckoutService
from apps.orders.deposits import DepositManager
from apps.orders.domain import PaymentMethod, PaymentMode
from apps.orders.errors import NotFoundError, ValidationError
from apps.orders.models import OrderModel

SESSION_URL = "/api/payments/checkout-session/"


def _service(provider=None):
    return CardCheckoutService(provider=provider or PaymentProviderStub(),
                               deposits=DepositManager(inventory=DatabaseInventory()))


@pytest.mark.django_db
def test_session_for_full_card_payment(client, place_order):
    result = place_order(method=PaymentMethod.CARD, mode=PaymentMode.FULL)

    resp = client.post(SESSION_URL, data={"order_code": result.order.order_number, "token": result.tracking_token},
                       content_type="application/json")

    assert resp.status_code == 201
    session_id = resp.json()["sessionId"]
    assert resp.json()["url"].endswith(session_id)
    assert OrderModel.objects.get(pk=result.order.pk).provider_checkout_session_id == session_id


@pytest.mark.django_db
def test_session_for_deposit_charges_only_the_deposit(place_order, deposit_product):
    order = place_order(product=deposit_product(price=100_000), method=PaymentMethod.CARD,
                        mode=PaymentMode.DEPOSIT).order
    requested = {}

    class RecordingProvider(PaymentProviderStub):
        def create_checkout_session(self, **kwargs):
            requested.update(kwargs)
            return super().create_checkout_session(**kwargs)

    _service(RecordingProvider()).create_checkout_session(order)

    assert requested["amount"] == 20_000
    assert requested["metadata"] == {"order_id": str(order.pk), "order_code": order.order_number}


@pytest.mark.django_db
def test_cod_deposit_has_nothing_to_collect_online(client, place_order, deposit_product):
    result = place_order(product=deposit_product(), method=PaymentMethod.COD, mode=PaymentMode.DEPOSIT)

    resp = client.post(SESSION_URL, data={"order_code": result.order.order_number, "token": result.tracking_token},
                       content_type="application/json")

    assert resp.status_code == 400
    assert resp.json()["field"] == "payment_method"


@pytest.mark.django_db
def test_paid_order_gets_no_new_session(client, place_order):
    result = place_order(method=PaymentMethod.CARD, mode=PaymentMode.FULL)
    OrderModel.objects.filter(pk=result.order.pk).update(payment_status="paid", status="confirmed")

    resp = client.post(SESSION_URL, data={"order_code": result.order.order_number, "token": result.tracking_token},
                       content_type="application/json")

    assert resp.status_code == 409
    assert resp.json()["detail"] == "PAYMENT_SETTLED"


@pytest.mark.django_db
def test_session_requires_tracking_token(client, place_order):
    result = place_order(method=PaymentMethod.CARD, mode=PaymentMode.FULL)
    resp = client.post(SESSION_URL, data={"order_code": result.order.order_number, "token": "guess"},
                       content_type="application/json")
    assert resp.status_code == 401


@pytest.mark.django_db
def test_session_status(place_order):
    provider = PaymentProviderStub()
    service = _service(provider)
    order = place_order(method=PaymentMethod.CARD, mode=PaymentMode.FULL).order
    session = service.create_checkout_session(order)

    assert service.session_status(session.id).status == "open"
    with pytest.raises(ValidationError):
        service.session_status("")
    with pytest.raises(NotFoundError):
        service.session_status("cs_unknown")


@pytest.mark.django_db
def test_session_status_endpoint_requires_id(client):
    resp = client.get("/api/payments/session-status/")
    assert resp.status_code == 400
    assert resp.json()["field"] == "session_id"

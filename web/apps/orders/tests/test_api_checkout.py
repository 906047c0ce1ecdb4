import re
import uuid

import pytest

from apps.catalog.models import Product
from apps.orders.models import NotificationLog, OrderModel, OrderTrackingToken

CREATE_URL = "/api/orders/"


def _post(client, payload, **headers):
    return client.post(CREATE_URL, data=payload, content_type="application/json", **headers)


@pytest.mark.django_db
def test_full_cod_checkout_creates_pending_order_and_reserves_stock(client, make_product, checkout_payload):
    product = make_product(price=150_000, stock_quantity=5)

    resp = _post(client, checkout_payload(product, quantity=2))

    assert resp.status_code == 201
    body = resp.json()
    assert re.fullmatch(r"ORD-\d{8}-\d{6}", body["orderCode"])
    assert body["status"] == "pending"
    assert body["paymentStatus"] == "pending"
    assert body["total"] == 300_000
    assert body["depositAmount"] == 0
    assert body["bankTransferMemo"] is None
    assert body["trackingToken"]

    product.refresh_from_db()
    assert product.stock_quantity == 3
    order = OrderModel.objects.get(order_number=body["orderCode"])
    item = order.items.get()
    assert (item.product_name, item.unit_price, item.quantity, item.subtotal) == (product.name, 150_000, 2, 300_000)
    assert order.history.count() == 1
    assert OrderTrackingToken.objects.filter(order=order).count() == 1


@pytest.mark.django_db
def test_deposit_bank_transfer_checkout(client, deposit_product, checkout_payload):
    product = deposit_product(price=100_000, deposit_percentage=20, deposit_due_hours=48)

    resp = _post(client, checkout_payload(product, method="bank_transfer", mode="deposit"))

    assert resp.status_code == 201
    body = resp.json()
    assert body["paymentStatus"] == "deposit_pending"
    assert body["depositAmount"] == 20_000
    assert body["remainingAmount"] == 80_000
    assert body["bankTransferMemo"] == f"RTB-{body['orderCode']}"
    assert body["depositDueAt"]
    order = OrderModel.objects.get(order_number=body["orderCode"])
    assert order.order_type == "deposit_reservation"


@pytest.mark.django_db
def test_insufficient_stock_rejects_and_persists_nothing(client, make_product, checkout_payload):
    product = make_product(name="Oak Table", stock_quantity=1)

    resp = _post(client, checkout_payload(product, quantity=2))

    assert resp.status_code == 422
    body = resp.json()
    assert body["detail"] == "INSUFFICIENT_STOCK"
    assert "Oak Table" in body["message"]
    assert body["product_id"] == str(product.pk)
    assert OrderModel.objects.count() == 0
    product.refresh_from_db()
    assert product.stock_quantity == 1


@pytest.mark.django_db
def test_second_line_shortage_restores_first_line(client, make_product, checkout_payload):
    first = make_product(stock_quantity=5)
    second = make_product(stock_quantity=0)
    payload = checkout_payload(first, quantity=2)
    payload["items"].append({"product_id": str(second.pk), "quantity": 1})

    resp = _post(client, payload)

    assert resp.status_code == 422
    first.refresh_from_db()
    assert first.stock_quantity == 5
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_duplicate_lines_are_merged_before_stock_check(client, make_product, checkout_payload):
    product = make_product(stock_quantity=3)
    payload = checkout_payload(product, quantity=2)
    payload["items"].append({"product_id": str(product.pk), "quantity": 2})

    resp = _post(client, payload)

    assert resp.status_code == 422
    product.refresh_from_db()
    assert product.stock_quantity == 3


@pytest.mark.django_db
def test_duplicate_lines_become_one_item(client, make_product, checkout_payload):
    product = make_product(stock_quantity=10, price=1_000)
    payload = checkout_payload(product, quantity=2)
    payload["items"].append({"product_id": str(product.pk), "quantity": 3})

    resp = _post(client, payload)

    assert resp.status_code == 201
    order = OrderModel.objects.get(order_number=resp.json()["orderCode"])
    assert [(i.quantity, i.subtotal) for i in order.items.all()] == [(5, 5_000)]


@pytest.mark.django_db
def test_empty_cart(client, make_product, checkout_payload):
    payload = checkout_payload(make_product())
    payload["items"] = []
    resp = _post(client, payload)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "EMPTY_CART"


@pytest.mark.django_db
@pytest.mark.parametrize(
    "section,field,name",
    [("customer", "full_name", "customer.full_name"), ("customer", "phone", "customer.phone"),
     ("shipping", "address", "shipping.address"), ("shipping", "city", "shipping.city")],
)
def test_missing_required_field_is_named(client, make_product, checkout_payload, section, field, name):
    payload = checkout_payload(make_product())
    payload[section][field] = "  "
    resp = _post(client, payload)
    assert resp.status_code == 400
    assert resp.json() == {"detail": "VALIDATION_ERROR", "message": f"{name} is required", "field": name}


@pytest.mark.django_db
def test_malformed_payload_is_400(client):
    resp = _post(client, {"items": [{"product_id": "not-a-uuid", "quantity": 1}]})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_unknown_product_is_404(client, make_product, checkout_payload):
    payload = checkout_payload(make_product())
    payload["items"][0]["product_id"] = str(uuid.uuid4())
    resp = _post(client, payload)
    assert resp.status_code == 404


@pytest.mark.django_db
def test_inactive_product_is_404(client, make_product, checkout_payload):
    resp = _post(client, checkout_payload(make_product(is_active=False)))
    assert resp.status_code == 404


@pytest.mark.django_db
def test_cod_mode_requires_cod_method(client, make_product, checkout_payload):
    resp = _post(client, checkout_payload(make_product(), method="card", mode="cod"))
    assert resp.status_code == 400
    assert resp.json()["field"] == "payment_method"


@pytest.mark.django_db
def test_deposit_on_ineligible_product(client, make_product, checkout_payload):
    product = make_product(allow_deposit=False)
    resp = _post(client, checkout_payload(product, method="card", mode="deposit"))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "DEPOSIT_NOT_ELIGIBLE"
    assert Product.objects.get(pk=product.pk).stock_quantity == 10


@pytest.mark.django_db
def test_confirmation_is_sent_after_commit(client, make_product, checkout_payload, mailoutbox,
                                           django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        resp = _post(client, checkout_payload(make_product()))

    assert resp.status_code == 201
    assert len(mailoutbox) == 1
    assert resp.json()["orderCode"] in mailoutbox[0].subject
    assert NotificationLog.objects.get().status == "sent"

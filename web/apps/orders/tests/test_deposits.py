from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from apps.orders.adapters import DatabaseInventory
from apps.orders.deposits import DepositManager
from apps.orders.domain import PaymentMethod, PaymentMode
from apps.orders.errors import (
    AlreadyProcessedError,
    AlreadyTerminalError,
    ConflictError,
    InventoryReleaseError,
    NotFoundError,
    ProofConflictError,
    ValidationError,
)
from apps.orders.models import OrderModel

PROOF = ["https://cdn.example.com/receipt-1.jpg"]


@pytest.fixture
def manager():
    return DepositManager(inventory=DatabaseInventory())


@pytest.fixture
def reservation(place_order, deposit_product):
    def _make(method=PaymentMethod.BANK_TRANSFER, quantity=1, stock=5):
        product = deposit_product(price=100_000, stock_quantity=stock)
        result = place_order(product=product, quantity=quantity, method=method, mode=PaymentMode.DEPOSIT)
        return result.order, product, result.tracking_token

    return _make


def _overdue(order):
    OrderModel.objects.filter(pk=order.pk).update(deposit_due_at=timezone.now() - timedelta(minutes=1))
    order.refresh_from_db()


@pytest.mark.django_db
def test_mark_deposit_received(manager, reservation):
    order, _, _ = reservation()
    manager.mark_deposit_received(order, note="Transfer seen", actor="staff")

    assert (order.status, order.payment_status) == ("deposited", "deposited")
    assert order.deposit_received_at is not None
    assert order.history.last().note == "Transfer seen"
    with pytest.raises(AlreadyProcessedError):
        manager.mark_deposit_received(order)


@pytest.mark.django_db
def test_deposit_operations_reject_standard_orders(manager, place_order):
    order = place_order().order
    with pytest.raises(ValidationError):
        manager.mark_deposit_received(order)
    with pytest.raises(ValidationError):
        manager.expire(order)


@pytest.mark.django_db
def test_expire_from_confirmed_releases_stock_and_records_history(manager, reservation):
    order, product, _ = reservation(quantity=2)
    OrderModel.objects.filter(pk=order.pk).update(status="confirmed")
    order.refresh_from_db()

    manager.expire(order, actor="staff")

    product.refresh_from_db()
    assert order.status == "expired"
    assert order.payment_status == "deposit_pending"
    assert product.stock_quantity == 5
    last = order.history.last()
    assert (last.from_status, last.to_status) == ("confirmed", "expired")
    with pytest.raises(AlreadyTerminalError):
        manager.expire(order)


@pytest.mark.django_db
def test_cancel_reservation(manager, reservation):
    order, product, _ = reservation(quantity=3)
    manager.cancel(order, note="Customer changed their mind")
    product.refresh_from_db()
    assert order.status == "cancelled"
    assert product.stock_quantity == 5


@pytest.mark.django_db
def test_failed_release_rolls_back_expiry(reservation):
    order, product, _ = reservation(quantity=2)

    class BrokenLedger(DatabaseInventory):
        def release(self, product_id, quantity):
            return False

    with pytest.raises(InventoryReleaseError):
        DepositManager(inventory=BrokenLedger()).expire(order)

    fresh = OrderModel.objects.get(pk=order.pk)
    assert fresh.status == "pending"
    assert fresh.inventory_released_at is None
    assert fresh.history.filter(to_status="expired").count() == 0


@pytest.mark.django_db
def test_expire_if_due_only_when_overdue(manager, reservation):
    order, _, _ = reservation()
    assert manager.expire_if_due(order) is False
    _overdue(order)
    assert manager.expire_if_due(order) is True
    assert order.status == "expired"


@pytest.mark.django_db
def test_expire_overdue_sweep(manager, reservation):
    due, _, _ = reservation()
    not_due, _, _ = reservation()
    paid, _, _ = reservation()
    _overdue(due)
    manager.mark_deposit_received(paid)
    _overdue(paid)

    assert manager.expire_overdue(limit=10) == 1
    assert OrderModel.objects.get(pk=due.pk).status == "expired"
    assert OrderModel.objects.get(pk=not_due.pk).status == "pending"
    assert OrderModel.objects.get(pk=paid.pk).status == "deposited"


@pytest.mark.django_db
def test_tracking_lookup_applies_lazy_expiry(client, reservation):
    order, product, token = reservation(quantity=2)
    _overdue(order)

    resp = client.get(f"/api/orders/{order.order_number}/", {"token": token})

    assert resp.status_code == 200
    assert resp.json()["status"] == "expired"
    product.refresh_from_db()
    assert product.stock_quantity == 5


@pytest.mark.django_db
def test_cron_requires_bearer_secret(client, reservation):
    order, _, _ = reservation()
    _overdue(order)

    assert client.post("/api/cron/expire-deposits/").status_code == 401
    assert client.post("/api/cron/expire-deposits/", HTTP_AUTHORIZATION="Bearer nope").status_code == 401

    resp = client.post("/api/cron/expire-deposits/", HTTP_AUTHORIZATION="Bearer cron-secret")
    assert resp.status_code == 200
    assert resp.json() == {"expired": 1}


@pytest.mark.django_db
def test_cron_disabled_without_secret(client, settings):
    settings.CRON_SECRET = ""
    assert client.post("/api/cron/expire-deposits/", HTTP_AUTHORIZATION="Bearer ").status_code == 401


@pytest.mark.django_db
def test_expire_deposits_command(reservation):
    order, _, _ = reservation()
    _overdue(order)
    out = StringIO()
    call_command("expire_deposits", stdout=out)
    assert "Expired 1" in out.getvalue()
    assert OrderModel.objects.get(pk=order.pk).status == "expired"


# ---- transfer proofs ----
@pytest.mark.django_db
def test_submit_and_approve_proof(manager, reservation):
    order, _, _ = reservation()
    proof = manager.submit_proof(order, PROOF, "paid from ACB")
    assert proof.status == "pending"

    with pytest.raises(ProofConflictError):
        manager.submit_proof(order, PROOF)

    reviewed = manager.review_proof(order, proof.pk, approve=True, actor="staff")
    order.refresh_from_db()
    assert reviewed.status == "approved"
    assert reviewed.reviewed_by == "staff"
    assert (order.status, order.payment_status) == ("deposited", "deposited")


@pytest.mark.django_db
def test_rejected_proof_allows_resubmission(manager, reservation):
    order, _, _ = reservation()
    proof = manager.submit_proof(order, PROOF)
    manager.review_proof(order, proof.pk, approve=False, note="Amount does not match")

    with pytest.raises(ConflictError):
        manager.review_proof(order, proof.pk, approve=True)
    again = manager.submit_proof(order, PROOF)
    assert again.pk != proof.pk
    order.refresh_from_db()
    assert order.payment_status == "deposit_pending"


@pytest.mark.django_db
def test_review_unknown_proof(manager, reservation):
    order, _, _ = reservation()
    with pytest.raises(NotFoundError):
        manager.review_proof(order, 9999, approve=True)


@pytest.mark.django_db
def test_proof_requires_bank_transfer(manager, reservation):
    order, _, _ = reservation(method=PaymentMethod.CARD)
    with pytest.raises(ValidationError):
        manager.submit_proof(order, PROOF)


@pytest.mark.django_db
def test_proof_on_overdue_reservation_expires_it(manager, reservation):
    order, _, _ = reservation()
    _overdue(order)
    with pytest.raises(AlreadyTerminalError):
        manager.submit_proof(order, PROOF)
    assert order.status == "expired"


@pytest.mark.django_db
def test_proof_endpoints(client, staff_client, reservation):
    order, _, token = reservation()
    url = f"/api/orders/{order.order_number}/deposit-proof/"

    bad = client.post(url, data={"token": "nope", "image_urls": PROOF}, content_type="application/json")
    assert bad.status_code == 401

    created = client.post(url, data={"token": token, "image_urls": PROOF}, content_type="application/json")
    assert created.status_code == 201
    proof_id = created.json()["id"]

    listing = staff_client.get(f"/api/admin/orders/{order.order_number}/deposit-proof/")
    assert listing.json()["count"] == 1

    review = staff_client.post(f"/api/admin/orders/{order.order_number}/deposit-proof/",
                               data={"proof_id": proof_id, "approve": True}, content_type="application/json")
    assert review.status_code == 200
    assert review.json()["order"]["status"] == "deposited"


@pytest.mark.django_db
def test_admin_deposit_action(staff_client, reservation):
    order, product, _ = reservation(quantity=2)
    resp = staff_client.post(f"/api/admin/orders/{order.order_number}/deposit/",
                             data={"action": "expire"}, content_type="application/json")
    assert resp.status_code == 200
    assert resp.json()["status"] == "expired"

    again = staff_client.post(f"/api/admin/orders/{order.order_number}/deposit/",
                              data={"action": "expire"}, content_type="application/json")
    assert again.status_code == 409
    assert again.json()["detail"] == "ALREADY_TERMINAL"

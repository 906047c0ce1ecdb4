import pytest

from apps.orders import state_machine
from apps.orders.domain import OrderStatus, PaymentStatus
from apps.orders.errors import AlreadyTerminalError, StaleOrderError, TransitionError
from apps.orders.models import OrderModel, OrderStatusHistory


@pytest.mark.django_db
def test_transition_writes_status_and_history(place_order):
    order = place_order().order
    state_machine.transition(order, OrderStatus.PENDING, OrderStatus.CONFIRMED, note="ok", actor="staff")

    assert order.status == "confirmed"
    last = order.history.last()
    assert (last.from_status, last.to_status, last.note, last.changed_by) == ("pending", "confirmed", "ok", "staff")


@pytest.mark.django_db
def test_transition_rejects_same_status(place_order):
    order = place_order().order
    with pytest.raises(TransitionError, match="already in this status"):
        state_machine.transition(order, OrderStatus.PENDING, OrderStatus.PENDING)


@pytest.mark.django_db
def test_transition_rejects_edge_outside_graph(place_order):
    order = place_order().order
    with pytest.raises(TransitionError):
        state_machine.transition(order, OrderStatus.PENDING, OrderStatus.SHIPPED)
    assert OrderModel.objects.get(pk=order.pk).status == "pending"


@pytest.mark.django_db
def test_transition_with_wrong_expected_status_is_stale(place_order):
    order = place_order().order
    with pytest.raises(StaleOrderError):
        state_machine.transition(order, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)


@pytest.mark.django_db
def test_concurrent_writer_loses_the_race(place_order):
    order = place_order().order
    stale_copy = OrderModel.objects.get(pk=order.pk)

    state_machine.transition(order, OrderStatus.PENDING, OrderStatus.CONFIRMED)
    with pytest.raises(StaleOrderError):
        state_machine.transition(stale_copy, OrderStatus.PENDING, OrderStatus.CANCELLED)

    assert OrderModel.objects.get(pk=order.pk).status == "confirmed"
    assert OrderStatusHistory.objects.filter(order=order, to_status="cancelled").count() == 0


@pytest.mark.django_db
def test_override_jumps_the_graph_but_not_out_of_terminal(place_order):
    order = place_order().order
    state_machine.override(order, OrderStatus.PENDING, OrderStatus.DEPOSITED, note="deposit")
    assert order.status == "deposited"

    state_machine.override(order, OrderStatus.DEPOSITED, OrderStatus.EXPIRED)
    with pytest.raises(AlreadyTerminalError):
        state_machine.override(order, OrderStatus.EXPIRED, OrderStatus.CANCELLED)


@pytest.mark.django_db
def test_record_payment_without_status_change_adds_no_history(place_order):
    order = place_order().order
    before = order.history.count()
    state_machine.record_payment(order, PaymentStatus.FAILED)
    assert order.payment_status == "failed"
    assert order.status == "pending"
    assert order.history.count() == before


@pytest.mark.django_db
def test_record_payment_is_guarded_on_payment_status(place_order):
    order = place_order().order
    stale_copy = OrderModel.objects.get(pk=order.pk)
    state_machine.record_payment(order, PaymentStatus.PAID, status=OrderStatus.CONFIRMED)
    with pytest.raises(StaleOrderError):
        state_machine.record_payment(stale_copy, PaymentStatus.FAILED)


@pytest.mark.django_db
def test_record_creation_history_entry(place_order):
    order = place_order().order
    first = order.history.first()
    assert first.from_status is None
    assert first.to_status == "pending"
    assert first.note == "Order created"

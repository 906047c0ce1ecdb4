from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.orders.domain import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    CartLine,
    DepositConfig,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentMode,
    PaymentStatus,
    PricedLine,
    deposit_per_unit,
    initial_payment_status,
    merge_lines,
    online_amount_due,
    quote,
    round_half_up,
    transfer_memo,
)
from apps.orders.errors import DepositNotEligibleError

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def _line(price, qty, deposit=0, due_hours=None, pid="p1"):
    return PricedLine(product_id=pid, name="Sofa", slug="sofa", sku="SOFA", image_url="",
                      unit_price=price, quantity=qty, deposit_amount=deposit, deposit_due_hours=due_hours)


def test_transition_table_covers_every_status():
    assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)
    for status in TERMINAL_STATUSES:
        assert ALLOWED_TRANSITIONS[status] == frozenset()


def test_pending_successors():
    assert ALLOWED_TRANSITIONS[OrderStatus.PENDING] == {
        OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.EXPIRED
    }
    assert ALLOWED_TRANSITIONS[OrderStatus.DELIVERED] == {OrderStatus.REFUNDED}


def test_merge_lines_sums_duplicates_in_first_seen_order():
    merged = merge_lines([CartLine("a", 1), CartLine("b", 2), CartLine("a", 3)])
    assert merged == [CartLine("a", 4), CartLine("b", 2)]


@pytest.mark.parametrize("value,expected", [("2.5", 3), ("2.4", 2), ("3.5", 4), ("0.5", 1)])
def test_round_half_up(value, expected):
    assert round_half_up(Decimal(value)) == expected


def test_percent_deposit_rounds_half_up():
    config = DepositConfig(allow_deposit=True, deposit_type="percent", percentage=15)
    # 15% of 99_999 = 14_999.85
    assert deposit_per_unit("p1", 99_999, config) == 15_000


def test_fixed_deposit():
    config = DepositConfig(allow_deposit=True, deposit_type="fixed", fixed_amount=50_000)
    assert deposit_per_unit("p1", 200_000, config) == 50_000


def test_fixed_deposit_larger_than_price_is_rejected():
    config = DepositConfig(allow_deposit=True, deposit_type="fixed", fixed_amount=300_000)
    with pytest.raises(DepositNotEligibleError):
        deposit_per_unit("p1", 200_000, config)


@pytest.mark.parametrize(
    "config",
    [
        DepositConfig(allow_deposit=False, deposit_type="percent", percentage=20),
        DepositConfig(allow_deposit=True),
        DepositConfig(allow_deposit=True, deposit_type="percent", percentage=150),
    ],
)
def test_ineligible_deposit_configs(config):
    with pytest.raises(DepositNotEligibleError) as exc:
        deposit_per_unit("p1", 100_000, config)
    assert exc.value.as_dict()["detail"] == "DEPOSIT_NOT_ELIGIBLE"


def test_quote_full_mode_has_no_deposit():
    q = quote([_line(100_000, 2)], PaymentMode.FULL, NOW)
    assert q.total == 200_000
    assert q.is_deposit is False
    assert q.deposit_amount == 0
    assert q.remaining_amount == 0
    assert q.deposit_due_at is None


def test_quote_deposit_uses_longest_due_hours():
    lines = [_line(100_000, 1, 20_000, due_hours=12, pid="a"), _line(50_000, 2, 20_000, due_hours=48, pid="b")]
    q = quote(lines, PaymentMode.DEPOSIT, NOW, default_due_hours=24)
    assert q.total == 200_000
    assert q.deposit_amount == 40_000
    assert q.remaining_amount == 160_000
    assert q.deposit_due_at == NOW + timedelta(hours=48)


def test_quote_deposit_defaults_due_hours():
    q = quote([_line(100_000, 1, 20_000)], PaymentMode.DEPOSIT, NOW, default_due_hours=24)
    assert q.deposit_due_at == NOW + timedelta(hours=24)


def test_initial_payment_status():
    assert initial_payment_status(PaymentMode.COD) == PaymentStatus.PENDING
    assert initial_payment_status(PaymentMode.FULL) == PaymentStatus.PENDING
    assert initial_payment_status(PaymentMode.DEPOSIT) == PaymentStatus.DEPOSIT_PENDING


def test_transfer_memo_strips_unsafe_characters():
    assert transfer_memo("ORD-20261019-000042") == "RTB-ORD-20261019-000042"
    assert transfer_memo("ORD 1/2", prefix="SHOP") == "SHOP-ORD12"


def test_online_amount_due():
    deposit = OrderType.DEPOSIT_RESERVATION.value
    assert online_amount_due(OrderType.STANDARD.value, PaymentMethod.CARD.value, 500, 0) == 500
    assert online_amount_due(deposit, PaymentMethod.CARD.value, 500, 100) == 100
    assert online_amount_due(deposit, PaymentMethod.COD.value, 500, 100) == 0

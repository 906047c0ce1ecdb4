"""Domain vocabulary, pricing rules and ports for orders.

This module is free of Django imports. It holds the closed status
enumerations, the order-status transition table, the value objects the
checkout flow passes around, the pure pricing/deposit arithmetic, and the
protocol definitions (ports) for the stock ledger and the payment provider.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import re
from typing import Iterable, List, Mapping, Optional, Protocol

from .errors import DepositNotEligibleError


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle status of an order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DEPOSITED = "deposited"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    """Payment state attached to an order; not governed by the status graph."""

    PENDING = "pending"
    DEPOSIT_PENDING = "deposit_pending"
    DEPOSITED = "deposited"
    PAID = "paid"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"


class PaymentMode(str, Enum):
    DEPOSIT = "deposit"
    FULL = "full"
    COD = "cod"


class OrderType(str, Enum):
    STANDARD = "standard"
    DEPOSIT_RESERVATION = "deposit_reservation"


class RefundStatus(str, Enum):
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class ProofStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped_no_email"


def choices(enum_cls) -> list[tuple[str, str]]:
    """Django ``choices`` list for one of the enums above."""
    return [(m.value, m.value.replace("_", " ").capitalize()) for m in enum_cls]


# ---- Transition table ----
TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.EXPIRED})

ALLOWED_TRANSITIONS: Mapping[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.EXPIRED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.DEPOSITED, OrderStatus.CANCELLED}),
    OrderStatus.DEPOSITED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}

_missing = set(OrderStatus) - set(ALLOWED_TRANSITIONS)
if _missing:
    raise RuntimeError(f"transition table is missing statuses: {sorted(s.value for s in _missing)}")

# Payment states reached once money has actually moved in.
SETTLED_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.PAID,
        PaymentStatus.DEPOSITED,
        PaymentStatus.REFUND_PENDING,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    }
)
REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.DEPOSITED, PaymentStatus.PARTIALLY_REFUNDED}
)
REFUND_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.REFUND_PENDING, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
)
FINAL_REFUND_STATUSES = frozenset({RefundStatus.SUCCEEDED, RefundStatus.FAILED, RefundStatus.CANCELED})


def allowed_successors(status) -> frozenset:
    return ALLOWED_TRANSITIONS[OrderStatus(status)]


def is_terminal(status) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


# ---- Value objects ----
@dataclass(frozen=True)
class CartLine:
    """A single requested line: product reference and quantity."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class Customer:
    full_name: str
    phone: str
    email: str = ""


@dataclass(frozen=True)
class ShippingAddress:
    address: str
    city: str
    district: str = ""


@dataclass
class CheckoutRequest:
    """Everything the checkout orchestrator needs to create an order."""

    lines: List[CartLine]
    customer: Customer
    shipping: ShippingAddress
    payment_method: PaymentMethod
    payment_mode: PaymentMode
    note: str = ""


@dataclass(frozen=True)
class DepositConfig:
    """Deposit eligibility snapshot of a product."""

    allow_deposit: bool
    deposit_type: str = ""
    percentage: Optional[int] = None
    fixed_amount: Optional[int] = None
    due_hours: Optional[int] = None


@dataclass(frozen=True)
class PricedLine:
    """Immutable snapshot of a cart line taken at order creation."""

    product_id: str
    name: str
    slug: str
    sku: str
    image_url: str
    unit_price: int
    quantity: int
    deposit_amount: int = 0
    deposit_due_hours: Optional[int] = None

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class OrderQuote:
    """Monetary outcome of pricing a cart."""

    subtotal: int
    shipping_fee: int = 0
    tax: int = 0
    discount: int = 0
    is_deposit: bool = False
    deposit_amount: int = 0
    deposit_due_at: Optional[datetime] = None
    lines: List[PricedLine] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.subtotal + self.shipping_fee + self.tax - self.discount

    @property
    def remaining_amount(self) -> int:
        return self.total - self.deposit_amount if self.is_deposit else 0


# ---- Pricing rules ----
def merge_lines(lines: Iterable[CartLine]) -> List[CartLine]:
    """Collapse duplicate product lines, keeping first-seen order."""
    merged: dict[str, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [CartLine(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def deposit_per_unit(product_id: str, unit_price: int, config: DepositConfig) -> int:
    """Return the deposit owed for one unit of a product.

    Raises:
        DepositNotEligibleError: When the product does not allow deposits,
            has no usable configuration, or its fixed deposit exceeds the
            unit price.
    """
    if not config.allow_deposit:
        raise DepositNotEligibleError(product_id)
    if config.deposit_type == "percent" and config.percentage:
        if not 0 < config.percentage <= 100:
            raise DepositNotEligibleError(product_id, "has invalid deposit configuration")
        return round_half_up(Decimal(unit_price) * Decimal(config.percentage) / Decimal(100))
    if config.deposit_type == "fixed" and config.fixed_amount:
        if config.fixed_amount > unit_price:
            raise DepositNotEligibleError(product_id, "has a deposit larger than its price")
        return int(config.fixed_amount)
    raise DepositNotEligibleError(product_id, "has invalid deposit configuration")


def quote(lines: List[PricedLine], mode: PaymentMode, now: datetime, default_due_hours: int = 24) -> OrderQuote:
    """Price a list of snapshotted lines for the chosen payment mode."""
    result = OrderQuote(subtotal=sum(line.subtotal for line in lines), lines=list(lines))
    if mode != PaymentMode.DEPOSIT:
        return result
    result.is_deposit = True
    result.deposit_amount = sum(line.deposit_amount for line in lines)
    due_hours = max((line.deposit_due_hours for line in lines if line.deposit_due_hours), default=default_due_hours)
    result.deposit_due_at = now + timedelta(hours=due_hours)
    return result


def initial_payment_status(mode: PaymentMode) -> PaymentStatus:
    if mode == PaymentMode.DEPOSIT:
        return PaymentStatus.DEPOSIT_PENDING
    return PaymentStatus.PENDING


_MEMO_STRIP = re.compile(r"[^A-Za-z0-9-]")


def transfer_memo(order_number: str, prefix: str = "RTB") -> str:
    """Deterministic bank-transfer memo used to match manual proofs."""
    return f"{prefix}-{_MEMO_STRIP.sub('', order_number)}"


def online_amount_due(order_type: str, payment_method: str, total: int, deposit_amount: int) -> int:
    """Amount the customer pays online right now.

    A deposit order paid on delivery has nothing to collect online.
    """
    if order_type == OrderType.DEPOSIT_RESERVATION:
        if payment_method == PaymentMethod.COD:
            return 0
        return deposit_amount
    return total


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Port describing stock operations.

    ``reserve`` must be an atomic compare-and-decrement. ``release`` is a
    best-effort increment that reports failure through its return value
    instead of raising.
    """

    # True when reservations join the caller's database transaction and are
    # undone by its rollback; remote ledgers need explicit compensation.
    transactional = False

    def reserve(self, product_id: str, quantity: int) -> None:
        """Decrement stock or raise ``InsufficientStockError``."""
        raise NotImplementedError()

    def release(self, product_id: str, quantity: int) -> bool:
        """Increment stock. Returns False when the increment could not be applied."""
        raise NotImplementedError()

    def available(self, product_id: str) -> int:
        raise NotImplementedError()


@dataclass(frozen=True)
class ProviderSession:
    id: str
    url: str = ""
    status: str = ""
    payment_status: str = ""
    payment_intent_id: str = ""


@dataclass(frozen=True)
class ProviderRefund:
    id: str
    amount: int
    status: str
    currency: str = ""
    reason: str = ""
    payment_intent_id: str = ""
    charge_id: str = ""


class PaymentProviderPort(Protocol):
    """Port describing the card payment provider."""

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        """Verify the signature and return the decoded event."""
        raise NotImplementedError()

    def create_checkout_session(
        self, *, order_code: str, amount: int, currency: str, description: str, metadata: dict,
        customer_email: str = "",
    ) -> ProviderSession:
        raise NotImplementedError()

    def retrieve_session(self, session_id: str) -> ProviderSession:
        raise NotImplementedError()

    def resolve_charge(self, payment_intent_id: str) -> Optional[str]:
        """Return the latest charge id of a payment intent."""
        raise NotImplementedError()

    def list_refunds(self, charge_id: str) -> List[ProviderRefund]:
        raise NotImplementedError()

    def create_refund(
        self, *, charge_id: str, amount: int, metadata: dict, idempotency_key: str
    ) -> ProviderRefund:
        raise NotImplementedError()

"""Typed views of verified payment-provider webhook events.

``parse_event`` turns the provider's JSON event into one of a few frozen
dataclasses so the reconciler never pokes at raw dictionaries.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from .errors import MalformedEventError


@dataclass(frozen=True)
class RefundSnapshot:
    refund_id: str
    amount: int
    status: str
    currency: str = ""
    reason: str = ""


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    event_type: str
    order_id: Optional[str]
    payment_intent_id: str = ""
    session_id: str = ""
    charge_id: str = ""


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    event_type: str
    order_id: Optional[str]
    payment_intent_id: str = ""
    reason: str = ""


@dataclass(frozen=True)
class RefundObserved:
    """A charge/refund event. ``refunds`` is empty when the payload did not embed them."""

    event_id: str
    event_type: str
    payment_intent_id: str = ""
    charge_id: str = ""
    order_id: Optional[str] = None
    refunds: Tuple[RefundSnapshot, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Unhandled:
    event_id: str
    event_type: str


PaymentEvent = Union[PaymentSucceeded, PaymentFailed, RefundObserved, Unhandled]


def _ref(value) -> str:
    if not value:
        return ""
    if isinstance(value, dict):
        return value.get("id") or ""
    return str(value)


def _metadata_order_id(obj: dict) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("order_id") or None


def _refund_snapshot(data: dict) -> RefundSnapshot:
    return RefundSnapshot(
        refund_id=data["id"],
        amount=int(data.get("amount") or 0),
        status=data.get("status") or "pending",
        currency=(data.get("currency") or "").upper(),
        reason=data.get("reason") or "",
    )


def parse_event(event: dict) -> PaymentEvent:
    """Map a decoded provider event to a typed event.

    Raises:
        MalformedEventError: The event lacks an id, a type or a data object.
    """
    try:
        event_id = event["id"]
        event_type = event["type"]
        obj = event["data"]["object"]
    except (KeyError, TypeError) as exc:
        raise MalformedEventError("Event is missing id, type or data.object") from exc
    if not isinstance(obj, dict):
        raise MalformedEventError("Event data.object is not an object")

    if event_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        if obj.get("payment_status") not in ("paid", "no_payment_required"):
            return Unhandled(event_id, event_type)
        return PaymentSucceeded(
            event_id=event_id,
            event_type=event_type,
            order_id=_metadata_order_id(obj),
            payment_intent_id=_ref(obj.get("payment_intent")),
            session_id=obj.get("id") or "",
        )

    if event_type == "payment_intent.succeeded":
        return PaymentSucceeded(
            event_id=event_id,
            event_type=event_type,
            order_id=_metadata_order_id(obj),
            payment_intent_id=obj.get("id") or "",
            charge_id=_ref(obj.get("latest_charge")),
        )

    if event_type in ("payment_intent.payment_failed", "checkout.session.async_payment_failed"):
        is_intent = event_type.startswith("payment_intent")
        error = obj.get("last_payment_error") or {}
        return PaymentFailed(
            event_id=event_id,
            event_type=event_type,
            order_id=_metadata_order_id(obj),
            payment_intent_id=(obj.get("id") if is_intent else _ref(obj.get("payment_intent"))) or "",
            reason=error.get("message") or "",
        )

    if event_type == "charge.refunded":
        embedded = (obj.get("refunds") or {}).get("data") or []
        return RefundObserved(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=_ref(obj.get("payment_intent")),
            charge_id=obj.get("id") or "",
            order_id=_metadata_order_id(obj),
            refunds=tuple(_refund_snapshot(r) for r in embedded),
        )

    if event_type in ("refund.created", "refund.updated", "charge.refund.updated"):
        return RefundObserved(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=_ref(obj.get("payment_intent")),
            charge_id=_ref(obj.get("charge")),
            order_id=_metadata_order_id(obj),
            refunds=(_refund_snapshot(obj),),
        )

    return Unhandled(event_id, event_type)

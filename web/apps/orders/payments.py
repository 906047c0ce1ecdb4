"""Card payment provider adapter built on the ``stripe`` SDK.

Outbound calls share the ``PROVIDER_BREAKER`` circuit breaker from
``http_adapters``. Provider errors surface as ``ExternalDependencyError``;
the core never retries them itself (the SDK's own network retries apply).
Webhook verification is delegated to ``stripe.Webhook.construct_event``;
the verified payload is then decoded into a plain dict.
"""

import json
import logging
from typing import List, Optional

import stripe
from django.conf import settings

from .domain import PaymentProviderPort, ProviderRefund, ProviderSession
from .errors import ExternalDependencyError, MalformedEventError, NotFoundError, SignatureVerificationError
from .http_adapters import PROVIDER_BREAKER

logger = logging.getLogger(__name__)

# Errors that say something about provider health rather than our request.
_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.APIError, stripe.RateLimitError)


def _id_of(value) -> str:
    """Expanded objects and bare ids both appear in provider payloads."""
    if not value:
        return ""
    if isinstance(value, str):
        return value
    return value.get("id", "") or ""


class StripePaymentProvider(PaymentProviderPort):
    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    def _call(self, fn, *args, **kwargs):
        PROVIDER_BREAKER.acquire()
        try:
            result = fn(*args, api_key=self.api_key, **kwargs)
        except stripe.InvalidRequestError as exc:
            PROVIDER_BREAKER.record_success()
            if exc.http_status == 404:
                raise NotFoundError(str(exc.user_message or exc)) from exc
            raise ExternalDependencyError(str(exc.user_message or exc)) from exc
        except _TRANSIENT_ERRORS as exc:
            PROVIDER_BREAKER.record_failure()
            logger.warning("payment provider unavailable", extra={"error_type": type(exc).__name__})
            raise ExternalDependencyError("Payment provider unavailable") from exc
        except stripe.StripeError as exc:
            PROVIDER_BREAKER.record_success()
            raise ExternalDependencyError(str(exc.user_message or exc)) from exc
        else:
            PROVIDER_BREAKER.record_success()
            return result
        finally:
            PROVIDER_BREAKER.release()

    def verify_webhook(self, payload: bytes, signature: str) -> dict:
        """Verify the ``Stripe-Signature`` header and decode the event.

        Raises:
            SignatureVerificationError: Missing or invalid signature.
            MalformedEventError: The signed body is not a JSON object.
        """
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise SignatureVerificationError("Webhook secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureVerificationError("Invalid webhook signature") from exc
        except ValueError as exc:
            raise MalformedEventError("Webhook payload is not valid JSON") from exc
        event = json.loads(payload)
        if not isinstance(event, dict):
            raise MalformedEventError("Webhook payload is not an object")
        return event

    def create_checkout_session(self, *, order_code, amount, currency, description, metadata, customer_email=""):
        fmt = {"order_code": order_code, "CHECKOUT_SESSION_ID": "{CHECKOUT_SESSION_ID}"}
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": amount,
                        "product_data": {"name": description},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": settings.CHECKOUT_SUCCESS_URL.format(**fmt),
            "cancel_url": settings.CHECKOUT_CANCEL_URL.format(**fmt),
            "client_reference_id": order_code,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "idempotency_key": f"checkout_{order_code}_{amount}",
        }
        if customer_email:
            params["customer_email"] = customer_email
        session = self._call(stripe.checkout.Session.create, **params)
        return ProviderSession(id=session.id, url=session.url or "", status=session.status or "",
                               payment_status=session.payment_status or "")

    def retrieve_session(self, session_id: str) -> ProviderSession:
        session = self._call(stripe.checkout.Session.retrieve, session_id)
        return ProviderSession(
            id=session.id,
            url=session.url or "",
            status=session.status or "",
            payment_status=session.payment_status or "",
            payment_intent_id=_id_of(session.payment_intent),
        )

    def resolve_charge(self, payment_intent_id: str) -> Optional[str]:
        intent = self._call(stripe.PaymentIntent.retrieve, payment_intent_id)
        return _id_of(intent.latest_charge) or None

    def list_refunds(self, charge_id: str) -> List[ProviderRefund]:
        page = self._call(stripe.Refund.list, charge=charge_id, limit=100)
        return [
            ProviderRefund(
                id=r.id,
                amount=r.amount,
                status=r.status,
                currency=(r.currency or "").upper(),
                reason=r.reason or "",
                payment_intent_id=_id_of(r.payment_intent),
                charge_id=_id_of(r.charge),
            )
            for r in page.data
        ]

    def create_refund(self, *, charge_id, amount, metadata, idempotency_key):
        refund = self._call(
            stripe.Refund.create,
            charge=charge_id,
            amount=amount,
            reason="requested_by_customer",
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return ProviderRefund(
            id=refund.id,
            amount=refund.amount,
            status=refund.status,
            currency=(refund.currency or "").upper(),
            charge_id=charge_id,
            payment_intent_id=_id_of(refund.payment_intent),
        )

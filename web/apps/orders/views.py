"""HTTP views for the orders app.

Views stay small: they validate the body with a pydantic DTO, resolve the
order, delegate to a service obtained from ``providers`` and serialize the
result. ``OrderError`` subclasses raised by the services are mapped to
``{"detail": <code>, "message": ...}`` with the status the error carries.

Customer-facing order endpoints are authorized by the tracking token handed
out at checkout; staff endpoints require ``is_staff``; the payment webhook
is authenticated by the provider signature and the cron sweep by a bearer
secret.
"""

import hmac
import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import notifications, state_machine, tracking
from .domain import SETTLED_PAYMENT_STATUSES, OrderStatus, PaymentStatus, allowed_successors
from .errors import AlreadyTerminalError, OrderError, PaymentSettledError, TokenInvalidError, TransitionError
from .events import parse_event
from .idempotency import finalize, get_or_create_idempotent
from .models import OrderModel
from .providers import (
    get_card_checkout_service,
    get_checkout_service,
    get_deposit_manager,
    get_inventory,
    get_payment_provider,
    get_reconciler,
    get_refund_service,
)
from .repository import OrderRepository
from .schemas import (
    CheckoutDTO,
    CheckoutSessionDTO,
    CustomerCancelDTO,
    DepositActionDTO,
    OrderReadDTO,
    ProofReviewDTO,
    ProofSubmitDTO,
    RefundDTO,
    StatusChangeDTO,
)

logger = logging.getLogger(__name__)

CUSTOMER_CANCELLABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.DEPOSITED)
# an abandoned card checkout can only happen before fulfilment starts
ABANDONABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED)


def _error_response(exc: OrderError) -> Response:
    return Response(exc.as_dict(), status=exc.http_status)


def _actor(request) -> str:
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user.get_username()
    return ""


class OrdersAPIView(APIView):
    """Base view translating order errors and DTO failures into responses."""

    def handle_exception(self, exc):
        if isinstance(exc, OrderError):
            if exc.http_status >= 500:
                logger.error("order request failed", extra={"detail": exc.code, "path": self.request.path})
            return _error_response(exc)
        if isinstance(exc, PydanticValidationError):
            return Response({"detail": "VALIDATION_ERROR", "message": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return super().handle_exception(exc)

    @staticmethod
    def _body(request) -> dict:
        return request.data if isinstance(request.data, dict) else {}


class TokenOrderMixin:
    """Resolve ``<code>`` and check the customer's tracking token."""

    def get_order(self, code: str, token: str | None) -> OrderModel:
        try:
            order = OrderRepository().get_by_code(code)
        except OrderError:
            # same answer for unknown codes and bad tokens
            raise TokenInvalidError("Invalid or expired tracking token") from None
        tracking.verify_token(order, token)
        return order


# ---- checkout ----
class OrdersCollectionView(OrdersAPIView):
    """Checkout. Supports ``Idempotency-Key``: a retry with the same key and
    payload replays the stored response (``Idempotent-Replay: true``); the
    same key with another payload is a 409.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_create"

    def post(self, request):
        idem_key = request.headers.get("Idempotency-Key")
        dto = CheckoutDTO.model_validate(self._body(request))

        rec = None
        if idem_key:
            existing, rec = get_or_create_idempotent(idem_key, self._body(request))
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        try:
            result = get_checkout_service().place_order(dto.to_domain())
        except OrderError as exc:
            if rec:
                finalize(rec, exc.http_status, exc.as_dict())
            raise

        order = result.order
        body = {
            "id": str(order.pk),
            "orderCode": order.order_number,
            "status": order.status,
            "paymentStatus": order.payment_status,
            "total": order.total,
            "depositAmount": order.deposit_amount,
            "remainingAmount": order.remaining_amount,
            "depositDueAt": order.deposit_due_at.isoformat() if order.deposit_due_at else None,
            "bankTransferMemo": result.transfer_memo,
            "trackingToken": result.tracking_token,
        }
        if rec:
            # the replayed body must not leak a usable token to a different client
            finalize(rec, status.HTTP_201_CREATED, {**body, "trackingToken": None}, order_id=order.pk)
        return Response(body, status=status.HTTP_201_CREATED)


# ---- customer endpoints ----
class OrderDetailView(TokenOrderMixin, OrdersAPIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, code: str):
        order = self.get_order(code, request.query_params.get("token"))
        get_deposit_manager().expire_if_due(order)
        return Response(OrderReadDTO.from_model(order).to_response())


class OrderCancelView(TokenOrderMixin, OrdersAPIView):
    """Customer abandoned the hosted card checkout."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_customer"

    def post(self, request, code: str):
        body = self._body(request)
        order = self.get_order(code, body.get("token") or request.query_params.get("token"))

        if order.status == OrderStatus.CANCELLED.value:
            return Response({"orderCode": order.order_number, "status": order.status, "changed": False})
        if PaymentStatus(order.payment_status) in SETTLED_PAYMENT_STATUSES:
            raise PaymentSettledError(f"Order {order.order_number} is already {order.payment_status}")
        if order.is_terminal:
            raise AlreadyTerminalError(f"Order {order.order_number} is already {order.status}")
        current = OrderStatus(order.status)
        if current not in ABANDONABLE or OrderStatus.CANCELLED not in allowed_successors(current):
            raise TransitionError(f"Order {order.order_number} is already {current.value} and cannot be abandoned")

        with transaction.atomic():
            state_machine.record_payment(
                order,
                PaymentStatus.FAILED,
                status=OrderStatus.CANCELLED,
                note="Payment cancelled at Stripe checkout",
                actor="customer",
            )
            notifications.dispatch(order, notifications.ORDER_CANCELLED)
        OrderRepository().release_stock(order, get_inventory())
        return Response({"orderCode": order.order_number, "status": order.status, "changed": True})


class CustomerCancelView(TokenOrderMixin, OrdersAPIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_customer"

    def post(self, request, code: str):
        dto = CustomerCancelDTO.model_validate(self._body(request))
        order = self.get_order(code, dto.token)
        current = OrderStatus(order.status)
        if current not in CUSTOMER_CANCELLABLE:
            raise AlreadyTerminalError(f"Order {order.order_number} can no longer be cancelled ({current.value})")

        reason = dto.reason or "No reason given"
        with transaction.atomic():
            state_machine.transition(order, current, OrderStatus.CANCELLED,
                                     note=f"Cancelled by customer: {reason}", actor="customer")
            tag = f"[CANCELLED BY CUSTOMER] Reason: {reason}"
            order.customer_note = f"{order.customer_note}\n{tag}".strip()
            OrderModel.objects.filter(pk=order.pk).update(customer_note=order.customer_note,
                                                          updated_at=timezone.now())
            notifications.dispatch(order, notifications.ORDER_CANCELLED, reason=reason)
        OrderRepository().release_stock(order, get_inventory())
        return Response(OrderReadDTO.from_model(order).to_response())


class DepositProofView(TokenOrderMixin, OrdersAPIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_customer"

    def post(self, request, code: str):
        dto = ProofSubmitDTO.model_validate(self._body(request))
        order = self.get_order(code, dto.token)
        proof = get_deposit_manager().submit_proof(order, [str(u) for u in dto.image_urls], dto.note)
        return Response({"id": proof.pk, "status": proof.status}, status=status.HTTP_201_CREATED)


# ---- card payments ----
class CheckoutSessionView(TokenOrderMixin, OrdersAPIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        dto = CheckoutSessionDTO.model_validate(self._body(request))
        order = self.get_order(dto.order_code, dto.token)
        session = get_card_checkout_service().create_checkout_session(order)
        return Response({"sessionId": session.id, "url": session.url}, status=status.HTTP_201_CREATED)


class SessionStatusView(OrdersAPIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def get(self, request):
        session = get_card_checkout_service().session_status(request.query_params.get("session_id", ""))
        return Response({"id": session.id, "status": session.status, "paymentStatus": session.payment_status})


class PaymentWebhookView(OrdersAPIView):
    """Provider webhook. Only a bad signature or payload is reported back;
    once the event is verified the provider always gets a 200.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        payload = request.body
        event = get_payment_provider().verify_webhook(payload, request.headers.get("Stripe-Signature", ""))
        parsed = parse_event(event)
        try:
            outcome = get_reconciler().handle(parsed)
        except Exception:
            logger.exception("webhook handler failed",
                             extra={"event_id": parsed.event_id, "event_type": parsed.event_type})
            outcome = "error"
        return Response({"received": True, "outcome": outcome})


# ---- staff endpoints ----
class AdminOrderView(OrdersAPIView):
    permission_classes = [IsAdminUser]

    def get_order(self, code: str) -> OrderModel:
        return OrderRepository().get_by_code(code)


class AdminStatusView(AdminOrderView):
    def post(self, request, code: str):
        dto = StatusChangeDTO.model_validate(self._body(request))
        order = self.get_order(code)
        expected = dto.expected_status or OrderStatus(order.status)
        state_machine.transition(order, expected, dto.status, note=dto.note, actor=_actor(request))
        if dto.status == OrderStatus.CANCELLED:
            OrderRepository().release_stock(order, get_inventory())
            notifications.dispatch(order, notifications.ORDER_CANCELLED, reason=dto.note)
        else:
            notifications.dispatch(order, notifications.STATUS_UPDATE)
        return Response(OrderReadDTO.from_model(order).to_response())


class AdminDepositView(AdminOrderView):
    def post(self, request, code: str):
        dto = DepositActionDTO.model_validate(self._body(request))
        order = self.get_order(code)
        manager = get_deposit_manager()
        action = {
            "mark_received": manager.mark_deposit_received,
            "expire": manager.expire,
            "cancel": manager.cancel,
        }[dto.action]
        action(order, note=dto.note or None, actor=_actor(request))
        return Response(OrderReadDTO.from_model(order).to_response())


class AdminDepositProofView(AdminOrderView):
    def get(self, request, code: str):
        order = self.get_order(code)
        proofs = [
            {
                "id": p.pk,
                "status": p.status,
                "imageUrls": p.image_urls,
                "customerNote": p.customer_note,
                "submittedAt": p.submitted_at.isoformat(),
                "reviewedBy": p.reviewed_by or None,
                "reviewNote": p.review_note or None,
            }
            for p in order.deposit_proofs.all()
        ]
        return Response({"count": len(proofs), "results": proofs})

    def post(self, request, code: str):
        dto = ProofReviewDTO.model_validate(self._body(request))
        order = self.get_order(code)
        proof = get_deposit_manager().review_proof(order, dto.proof_id, dto.approve, note=dto.note,
                                                   actor=_actor(request))
        order.refresh_from_db()
        return Response({"proof": {"id": proof.pk, "status": proof.status},
                         "order": OrderReadDTO.from_model(order).to_response()})


class AdminRefundView(AdminOrderView):
    def post(self, request, code: str):
        dto = RefundDTO.model_validate(self._body(request))
        order = self.get_order(code)
        record = get_refund_service().request_refund(
            order,
            amount=dto.amount,
            reason=dto.reason or None,
            note=dto.note or None,
            restock=dto.restock,
            actor=_actor(request),
        )
        return Response(
            {"refundId": record.refund_id, "amount": record.amount, "status": record.status,
             "paymentStatus": order.payment_status},
            status=status.HTTP_201_CREATED,
        )


class AdminTrackingTokenView(AdminOrderView):
    def post(self, request, code: str):
        order = self.get_order(code)
        token = tracking.reissue_token(order, created_by=_actor(request) or "staff")
        return Response({"orderCode": order.order_number, "trackingToken": token}, status=status.HTTP_201_CREATED)


# ---- cron ----
class ExpireDepositsCronView(OrdersAPIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        secret = getattr(settings, "CRON_SECRET", "")
        header = request.headers.get("Authorization", "")
        if not secret or not hmac.compare_digest(header, f"Bearer {secret}"):
            return Response({"detail": "UNAUTHORIZED"}, status=status.HTTP_401_UNAUTHORIZED)
        expired = get_deposit_manager().expire_overdue(limit=getattr(settings, "DEPOSIT_EXPIRY_BATCH", 200))
        return Response({"expired": expired})

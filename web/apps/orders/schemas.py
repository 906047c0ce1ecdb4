"""Pydantic schemas for the orders API.

Request DTOs validate shape and normalize strings; business rules (stock,
deposit eligibility, required customer fields) are enforced by the
services. ``OrderReadDTO`` is the public view of an order.
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .domain import CartLine, CheckoutRequest, Customer, OrderStatus, PaymentMethod, PaymentMode, ShippingAddress


class _Strict(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class CheckoutItemIn(_Strict):
    product_id: UUID
    quantity: int = Field(gt=0, le=1000)


class CustomerIn(_Strict):
    full_name: str = Field(default="", max_length=200)
    phone: str = Field(default="", max_length=32)
    email: str = Field(default="", max_length=254)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if v and "@" not in v:
            raise ValueError("Invalid email address")
        return v.lower()


class ShippingIn(_Strict):
    address: str = Field(default="", max_length=300)
    city: str = Field(default="", max_length=120)
    district: str = Field(default="", max_length=120)


class CheckoutDTO(_Strict):
    """Body of ``POST /api/orders/``.

    Attributes:
        items: Cart lines; duplicates are merged by the checkout service.
        payment_method: ``cod``, ``bank_transfer`` or ``card``.
        payment_mode: ``deposit``, ``full`` or ``cod``.
    """

    items: list[CheckoutItemIn]
    customer: CustomerIn
    shipping: ShippingIn
    payment_method: PaymentMethod
    payment_mode: PaymentMode
    note: str = Field(default="", max_length=2000)

    def to_domain(self) -> CheckoutRequest:
        return CheckoutRequest(
            lines=[CartLine(product_id=str(i.product_id), quantity=i.quantity) for i in self.items],
            customer=Customer(full_name=self.customer.full_name, phone=self.customer.phone,
                              email=self.customer.email),
            shipping=ShippingAddress(address=self.shipping.address, city=self.shipping.city,
                                     district=self.shipping.district),
            payment_method=self.payment_method,
            payment_mode=self.payment_mode,
            note=self.note,
        )


class StatusChangeDTO(_Strict):
    status: OrderStatus
    expected_status: Optional[OrderStatus] = None
    note: str = Field(default="", max_length=2000)


class DepositActionDTO(_Strict):
    action: Literal["mark_received", "expire", "cancel"]
    note: str = Field(default="", max_length=2000)


class ProofSubmitDTO(_Strict):
    token: str = Field(min_length=1)
    image_urls: list[HttpUrl] = Field(min_length=1, max_length=5)
    note: str = Field(default="", max_length=2000)


class ProofReviewDTO(_Strict):
    proof_id: int
    approve: bool
    note: str = Field(default="", max_length=2000)


class RefundDTO(_Strict):
    amount: Optional[int] = Field(default=None, gt=0)
    reason: str = Field(default="", max_length=255)
    note: str = Field(default="", max_length=2000)
    restock: bool = False


class CheckoutSessionDTO(_Strict):
    order_code: str = Field(min_length=1)
    token: str = Field(min_length=1)


class CustomerCancelDTO(_Strict):
    token: str = Field(min_length=1)
    reason: str = Field(default="", max_length=500)


class OrderItemOut(BaseModel):
    product_id: Optional[str] = None
    name: str
    sku: str = ""
    image_url: str = ""
    unit_price: int
    quantity: int
    subtotal: int


class HistoryOut(BaseModel):
    from_status: Optional[str] = None
    to_status: str
    note: str = ""
    created_at: datetime


class OrderReadDTO(BaseModel):
    """Public representation of an order (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    order_code: str = Field(serialization_alias="orderCode")
    status: str
    payment_status: str = Field(serialization_alias="paymentStatus")
    payment_method: str = Field(serialization_alias="paymentMethod")
    order_type: str = Field(serialization_alias="orderType")
    subtotal: int
    shipping_fee: int = Field(serialization_alias="shippingFee")
    total: int
    currency: str
    deposit_amount: int = Field(serialization_alias="depositAmount")
    remaining_amount: int = Field(serialization_alias="remainingAmount")
    deposit_due_at: Optional[datetime] = Field(default=None, serialization_alias="depositDueAt")
    bank_transfer_memo: Optional[str] = Field(default=None, serialization_alias="bankTransferMemo")
    total_refunded_amount: int = Field(default=0, serialization_alias="totalRefundedAmount")
    created_at: datetime = Field(serialization_alias="createdAt")
    items: list[OrderItemOut] = []
    history: list[HistoryOut] = []

    @classmethod
    def from_model(cls, order) -> "OrderReadDTO":
        return cls(
            id=str(order.pk),
            order_code=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            order_type=order.order_type,
            subtotal=order.subtotal,
            shipping_fee=order.shipping_fee,
            total=order.total,
            currency=order.currency,
            deposit_amount=order.deposit_amount,
            remaining_amount=order.remaining_amount,
            deposit_due_at=order.deposit_due_at,
            bank_transfer_memo=order.bank_transfer_memo or None,
            total_refunded_amount=order.total_refunded_amount,
            created_at=order.created_at,
            items=[
                OrderItemOut(
                    product_id=str(i.product_id) if i.product_id else None,
                    name=i.product_name,
                    sku=i.product_sku,
                    image_url=i.image_url,
                    unit_price=i.unit_price,
                    quantity=i.quantity,
                    subtotal=i.subtotal,
                )
                for i in order.items.all()
            ],
            history=[
                HistoryOut(from_status=h.from_status, to_status=h.to_status, note=h.note, created_at=h.created_at)
                for h in order.history.all()
            ],
        )

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

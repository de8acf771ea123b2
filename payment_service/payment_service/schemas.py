"""Schemas for orders, payments and processor messages."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .statuses import OrderStatus


def _stringify_id(v):
    """The processor sends payment ids as JSON numbers; we store strings."""
    if v is None or isinstance(v, str):
        return v
    return str(v)


class Order(BaseModel):
    """Order record as read from the order store.

    Attributes:
        id: Order UUID, immutable
        user_id: Owning identity, immutable
        total: Authoritative order total in USD
        status: Order lifecycle status
        payment_id: Processor payment id, write-once
        payment_status: Raw mirror of the processor's last reported status
        pay_address: Deposit address assigned by the processor
        pay_amount: Crypto amount the customer must send
        pay_currency: Crypto currency code of the payment
    """

    id: str
    user_id: str
    total: Decimal = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    payment_id: Optional[str] = None
    payment_status: Optional[str] = None
    pay_address: Optional[str] = None
    pay_amount: Optional[float] = None
    pay_currency: Optional[str] = None

    @field_validator("payment_id", mode="before")
    def normalize_payment_id(cls, v):
        return _stringify_id(v)

    model_config = ConfigDict(use_enum_values=True)


class CreatePaymentRequest(BaseModel):
    """Client request to open a crypto payment for an order.

    Fields are deliberately permissive so the orchestrator can report
    validation failures in a fixed order after authentication.

    Attributes:
        order_id: Order UUID (``orderId`` on the wire)
        amount: Amount the client believes it owes
        currency: Crypto currency the client wants to pay with
    """

    order_id: Optional[Any] = Field(None, alias="orderId")
    amount: Optional[Any] = None
    currency: Optional[Any] = None

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "orderId": "9b2f6a70-3c1d-4e2b-8f43-2a6f1d0c7e55",
                "amount": 150.0,
                "currency": "eth",
            }
        },
    )


class PaymentDetails(BaseModel):
    """Deposit instructions for a created payment."""

    payment_id: str
    pay_address: str
    pay_amount: float
    pay_currency: str
    payment_status: str

    @field_validator("payment_id", mode="before")
    def normalize_payment_id(cls, v):
        return _stringify_id(v)


class CreatePaymentResponse(BaseModel):
    success: bool = True
    payment: PaymentDetails


class PaymentStatusReport(BaseModel):
    """Live payment status returned to a polling client.

    Attributes:
        payment_status: Processor status
        pay_amount: Amount expected
        actually_paid: Amount received so far
        pay_currency: Crypto currency code
    """

    payment_status: Optional[str] = None
    pay_amount: Optional[float] = None
    actually_paid: Optional[float] = None
    pay_currency: Optional[str] = None


class GatewayPayment(BaseModel):
    """Subset of the processor's create-payment response we rely on."""

    payment_id: str
    payment_status: str
    pay_address: str
    pay_amount: float
    pay_currency: str
    price_amount: Optional[float] = None
    price_currency: Optional[str] = None
    order_id: Optional[str] = None

    @field_validator("payment_id", mode="before")
    def normalize_payment_id(cls, v):
        return _stringify_id(v)

    model_config = ConfigDict(extra="ignore")

    def to_details(self) -> PaymentDetails:
        return PaymentDetails(
            payment_id=self.payment_id,
            pay_address=self.pay_address,
            pay_amount=self.pay_amount,
            pay_currency=self.pay_currency,
            payment_status=self.payment_status,
        )


class GatewayPaymentStatus(BaseModel):
    payment_status: Optional[str] = None
    pay_amount: Optional[float] = None
    actually_paid: Optional[float] = None
    pay_currency: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class WebhookPayload(BaseModel):
    """IPN notification body. Only trusted after signature verification.

    Unlisted processor fields are kept so nothing is lost when logging.
    """

    payment_id: Optional[Union[int, str]] = None
    payment_status: Optional[str] = None
    order_id: Optional[Any] = None
    pay_address: Optional[str] = None
    pay_amount: Optional[float] = None
    pay_currency: Optional[str] = None
    price_amount: Optional[float] = None
    price_currency: Optional[str] = None
    actually_paid: Optional[float] = None

    model_config = ConfigDict(extra="allow")


class OrderStatusNotification(BaseModel):
    """Customer notification about an order status change.

    Attributes:
        recipient: Customer email address
        order_id: Order UUID
        new_status: Order status being announced
        order_total: Order total in USD
        customer_name: Optional greeting name
        created_at: When the notification was created
    """

    recipient: EmailStr
    order_id: str
    new_status: str
    order_total: Decimal
    customer_name: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "recipient": "customer@example.com",
                "order_id": "9b2f6a70-3c1d-4e2b-8f43-2a6f1d0c7e55",
                "new_status": "processing",
                "order_total": "150.00",
            }
        }
    )

"""Payment orchestration: intent creation, status polling and IPN handling.

The webhook is the only writer of committed payment state. Status polling is
a read-through to the processor for display and never touches the order.
"""

import json
from typing import Optional

from pydantic import ValidationError

from logging_utils import get_component_logger

from .errors import (
    AmountMismatch,
    Conflict,
    Forbidden,
    InvalidInput,
    InvalidState,
    Misconfigured,
    NotFound,
    RateLimited,
    Unauthorized,
    UnsupportedCurrency,
    UpstreamError,
)
from .gateway import GatewayError, GatewayNotConfiguredError, NowPaymentsClient
from .notifier import NotificationSink
from .rate_limiter import RATE_LIMIT_PRESETS, RateLimitConfig, RateLimiter, RateLimitResult
from .schemas import Order, PaymentDetails, PaymentStatusReport, WebhookPayload
from .statuses import AWAITING_PAYMENT, OrderStatus, PaymentStatus, is_regression, order_status_for
from .store import OrderStore, StoreError
from .validation import (
    amounts_match,
    is_supported_currency,
    is_valid_amount,
    is_valid_uuid,
    supported_currencies_message,
    to_decimal,
)
from .webhooks import verify_signature

logger = get_component_logger("payment-service", "orchestrator")


class PaymentOrchestrator:
    """Ties orders one-to-one to processor payments and tracks their status.

    Attributes:
        store: Authoritative order store
        gateway: Processor client
        rate_limiter: Shared per-process limiter
        notifier: Sink for customer notifications
        webhook_secret: Shared IPN secret; webhooks are rejected without it
        callback_url: IPN URL registered with each payment
    """

    def __init__(
        self,
        store: OrderStore,
        gateway: NowPaymentsClient,
        rate_limiter: RateLimiter,
        notifier: NotificationSink,
        webhook_secret: Optional[str],
        callback_url: str,
        presets: Optional[dict[str, RateLimitConfig]] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.rate_limiter = rate_limiter
        self.notifier = notifier
        self.webhook_secret = webhook_secret
        self.callback_url = callback_url
        self.presets = {**RATE_LIMIT_PRESETS, **(presets or {})}

    def _authorize(self, caller: Optional[str], preset: str) -> RateLimitResult:
        if not caller:
            raise Unauthorized("Unauthorized")
        result = self.rate_limiter.check(caller, self.presets[preset])
        if not result.allowed:
            logger.warning(f"Rate limit exceeded for user {caller} on {preset}")
            raise RateLimited(result)
        return result

    def _load_order(self, order_id: str) -> Order:
        try:
            order = self.store.get_order(order_id)
        except StoreError as e:
            raise UpstreamError("Failed to load order") from e
        if order is None:
            raise NotFound("Order not found")
        return order

    def create_payment(
        self, caller: Optional[str], order_id, amount, currency
    ) -> tuple[PaymentDetails, RateLimitResult]:
        """Create a processor payment for an order owned by the caller.

        Checks run in a fixed order and the first failure is raised. The
        processor is charged the server-held order total, never ``amount``.

        Args:
            caller: Verified user id, or None if unauthenticated
            order_id: Order UUID from the client
            amount: Amount the client expects to pay
            currency: Crypto currency code

        Returns:
            tuple: Payment details and the caller's rate limit state

        Raises:
            PaymentServiceError: Subclass describing the rejected precondition
        """
        limit = self._authorize(caller, "create_payment")

        if order_id is None or amount is None or currency is None:
            raise InvalidInput("Missing required fields: orderId, amount, currency")
        if not is_valid_uuid(order_id):
            raise InvalidInput("Invalid order ID format")
        if not is_supported_currency(currency):
            raise UnsupportedCurrency(supported_currencies_message())
        if not is_valid_amount(amount):
            raise InvalidInput("Amount must be a positive number")

        order = self._load_order(order_id)
        if order.user_id != caller:
            logger.warning(f"User {caller} attempted to pay for order {order_id} owned by another user")
            raise Forbidden("Unauthorized to access this order")
        if order.payment_id is not None:
            raise Conflict("Payment already exists for this order")
        if order.payment_status is not None and order.payment_status != AWAITING_PAYMENT:
            raise InvalidState("Order is not awaiting payment")
        if not amounts_match(amount, order.total):
            logger.warning(f"Amount mismatch on order {order_id}: client sent {amount}, order total {order.total}")
            raise AmountMismatch("Amount does not match order total")

        try:
            payment = self.gateway.create_payment(
                price_amount=to_decimal(order.total),
                pay_currency=currency.lower(),
                order_id=order.id,
                callback_url=self.callback_url,
            )
        except GatewayNotConfiguredError as e:
            raise Misconfigured("Payment service not configured") from e
        except GatewayError as e:
            raise UpstreamError("Failed to create payment") from e

        details = payment.to_details()
        try:
            attached = self.store.attach_payment(order.id, details)
        except StoreError as e:
            logger.error(f"Payment {details.payment_id} created but not saved on order {order.id}: {e}")
            raise UpstreamError("Failed to save payment") from e
        if not attached:
            logger.error(f"Order {order.id} got a payment concurrently; payment {details.payment_id} is orphaned")
            raise Conflict("Payment already exists for this order")

        logger.info(f"Order {order.id} awaiting {details.pay_amount} {details.pay_currency} (payment {details.payment_id})")
        return details, limit

    def check_status(self, caller: Optional[str], payment_id) -> tuple[PaymentStatusReport, RateLimitResult]:
        """Fetch the live status of the caller's payment from the processor.

        Args:
            caller: Verified user id, or None if unauthenticated
            payment_id: Processor payment id from the client

        Returns:
            tuple: Status report and the caller's rate limit state
        """
        limit = self._authorize(caller, "check_status")

        if not payment_id or not isinstance(payment_id, str):
            raise InvalidInput("Missing paymentId parameter")

        try:
            order = self.store.get_order_by_payment_id(payment_id)
        except StoreError as e:
            raise UpstreamError("Failed to load order") from e
        if order is None:
            raise NotFound("Payment not found")
        if order.user_id != caller:
            logger.warning(f"User {caller} attempted to read payment {payment_id} owned by another user")
            raise Forbidden("Unauthorized to access this payment")

        try:
            status = self.gateway.get_payment_status(payment_id)
        except GatewayNotConfiguredError as e:
            raise Misconfigured("Payment service not configured") from e
        except GatewayError as e:
            raise UpstreamError("Failed to check payment status") from e

        return PaymentStatusReport(**status.model_dump()), limit

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Order:
        """Verify an IPN delivery and apply it to the order.

        Any exception raised here must become a non-2xx response so the
        processor redelivers. Applying the same payload twice leaves the
        order in the same state and notifies the customer only once.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the signature header

        Returns:
            Order: The order after the event was applied (or ignored)
        """
        if not self.webhook_secret:
            logger.error("Webhook not configured: NOWPAYMENTS_IPN_SECRET missing")
            raise Misconfigured("Webhook not configured")
        if not signature:
            logger.warning("Missing webhook signature header")
            raise Unauthorized("Missing signature")

        try:
            data = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidInput("Invalid JSON body") from e
        if not isinstance(data, dict):
            raise InvalidInput("Invalid JSON body")

        if not verify_signature(data, signature, self.webhook_secret):
            logger.warning(f"Invalid webhook signature for payment {data.get('payment_id')}")
            raise Unauthorized("Invalid signature")

        try:
            payload = WebhookPayload.model_validate(data)
        except ValidationError as e:
            raise InvalidInput("Invalid webhook payload") from e
        if not is_valid_uuid(payload.order_id):
            logger.warning(f"Invalid order_id in webhook: {payload.order_id!r}")
            raise InvalidInput("Invalid order ID")
        if not payload.payment_status:
            raise InvalidInput("Missing payment status")

        logger.info(f"Received webhook for payment {payload.payment_id}, status {payload.payment_status}")
        order_status = order_status_for(payload.payment_status)

        order = self._load_order(payload.order_id)
        if order.payment_id is not None and payload.payment_id is not None and str(payload.payment_id) != order.payment_id:
            logger.warning(f"Webhook payment {payload.payment_id} does not match order {order.id} payment {order.payment_id}")
            raise InvalidInput("Payment does not match order")

        if is_regression(order.payment_status, payload.payment_status):
            logger.warning(
                f"Ignoring stale webhook for order {order.id}: {order.payment_status} -> {payload.payment_status}"
            )
            return order

        try:
            updated = self.store.update_payment_status(
                order.id, payload.payment_status, order_status, expected_payment_status=order.payment_status
            )
        except StoreError as e:
            raise UpstreamError("Failed to update order") from e
        if updated is None:
            logger.warning(f"Order {order.id} changed while applying webhook, asking for redelivery")
            raise Conflict("Order was updated concurrently")

        logger.info(f"Order {order.id} is now {order_status.value} (payment {payload.payment_status})")

        finished = PaymentStatus.FINISHED.value
        if payload.payment_status == finished and order.payment_status != finished:
            self._notify_payment_finished(updated)
        return updated

    def _notify_payment_finished(self, order: Order) -> None:
        """Tell the order owner their payment went through. Best effort."""
        try:
            email = self.store.get_user_email(order.user_id)
        except StoreError as e:
            logger.error(f"Could not look up email for order {order.id}: {e}")
            return
        if not email:
            logger.warning(f"No email on file for user {order.user_id}, skipping notification")
            return

        limit = self.rate_limiter.check(email, self.presets["send_email"])
        if not limit.allowed:
            logger.warning(f"Notification rate limit hit for order {order.id}, skipping")
            return

        try:
            sent = self.notifier.send(email, order.id, OrderStatus.PROCESSING.value, to_decimal(order.total))
        except Exception as e:
            logger.error(f"Notification sink failed for order {order.id}: {e}")
            return
        if not sent:
            logger.warning(f"Notification for order {order.id} was not delivered")

"""HTTP client for the NOWPayments crypto payment processor."""

from decimal import Decimal
from typing import Optional

import requests
from pydantic import ValidationError

from logging_utils import get_component_logger

from .schemas import GatewayPayment, GatewayPaymentStatus

logger = get_component_logger("payment-service", "gateway")

DEFAULT_BASE_URL = "https://api.nowpayments.io/v1"
DEFAULT_TIMEOUT = 10.0


class GatewayError(Exception):
    """The processor call failed; details are logged, not returned to clients."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayNotConfiguredError(GatewayError):
    """No API key is configured for the processor."""


class NowPaymentsClient:
    """Thin wrapper around the processor's payment endpoints.

    Attributes:
        base_url: Processor API root, without trailing slash
        timeout: Per-request timeout in seconds
        session: HTTP session used for all calls
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Processor API key; calls fail with GatewayNotConfiguredError when missing
            base_url: Processor API root
            timeout: Per-request timeout in seconds
            session: Optional pre-built HTTP session
        """
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict:
        if not self._api_key:
            logger.error("NOWPAYMENTS_API_KEY not configured")
            raise GatewayNotConfiguredError("Payment service not configured")
        return {"x-api-key": self._api_key, "Content-Type": "application/json"}

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """Send a request and return the decoded JSON body.

        Raises:
            GatewayError: On transport failure, timeout, non-2xx status or a non-JSON body.
        """
        url = f"{self.base_url}{path}"
        headers = self._headers()
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.error(f"Processor request timed out: {method} {path}")
            raise GatewayError("Payment processor timed out") from e
        except requests.RequestException as e:
            logger.error(f"Processor request failed: {method} {path}: {e}")
            raise GatewayError("Payment processor unreachable") from e

        if not response.ok:
            logger.error(f"Processor error {response.status_code} on {method} {path}: {response.text}")
            raise GatewayError("Payment processor rejected the request", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Processor returned a non-JSON body on {method} {path}")
            raise GatewayError("Payment processor returned an invalid response") from e

    def create_payment(
        self,
        price_amount: Decimal,
        pay_currency: str,
        order_id: str,
        callback_url: str,
        price_currency: str = "usd",
    ) -> GatewayPayment:
        """Create a payment intent for an order.

        Args:
            price_amount: Server-held order total to charge
            pay_currency: Crypto currency the customer pays with
            order_id: Order UUID echoed back in webhooks
            callback_url: IPN callback URL registered for this payment
            price_currency: Fiat currency of ``price_amount``

        Returns:
            GatewayPayment: Deposit address, amount and initial status

        Raises:
            GatewayError: If the processor call fails
        """
        body = {
            "price_amount": float(price_amount),
            "price_currency": price_currency,
            "pay_currency": pay_currency.lower(),
            "order_id": order_id,
            "order_description": f"Order {order_id}",
            "ipn_callback_url": callback_url,
        }
        data = self._request("POST", "/payment", json=body)
        try:
            payment = GatewayPayment.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected create-payment response for order {order_id}: {e}")
            raise GatewayError("Payment processor returned an invalid response") from e

        logger.info(f"Created payment {payment.payment_id} for order {order_id} ({payment.pay_currency})")
        return payment

    def get_payment_status(self, payment_id: str) -> GatewayPaymentStatus:
        """Query the live status of a payment.

        Args:
            payment_id: Processor payment id

        Returns:
            GatewayPaymentStatus: Current status and amounts

        Raises:
            GatewayError: If the processor call fails
        """
        data = self._request("GET", f"/payment/{payment_id}")
        try:
            return GatewayPaymentStatus.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected status response for payment {payment_id}: {e}")
            raise GatewayError("Payment processor returned an invalid response") from e

    def check_api_status(self) -> bool:
        """Check whether the processor API is reachable.

        Returns:
            bool: True if the processor reports OK, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/status", timeout=self.timeout)
            body = response.json() if response.ok else None
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Processor status check failed: {e}")
            return False
        return isinstance(body, dict) and body.get("message") == "OK"

"""Order store adapters.

The order store is the authoritative source of order state. Payment writes
are conditional so concurrent requests cannot overwrite each other.
"""

import threading
from typing import Optional, Protocol

import requests
from pydantic import ValidationError

from logging_utils import get_component_logger

from .schemas import Order, PaymentDetails
from .statuses import OrderStatus

logger = get_component_logger("payment-service", "store")

ORDER_COLUMNS = "id,user_id,total,status,payment_id,payment_status,pay_address,pay_amount,pay_currency"


class StoreError(Exception):
    """The order store could not be read or written."""


class OrderStore(Protocol):
    """Protocol defining the order fields the payment pipeline reads and writes."""

    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    def get_order_by_payment_id(self, payment_id: str) -> Optional[Order]:
        ...

    def attach_payment(self, order_id: str, payment: PaymentDetails) -> bool:
        """Record payment details only if the order has no payment yet.

        Returns:
            bool: True if written, False if a payment id was already present
        """
        ...

    def update_payment_status(
        self, order_id: str, payment_status: str, status: OrderStatus, expected_payment_status: Optional[str]
    ) -> Optional[Order]:
        """Write ``payment_status`` and ``status`` in one update.

        The write only applies while the stored payment status still equals
        ``expected_payment_status``.

        Returns:
            The updated order, or None if the condition no longer held
        """
        ...

    def get_user_email(self, user_id: str) -> Optional[str]:
        ...


class InMemoryOrderStore:
    """Thread-safe in-memory order store for local runs and tests."""

    def __init__(self, orders: Optional[list[Order]] = None, emails: Optional[dict[str, str]] = None):
        self._orders: dict[str, Order] = {order.id: order for order in orders or []}
        self._emails: dict[str, str] = dict(emails or {})
        self._lock = threading.Lock()

    def add_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order

    def set_user_email(self, user_id: str, email: str) -> None:
        with self._lock:
            self._emails[user_id] = email

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy() if order else None

    def get_order_by_payment_id(self, payment_id: str) -> Optional[Order]:
        with self._lock:
            for order in self._orders.values():
                if order.payment_id == payment_id:
                    return order.model_copy()
            return None

    def attach_payment(self, order_id: str, payment: PaymentDetails) -> bool:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_id is not None:
                return False
            self._orders[order_id] = order.model_copy(update=payment.model_dump())
            return True

    def update_payment_status(
        self, order_id: str, payment_status: str, status: OrderStatus, expected_payment_status: Optional[str]
    ) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payment_status != expected_payment_status:
                return None
            updated = order.model_copy(update={"payment_status": payment_status, "status": OrderStatus(status).value})
            self._orders[order_id] = updated
            return updated.model_copy()

    def get_user_email(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._emails.get(user_id)


class SupabaseOrderStore:
    """Order store backed by Supabase's PostgREST API with the service role key."""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the store.

        Args:
            supabase_url: Project URL
            service_role_key: Service role key, bypasses row level security
            timeout: Per-request timeout in seconds
            session: Optional pre-built HTTP session
        """
        self.rest_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
                "Content-Type": "application/json",
            }
        )

    def _call(self, method: str, table: str, params: dict, **kwargs) -> list:
        try:
            response = self.session.request(
                method, f"{self.rest_url}/{table}", params=params, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"Order store {method} {table} failed: {e}")
            raise StoreError(f"Order store unavailable: {e}") from e

        if not response.ok:
            logger.error(f"Order store {method} {table} returned {response.status_code}: {response.text}")
            raise StoreError(f"Order store returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise StoreError("Order store returned an invalid response") from e

    def _first_order(self, rows: list) -> Optional[Order]:
        if not rows:
            return None
        try:
            return Order.model_validate(rows[0])
        except ValidationError as e:
            logger.error(f"Malformed order row: {e}")
            raise StoreError("Malformed order row") from e

    def get_order(self, order_id: str) -> Optional[Order]:
        rows = self._call("GET", "orders", {"id": f"eq.{order_id}", "select": ORDER_COLUMNS})
        return self._first_order(rows)

    def get_order_by_payment_id(self, payment_id: str) -> Optional[Order]:
        rows = self._call("GET", "orders", {"payment_id": f"eq.{payment_id}", "select": ORDER_COLUMNS})
        return self._first_order(rows)

    def attach_payment(self, order_id: str, payment: PaymentDetails) -> bool:
        rows = self._call(
            "PATCH",
            "orders",
            {"id": f"eq.{order_id}", "payment_id": "is.null", "select": "id"},
            json=payment.model_dump(),
            headers={"Prefer": "return=representation"},
        )
        return bool(rows)

    def update_payment_status(
        self, order_id: str, payment_status: str, status: OrderStatus, expected_payment_status: Optional[str]
    ) -> Optional[Order]:
        params = {"id": f"eq.{order_id}", "select": ORDER_COLUMNS}
        if expected_payment_status is None:
            params["payment_status"] = "is.null"
        else:
            params["payment_status"] = f"eq.{expected_payment_status}"
        rows = self._call(
            "PATCH",
            "orders",
            params,
            json={"payment_status": payment_status, "status": OrderStatus(status).value},
            headers={"Prefer": "return=representation"},
        )
        return self._first_order(rows)

    def get_user_email(self, user_id: str) -> Optional[str]:
        rows = self._call("GET", "profiles", {"user_id": f"eq.{user_id}", "select": "email"})
        if not rows:
            return None
        return rows[0].get("email")

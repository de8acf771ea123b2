"""Test fixtures for the payment service tests."""

import json
from decimal import Decimal
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from payment_service.gateway import NowPaymentsClient
from payment_service.orchestrator import PaymentOrchestrator
from payment_service.rate_limiter import RateLimiter
from payment_service.schemas import GatewayPayment, GatewayPaymentStatus, Order
from payment_service.server import app, state
from payment_service.store import InMemoryOrderStore
from payment_service.webhooks import compute_signature

ORDER_ID = "9b2f6a70-3c1d-4e2b-8f43-2a6f1d0c7e55"
USER_A = "user-a"
USER_B = "user-b"
USER_A_EMAIL = "alice@example.com"
WEBHOOK_SECRET = "ipn-test-secret"
CALLBACK_URL = "https://shop.example.com/nowpayments-webhook"
TOKENS = {"token-a": USER_A, "token-b": USER_B}


class FakeClock:
    """Controllable clock returning seconds since the epoch."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(clock=clock)


@pytest.fixture
def order():
    """An unpaid 150.00 USD order owned by user A."""
    return Order(
        id=ORDER_ID,
        user_id=USER_A,
        total=Decimal("150.00"),
        status="pending",
        payment_status="awaiting_payment",
    )


@pytest.fixture
def store(order):
    return InMemoryOrderStore(orders=[order], emails={USER_A: USER_A_EMAIL})


@pytest.fixture
def gateway():
    """Processor client double returning the canonical eth payment."""
    gateway = Mock(spec=NowPaymentsClient)
    gateway.create_payment.return_value = GatewayPayment(
        payment_id="pid1", pay_address="0xabc", pay_amount=0.05, pay_currency="eth", payment_status="waiting"
    )
    gateway.get_payment_status.return_value = GatewayPaymentStatus(
        payment_status="confirming", pay_amount=0.05, actually_paid=0.02, pay_currency="eth"
    )
    gateway.check_api_status.return_value = True
    return gateway


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.send.return_value = True
    return notifier


@pytest.fixture
def orchestrator(store, gateway, rate_limiter, notifier):
    return PaymentOrchestrator(
        store=store,
        gateway=gateway,
        rate_limiter=rate_limiter,
        notifier=notifier,
        webhook_secret=WEBHOOK_SECRET,
        callback_url=CALLBACK_URL,
    )


@pytest.fixture
def identity():
    """Identity verifier accepting the two test tokens."""
    verifier = Mock()
    verifier.verify.side_effect = TOKENS.get
    return verifier


@pytest.fixture
def test_client(orchestrator, identity):
    """Create a test client for the FastAPI app wired to the test doubles."""
    state.configure(orchestrator, identity)
    yield TestClient(app)
    state.orchestrator = None
    state.identity = None


@pytest.fixture
def paid_order(store, order):
    """The order after payment pid1 was created for it."""
    paid = order.model_copy(
        update={
            "payment_id": "pid1",
            "payment_status": "waiting",
            "pay_address": "0xabc",
            "pay_amount": 0.05,
            "pay_currency": "eth",
        }
    )
    store.add_order(paid)
    return paid


def make_webhook_payload(payment_status: str = "finished", **overrides) -> dict:
    """Build an IPN body in the processor's shape."""
    payload = {
        "payment_id": "pid1",
        "payment_status": payment_status,
        "pay_address": "0xabc",
        "price_amount": 150.0,
        "price_currency": "usd",
        "pay_amount": 0.05,
        "actually_paid": 0.05,
        "pay_currency": "eth",
        "order_id": ORDER_ID,
        "order_description": f"Order {ORDER_ID}",
        "outcome_amount": 0.0498,
        "outcome_currency": "eth",
    }
    payload.update(overrides)
    return payload


def sign(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    """Serialize a payload and sign it like the processor does."""
    return json.dumps(payload).encode("utf-8"), compute_signature(payload, secret)

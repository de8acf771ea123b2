"""Tests for the HTTP surface of the payment service."""

from payment_service.auth import IdentityError
from payment_service.rate_limiter import RateLimitConfig

from conftest import ORDER_ID, make_webhook_payload, sign

AUTH_A = {"Authorization": "Bearer token-a"}
AUTH_B = {"Authorization": "Bearer token-b"}
CREATE_BODY = {"orderId": ORDER_ID, "amount": 150.0, "currency": "eth"}


def test_health_check(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_readiness_check(test_client, gateway):
    response = test_client.get("/health/ready")
    assert response.json() == {"status": "ready", "gateway": True, "webhook_secret": True}

    gateway.check_api_status.return_value = False
    assert test_client.get("/health/ready").json()["status"] == "not_ready"


def test_create_payment(test_client):
    response = test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_A)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "payment": {
            "payment_id": "pid1",
            "pay_address": "0xabc",
            "pay_amount": 0.05,
            "pay_currency": "eth",
            "payment_status": "waiting",
        },
    }
    assert response.headers["X-RateLimit-Remaining"] == "4"
    assert int(response.headers["X-RateLimit-Reset"]) > 0


def test_create_payment_requires_auth(test_client, gateway):
    response = test_client.post("/create-crypto-payment", json=CREATE_BODY)

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    gateway.create_payment.assert_not_called()


def test_create_payment_with_rejected_token(test_client):
    response = test_client.post("/create-crypto-payment", json=CREATE_BODY, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_create_payment_for_other_user(test_client):
    response = test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_B)
    assert response.status_code == 403
    assert response.json() == {"error": "Unauthorized to access this order"}


def test_create_payment_twice(test_client):
    test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_A)
    response = test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_A)

    assert response.status_code == 400
    assert response.json() == {"error": "Payment already exists for this order"}


def test_create_payment_malformed_body(test_client):
    response = test_client.post(
        "/create-crypto-payment",
        content=b"{not json",
        headers={**AUTH_A, "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: orderId, amount, currency"}


def test_create_payment_rate_limited(test_client):
    for _ in range(5):
        test_client.post("/create-crypto-payment", json={"orderId": "bad"}, headers=AUTH_A)

    response = test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_A)

    assert response.status_code == 429
    assert response.json() == {"error": "Too many requests. Please try again later.", "retryAfter": 60}
    assert response.headers["Retry-After"] == "60"
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_identity_provider_down(test_client, identity):
    identity.verify.side_effect = IdentityError("unreachable")

    response = test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_A)

    assert response.status_code == 500
    assert response.json() == {"error": "Authentication service unavailable"}


def test_check_payment_status(test_client, paid_order):
    response = test_client.get("/check-payment-status", params={"paymentId": "pid1"}, headers=AUTH_A)

    assert response.status_code == 200
    assert response.json() == {
        "payment_status": "confirming",
        "pay_amount": 0.05,
        "actually_paid": 0.02,
        "pay_currency": "eth",
    }
    assert response.headers["X-RateLimit-Remaining"] == "29"


def test_check_payment_status_missing_id(test_client):
    response = test_client.get("/check-payment-status", headers=AUTH_A)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing paymentId parameter"}


def test_check_payment_status_unknown(test_client):
    response = test_client.get("/check-payment-status", params={"paymentId": "nope"}, headers=AUTH_A)
    assert response.status_code == 404


def test_webhook_applies_update(test_client, paid_order, store):
    body, signature = sign(make_webhook_payload("finished"))

    response = test_client.post("/nowpayments-webhook", content=body, headers={"x-nowpayments-sig": signature})

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert store.get_order(ORDER_ID).status == "processing"


def test_webhook_invalid_signature(test_client, paid_order, store):
    body, _ = sign(make_webhook_payload("finished"))

    response = test_client.post("/nowpayments-webhook", content=body, headers={"x-nowpayments-sig": "00" * 64})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    assert store.get_order(ORDER_ID).payment_status == "waiting"


def test_webhook_unknown_order_is_not_acknowledged(test_client):
    body, signature = sign(make_webhook_payload(order_id="00000000-0000-0000-0000-000000000000"))
    response = test_client.post("/nowpayments-webhook", content=body, headers={"x-nowpayments-sig": signature})
    assert response.status_code == 404


def test_cors_preflight(test_client):
    response = test_client.options(
        "/create-crypto-payment",
        headers={
            "Origin": "https://shop.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_not_ready_without_components(test_client):
    from payment_service.server import state

    state.orchestrator = None
    response = test_client.get("/health/ready")
    assert response.json()["status"] == "not_ready"
    assert test_client.post("/create-crypto-payment", json=CREATE_BODY, headers=AUTH_A).status_code == 500


def test_check_payment_status_rate_limited(test_client, paid_order, gateway):
    for _ in range(30):
        test_client.get("/check-payment-status", params={"paymentId": "pid1"}, headers=AUTH_A)

    response = test_client.get("/check-payment-status", params={"paymentId": "pid1"}, headers=AUTH_A)

    assert response.status_code == 429
    assert response.json()["retryAfter"] == 60
    assert response.headers["Retry-After"] == "60"
    assert gateway.get_payment_status.call_count == 30


def test_webhook_rate_limited_per_source(test_client, orchestrator, paid_order, store):
    orchestrator.presets["webhook"] = RateLimitConfig(max_requests=2, window_ms=60_000, prefix="webhook")
    stale_body, stale_signature = sign(make_webhook_payload("waiting"))
    for _ in range(2):
        test_client.post("/nowpayments-webhook", content=stale_body, headers={"x-nowpayments-sig": stale_signature})

    body, signature = sign(make_webhook_payload("finished"))
    response = test_client.post("/nowpayments-webhook", content=body, headers={"x-nowpayments-sig": signature})

    assert response.status_code == 429
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert store.get_order(ORDER_ID).payment_status == "waiting"


def test_webhook_limit_is_per_source(test_client, orchestrator, paid_order, store):
    orchestrator.presets["webhook"] = RateLimitConfig(max_requests=1, window_ms=60_000, prefix="webhook")
    orchestrator.rate_limiter.check("203.0.113.7", orchestrator.presets["webhook"])

    body, signature = sign(make_webhook_payload("finished"))
    response = test_client.post("/nowpayments-webhook", content=body, headers={"x-nowpayments-sig": signature})

    assert response.status_code == 200
    assert store.get_order(ORDER_ID).status == "processing"

"""Tests for input validation and status mapping."""

from decimal import Decimal

import pytest

from payment_service.statuses import OrderStatus, PaymentStatus, is_regression, order_status_for
from payment_service.validation import (
    amounts_match,
    is_supported_currency,
    is_valid_amount,
    is_valid_uuid,
    supported_currencies_message,
)


@pytest.mark.parametrize(
    "value",
    ["9b2f6a70-3c1d-4e2b-8f43-2a6f1d0c7e55", "9B2F6A70-3C1D-4E2B-8F43-2A6F1D0C7E55"],
)
def test_valid_uuids(value):
    assert is_valid_uuid(value)


@pytest.mark.parametrize(
    "value",
    [None, 42, "", "not-a-uuid", "9b2f6a703c1d4e2b8f432a6f1d0c7e55", "9b2f6a70-3c1d-4e2b-8f43-2a6f1d0c7e55\n"],
)
def test_invalid_uuids(value):
    assert not is_valid_uuid(value)


def test_currency_whitelist():
    for code in ("btc", "eth", "usdt", "ltc", "xmr", "ETH"):
        assert is_supported_currency(code)
    for code in ("doge", "usd", "", None, 1):
        assert not is_supported_currency(code)
    assert "btc, eth, usdt, ltc, xmr" in supported_currencies_message()


@pytest.mark.parametrize("value", [150, 150.0, 0.01, Decimal("99.99")])
def test_valid_amounts(value):
    assert is_valid_amount(value)


@pytest.mark.parametrize("value", [0, -1, float("nan"), float("inf"), True, "150.00", None, Decimal("NaN")])
def test_invalid_amounts(value):
    assert not is_valid_amount(value)


def test_amount_tolerance_is_inclusive_and_exact():
    total = Decimal("150.00")
    assert amounts_match(150.0, total)
    assert amounts_match(150.01, total)
    assert amounts_match(149.99, total)
    assert not amounts_match(150.02, total)
    assert not amounts_match(1.5, total)
    # 0.1 + 0.2 drifts in binary floating point but is within a cent
    assert amounts_match(0.1 + 0.2, Decimal("0.30"))


@pytest.mark.parametrize(
    "payment_status,expected",
    [
        ("waiting", OrderStatus.PENDING),
        ("confirming", OrderStatus.PENDING),
        ("confirmed", OrderStatus.PROCESSING),
        ("sending", OrderStatus.PROCESSING),
        ("finished", OrderStatus.PROCESSING),
        ("failed", OrderStatus.CANCELLED),
        ("refunded", OrderStatus.CANCELLED),
        ("expired", OrderStatus.CANCELLED),
        ("partially_paid", OrderStatus.PENDING),
        (None, OrderStatus.PENDING),
    ],
)
def test_status_mapping(payment_status, expected):
    assert order_status_for(payment_status) == expected


def test_unknown_status_parses_to_fallback():
    assert PaymentStatus.parse("partially_paid") is PaymentStatus.UNKNOWN
    assert PaymentStatus.parse("finished") is PaymentStatus.FINISHED


def test_regression_detection():
    assert is_regression("finished", "waiting")
    assert is_regression("confirmed", "confirming")
    assert not is_regression("awaiting_payment", "waiting")
    assert not is_regression(None, "finished")
    assert not is_regression("finished", "finished")
    assert not is_regression("finished", "refunded")
    assert not is_regression("waiting", "partially_paid")

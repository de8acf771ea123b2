"""IPN webhook signature handling.

The processor signs the JSON body with HMAC-SHA512, keyed with the shared IPN
secret, and sends the hex digest in the ``x-nowpayments-sig`` header. The
signed text is the body re-serialized the way JavaScript's ``JSON.stringify``
writes it, with the top-level keys sorted. Nested objects keep their order.
"""

import hashlib
import hmac
import json
import math
import re
from decimal import Decimal

SIGNATURE_HEADER = "x-nowpayments-sig"

# Integers beyond this are doubles in JavaScript and lose their exact digits.
MAX_SAFE_INTEGER = 2**53
LONE_SURROGATE = re.compile("[\ud800-\udfff]")


def js_number(value: float) -> str:
    """Format a number exactly as ``JSON.stringify`` does.

    Python and JavaScript agree on the shortest round-trip digits but not on
    where to switch to exponent notation: JavaScript writes ``0.00005`` and
    ``150`` where Python writes ``5e-05`` and ``150.0``.
    """
    if not math.isfinite(value):
        return "null"
    if value == 0:
        return "0"
    if value < 0:
        return "-" + js_number(-value)

    _, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = "".join(map(str, digit_tuple))
    stripped = digits.rstrip("0")
    exponent += len(digits) - len(stripped)
    digits = stripped

    k = len(digits)
    n = k + exponent  # value == 0.<digits> * 10**n
    if k <= n <= 21:
        return digits + "0" * (n - k)
    if 0 < n <= 21:
        return f"{digits[:n]}.{digits[n:]}"
    if -6 < n <= 0:
        return f"0.{'0' * -n}{digits}"

    e = n - 1
    sign = "+" if e >= 0 else "-"
    mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
    return f"{mantissa}e{sign}{abs(e)}"


def _js_string(value: str) -> str:
    encoded = json.dumps(value, ensure_ascii=False)
    return LONE_SURROGATE.sub(lambda m: f"\\u{ord(m.group()):04x}", encoded)


def js_stringify(value) -> str:
    """Serialize a decoded JSON value the way ``JSON.stringify`` does, compactly."""
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int):
        return str(value) if abs(value) < MAX_SAFE_INTEGER else js_number(float(value))
    if isinstance(value, float):
        return js_number(value)
    if isinstance(value, str):
        return _js_string(value)
    if isinstance(value, list):
        return "[" + ",".join(js_stringify(item) for item in value) + "]"
    if isinstance(value, dict):
        return "{" + ",".join(f"{_js_string(key)}:{js_stringify(item)}" for key, item in value.items()) + "}"
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def canonical_json(payload: dict) -> str:
    """Serialize a payload the way the processor does before signing."""
    return js_stringify({key: payload[key] for key in sorted(payload)})


def compute_signature(payload: dict, secret: str) -> str:
    """Compute the hex HMAC-SHA512 signature of a payload.

    Args:
        payload: Parsed webhook body
        secret: Shared IPN secret

    Returns:
        str: Lowercase hex digest
    """
    return hmac.new(secret.encode("utf-8"), canonical_json(payload).encode("utf-8"), hashlib.sha512).hexdigest()


def verify_signature(payload: dict, signature: str, secret: str) -> bool:
    """Check a provided signature in constant time."""
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))

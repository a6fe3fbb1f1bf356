"""
Canonical Serialization

One deterministic byte representation per logical payload, so identical menu
content always hashes to the same digest.

Rules:
    - Decimal  -> fixed-point string ("120.00", never "1.2E+2")
    - float    -> shortest round-trip decimal string
    - datetime -> ISO-8601 in UTC
    - tuple/set/frozenset -> list (sets sorted)
    - dict keys sorted, separators (",", ":"), UTF-8, no ASCII escaping

The stored snapshot content is the normalized payload itself, so verifying a
stored row canonicalizes plain JSON values and yields the same bytes.
"""

import hashlib
import json
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

# ISO 4217 minor units that differ from the usual 2
_ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
    "RWF", "UGX", "UYI", "VND", "VUV", "XAF", "XOF", "XPF",
})
_THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})


def currency_exponent(currency: str) -> int:
    """Number of decimal places a currency is quoted with."""
    code = currency.upper()
    if code in _ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in _THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def format_price(price: Decimal, currency: str) -> str:
    """Render a price with exactly the currency's number of decimals."""
    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    return format(Decimal(price).quantize(quantum), "f")


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize(v) for v in value), key=repr)
    if isinstance(value, bool) or value is None or isinstance(value, (int, str)):
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Cannot canonicalize non-finite decimal {value}")
        return format(value, "f")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot canonicalize non-finite float {value}")
        return repr(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    raise TypeError(f"Unsupported type in canonical payload: {type(value).__name__}")


def normalize_payload(payload: dict) -> dict:
    """Convert a payload into plain JSON values following the rules above."""
    return _normalize(payload)


def canonical_bytes(payload: dict) -> bytes:
    return json.dumps(
        normalize_payload(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def content_hash(payload: dict) -> str:
    """Lowercase hex SHA-256 of the canonical bytes (64 characters)."""
    return hashlib.sha256(canonical_bytes(payload)).hexdigest()


def price_or_none(price: Optional[Decimal], currency: Optional[str]) -> Optional[str]:
    if price is None or currency is None:
        return None
    return format_price(price, currency)

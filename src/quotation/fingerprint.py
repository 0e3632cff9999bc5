"""Canonical JSON serialization and SHA-256 fingerprinting.

Produces a stable identity for structured data so that two semantically
equal payloads hash to the same digest regardless of:

- mapping key order,
- ``None`` versus an absent mapping entry,
- ``datetime``/``date`` objects versus their ISO-8601 strings,
- embedded JSON carried as a string versus the parsed object.

The byte layout matches the JavaScript reference (``JSON.stringify`` number
and string formatting, keys sorted by UTF-16 code unit), so fingerprints
computed by another instance of the service can be validated here.

Numbers are IEEE-754 doubles, as in JavaScript.  A ``Decimal`` is reduced to
the nearest double before hashing, so Decimals that only differ beyond double
precision (``Decimal("1.00000000000000000001")`` and ``Decimal("1")``) share a
digest.  Carry such values as strings when every digit must count.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel

# JavaScript switches Number#toString to exponent notation outside this range.
_JS_MAX_PLAIN_EXPONENT = 21
_JS_MIN_PLAIN_EXPONENT = -6


def _reject_constant(name: str) -> Any:
    # JSON.parse refuses NaN / Infinity literals; mirror that so such strings stay strings.
    raise ValueError(f"non-standard JSON constant: {name}")


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def _parse_embedded_json(value: str) -> tuple[bool, Any]:
    trimmed = value.strip()
    looks_like_json = (trimmed.startswith("{") and trimmed.endswith("}")) or (
        trimmed.startswith("[") and trimmed.endswith("]")
    )
    if not looks_like_json:
        return False, None
    try:
        return True, json.loads(trimmed, parse_constant=_reject_constant)
    except ValueError:
        return False, None


def normalize(value: Any) -> Any:
    """Recursively normalize *value* into plain JSON-compatible Python data.

    Args:
        value: Any nesting of mappings, sequences, scalars, dates, Decimals,
               enums, or pydantic models.

    Returns:
        The normalized value: ``dict`` (``None`` entries dropped), ``list``,
        ``str``, ``int``, ``float``, ``bool`` or ``None``.

    Raises:
        TypeError: If *value* contains a type with no canonical form.
    """
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return normalize(value.model_dump(mode="python"))
    if isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, str):
        parsed, payload = _parse_embedded_json(value)
        return normalize(payload) if parsed else value
    if isinstance(value, datetime):
        return _format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        # Same precision as the JSON number the value travels as.
        return float(value) if value.is_finite() else None
    if isinstance(value, Mapping):
        normalized: dict[str, Any] = {}
        for key, item in value.items():
            item_value = normalize(item)
            if item_value is not None:
                normalized[str(key)] = item_value
        return normalized
    if isinstance(value, (set, frozenset)):
        return sorted((normalize(item) for item in value), key=canonical_stringify)
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [normalize(item) for item in value]
    raise TypeError(f"Cannot canonicalize value of type {type(value).__name__}")


def _format_number(value: int | float) -> str:
    """Render a number exactly like JavaScript's ``Number#toString``."""
    if isinstance(value, int) and abs(value) < 10**_JS_MAX_PLAIN_EXPONENT:
        return str(value)
    number = float(value)
    if number == 0:
        return "0"
    sign = "-" if number < 0 else ""
    shortest = Decimal(repr(abs(number))).normalize()
    _, digit_tuple, exponent = shortest.as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = exponent + k  # type: ignore[operator]

    if k <= n <= _JS_MAX_PLAIN_EXPONENT:
        body = digits + "0" * (n - k)
    elif 0 < n <= _JS_MAX_PLAIN_EXPONENT:
        body = f"{digits[:n]}.{digits[n:]}"
    elif _JS_MIN_PLAIN_EXPONENT < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
        body = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + body


def _utf16_key(key: str) -> bytes:
    return key.encode("utf-16-be", errors="surrogatepass")


def _serialize(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (int, float)):
        return _format_number(value)
    if isinstance(value, list):
        return "[" + ",".join(_serialize(item) for item in value) + "]"
    if isinstance(value, dict):
        pairs = (
            json.dumps(key, ensure_ascii=False) + ":" + _serialize(value[key])
            for key in sorted(value, key=_utf16_key)
        )
        return "{" + ",".join(pairs) + "}"
    raise TypeError(f"Cannot serialize normalized value of type {type(value).__name__}")


def canonical_stringify(value: Any) -> str:
    """Return the canonical JSON text of *value*.

    Args:
        value: Arbitrary structured data (see :func:`normalize`).

    Returns:
        Compact JSON with sorted keys and fixed scalar encoding.
    """
    return _serialize(normalize(value))


def compute_canonical_hash(value: Any) -> str:
    """Return the lowercase hex SHA-256 digest of ``canonical_stringify(value)``.

    Args:
        value: Arbitrary structured data.

    Returns:
        A 64-character lowercase hexadecimal string.
    """
    canonical = canonical_stringify(value)
    return hashlib.sha256(canonical.encode("utf-8", errors="surrogatepass")).hexdigest()

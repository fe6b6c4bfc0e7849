"""
Canonical JSON encoding.

Sorted keys, no insignificant whitespace, UTF-8 without ASCII escaping.
Integral floats are written as integers so ``1.0`` and ``1`` hash the same;
NaN and infinities are rejected. Strings (including dates) are never
re-formatted.
"""

from __future__ import annotations

import base64
import json
from typing import Any


def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def canonicalize(data: Any) -> str:
    """Serialize *data* to its canonical JSON string.

    Raises:
        ValueError: If *data* contains NaN or infinite numbers.
    """
    return json.dumps(
        _normalize(data),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(data: Any) -> bytes:
    return canonicalize(data).encode("utf-8")


def b64url_decode(data: str) -> bytes:
    """Decode base64url, tolerating missing padding."""
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding
    return base64.urlsafe_b64decode(data)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_binary(value: str) -> bytes:
    """Decode a hex, base64 or base64url string.

    Hex is tried first since every hex string is also valid base64.

    Raises:
        ValueError: If the value is in none of the encodings.
    """
    text = value.strip()
    if text.startswith("0x"):
        text = text[2:]
    if text and len(text) % 2 == 0:
        try:
            return bytes.fromhex(text)
        except ValueError:
            pass
    try:
        if "-" in text or "_" in text:
            return b64url_decode(text)
        return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)
    except ValueError as e:
        raise ValueError(f"Value is neither hex nor base64: {e}") from e

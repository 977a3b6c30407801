"""
Wire format for values stored in Redis.

A value is JSON-encoded and prefixed with a one-byte marker:

    0x00 + json        stored as-is
    0x01 + lz4 frame   payload at or above the threshold that LZ4 shrinks

Dates become ISO strings and Decimals become floats, matching what the
dashboard serves over HTTP.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import lz4.frame


RAW = b"\x00"
LZ4 = b"\x01"


def _json_default(obj: Any):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def encode_value(value: Any, compress: bool = True, threshold: int = 1024) -> bytes:
    """Encode a cache value. Raises TypeError for values JSON cannot hold."""
    payload = json.dumps(value, default=_json_default, ensure_ascii=False).encode("utf-8")

    if compress and len(payload) >= threshold:
        packed = lz4.frame.compress(payload)
        if len(packed) < len(payload):
            return LZ4 + packed

    return RAW + payload


def decode_value(data: bytes) -> Any:
    """Decode bytes written by encode_value. Raises ValueError on an unknown marker."""
    if not data:
        return None

    marker, body = data[:1], data[1:]
    if marker == LZ4:
        body = lz4.frame.decompress(body)
    elif marker != RAW:
        raise ValueError(f"Unknown cache value marker: {marker!r}")

    return json.loads(body.decode("utf-8"))

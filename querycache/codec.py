"""
JSON codec for cached result rows.

Column types asyncpg hands back that JSON has no literal for (datetime,
date, time, timedelta, Decimal, UUID, bytes) are written as
{"__qc__": [type, value]} objects and restored on decode. Anything else
JSON cannot encode is stored as its str().
"""

import datetime
import json
from decimal import Decimal
from typing import Any, Callable, Dict, List
from uuid import UUID

TAG = "__qc__"

_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "datetime": datetime.datetime.fromisoformat,
    "date": datetime.date.fromisoformat,
    "time": datetime.time.fromisoformat,
    "timedelta": lambda parts: datetime.timedelta(days=parts[0], seconds=parts[1], microseconds=parts[2]),
    "decimal": Decimal,
    "uuid": UUID,
    "bytes": bytes.fromhex,
}


def _encode_value(value: Any) -> Any:
    # datetime before date: it is a subclass
    if isinstance(value, datetime.datetime):
        return {TAG: ["datetime", value.isoformat()]}
    if isinstance(value, datetime.date):
        return {TAG: ["date", value.isoformat()]}
    if isinstance(value, datetime.time):
        return {TAG: ["time", value.isoformat()]}
    if isinstance(value, datetime.timedelta):
        return {TAG: ["timedelta", [value.days, value.seconds, value.microseconds]]}
    if isinstance(value, Decimal):
        return {TAG: ["decimal", str(value)]}
    if isinstance(value, UUID):
        return {TAG: ["uuid", str(value)]}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {TAG: ["bytes", bytes(value).hex()]}
    return str(value)


def _decode_object(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and TAG in obj:
        tagged = obj[TAG]
        if isinstance(tagged, list) and len(tagged) == 2 and tagged[0] in _DECODERS:
            try:
                return _DECODERS[tagged[0]](tagged[1])
            except (ArithmeticError, IndexError, TypeError) as e:
                raise ValueError(f"Invalid {tagged[0]} value in cache entry") from e
    return obj


def encode_rows(rows: List[Dict[str, Any]]) -> bytes:
    """Serialize rows for the cache; raises TypeError/ValueError if they cannot be."""
    return json.dumps(rows, default=_encode_value, separators=(",", ":")).encode("utf-8")


def decode_rows(payload: bytes) -> Any:
    """Inverse of encode_rows; raises ValueError on undecodable payloads."""
    return json.loads(payload, object_hook=_decode_object)

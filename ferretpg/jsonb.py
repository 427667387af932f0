"""JSON encoding of documents stored in jsonb columns.

Documents are JSON objects with a "$k" member listing the key order, since jsonb
does not keep it. Values without a native JSON form are tagged objects:
ObjectId {"$o": hex}, float {"$f": number or "NaN"/"Infinity"/"-Infinity"},
datetime {"$d": milliseconds since the epoch}, Regex {"$r": pattern, "o": options},
bytes {"$b": base64, "s": subtype}.
"""

from __future__ import annotations

import base64
import json
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from ferretpg.common import ObjectId, Regex

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)
_KEYS = "$k"


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")


def _encode_float(value: float) -> dict[str, Any]:
    if math.isnan(value):
        return {"$f": "NaN"}
    if math.isinf(value):
        return {"$f": "Infinity" if value > 0 else "-Infinity"}
    return {"$f": value}


def _encode_datetime(value: datetime) -> dict[str, Any]:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return {"$d": (value - _EPOCH) // _MILLISECOND}


def _encode_object(document: dict[str, Any]) -> dict[str, Any]:
    encoded: dict[str, Any] = {_KEYS: []}
    for key, value in document.items():
        if not isinstance(key, str):
            raise TypeError(f"document keys must be strings, got {type(key).__name__}")
        if key == _KEYS:
            raise ValueError(f"{_KEYS!r} is a reserved key")
        encoded[_KEYS].append(key)
        encoded[key] = _encode_value(value)
    return encoded


def _encode_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return _encode_float(value)
    if isinstance(value, dict):
        return _encode_object(value)
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    if isinstance(value, ObjectId):
        return {"$o": value.data.hex()}
    if isinstance(value, Regex):
        return {"$r": value.pattern, "o": value.options}
    if isinstance(value, datetime):
        return _encode_datetime(value)
    if isinstance(value, (bytes, bytearray)):
        return {"$b": base64.b64encode(bytes(value)).decode("ascii"), "s": 0}
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


def _decode_object(obj: dict[str, Any]) -> Any:
    if _KEYS in obj:
        keys = obj[_KEYS]
        if not isinstance(keys, list) or set(keys) != set(obj) - {_KEYS} or len(set(keys)) != len(keys):
            raise ValueError("document keys do not match its key list")
        return {key: _decode_value(obj[key]) for key in keys}
    if "$o" in obj:
        return ObjectId(bytes.fromhex(obj["$o"]))
    if "$f" in obj:
        return float(obj["$f"])
    if "$d" in obj:
        return _EPOCH + obj["$d"] * _MILLISECOND
    if "$r" in obj:
        return Regex(obj["$r"], obj.get("o", ""))
    if "$b" in obj:
        return base64.b64decode(obj["$b"])
    raise ValueError(f"unknown object with keys {sorted(obj)}")


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _decode_object(value)
    if isinstance(value, list):
        return [_decode_value(item) for item in value]
    if isinstance(value, float):
        raise ValueError("untagged float in document")
    return value


def encode_document(document: dict[str, Any]) -> bytes:
    """Encode a document as jsonb-ready JSON bytes."""
    if not isinstance(document, dict):
        raise TypeError(f"expected a document, got {type(document).__name__}")
    return _dumps(_encode_object(document))


def decode_document(data: bytes | str | dict[str, Any]) -> dict[str, Any]:
    """Decode JSON bytes, text or an already parsed object into a document."""
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8")
    parsed = json.loads(data) if isinstance(data, str) else data
    if not isinstance(parsed, dict) or _KEYS not in parsed:
        raise ValueError("data is not an encoded document")
    return _decode_object(parsed)


def encode_object_id(object_id: ObjectId) -> bytes:
    """Encode an ObjectId the way it appears inside stored documents."""
    return _dumps(_encode_value(object_id))
"""JSON encoding that survives raw key material.

Credentials hold byte strings (key pairs, secrets). They are written as
``{"type": "Buffer", "data": "<base64>"}`` so records stay plain JSON, and
the older ``{"type": "Buffer", "data": [ints]}`` shape is still accepted
when reading legacy session files.
"""

import base64
import json
from typing import Any


def _encode(obj: Any) -> Any:
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"type": "Buffer", "data": base64.b64encode(bytes(obj)).decode("ascii")}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _decode(obj: dict) -> Any:
    if obj.get("type") != "Buffer" or set(obj) != {"type", "data"}:
        return obj
    data = obj["data"]
    if isinstance(data, str):
        return base64.b64decode(data)
    if isinstance(data, list):
        return bytes(data)
    return obj


def dumps(value: Any) -> str:
    return json.dumps(value, default=_encode, ensure_ascii=False)


def loads(text: str) -> Any:
    return json.loads(text, object_hook=_decode)

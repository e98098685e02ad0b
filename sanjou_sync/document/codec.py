"""
Binary encoding of deltas and snapshots.

A delta and a snapshot share one format: UTF-8 JSON
``{"v": 1, "ops": [...]}``. The remote record carries them base64
encoded.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable

from ..exceptions import FormatError
from .operations import Operation

FORMAT_VERSION = 1


def encode_operations(ops: Iterable[Operation]) -> bytes:
    payload = {"v": FORMAT_VERSION, "ops": [op.to_dict() for op in ops]}
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_operations(data: bytes) -> list[Operation]:
    """Decode a delta or snapshot.

    Raises:
        FormatError: If the bytes are not a valid encoded update
    """
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError("update", f"not valid JSON: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("ops"), list):
        raise FormatError("update", "expected an object with an 'ops' array")
    if payload.get("v") != FORMAT_VERSION:
        raise FormatError("update", f"unsupported version {payload.get('v')!r}")

    return [Operation.from_dict(raw) for raw in payload["ops"]]


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_base64(text: str) -> bytes:
    if not isinstance(text, str):
        raise FormatError("update", "expected a base64 string")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise FormatError("update", f"not valid base64: {e}") from e

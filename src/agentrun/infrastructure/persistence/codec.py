"""Payload encoding shared by the networked backends."""

import base64
import json
import zlib
from typing import Any

COMPRESSED_MARKER = "__zlib__"


def encode_payload(payload: dict[str, Any], compress: bool) -> dict[str, Any]:
    """Return a storable form of ``payload``, zlib-compressed when asked."""
    if not compress:
        return payload
    raw = json.dumps(payload, default=str).encode("utf-8")
    return {COMPRESSED_MARKER: base64.b64encode(zlib.compress(raw)).decode("ascii")}


def decode_payload(stored: dict[str, Any]) -> dict[str, Any]:
    """Inverse of encode_payload; uncompressed payloads pass through."""
    if COMPRESSED_MARKER not in stored:
        return stored
    raw = zlib.decompress(base64.b64decode(stored[COMPRESSED_MARKER]))
    return json.loads(raw.decode("utf-8"))

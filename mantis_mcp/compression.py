"""Serialization of tool results, compressing payloads too large to send as-is."""

import base64
import gzip
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

COMPRESSION_THRESHOLD = 100 * 1024  # 100KB


def to_pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def compress_payload(value: Any, threshold: int = COMPRESSION_THRESHOLD) -> str:
    """
    Serialize value to compact JSON, gzip+base64 encoding it when too large.

    Payloads of at most ``threshold`` UTF-8 bytes are returned unchanged.
    Larger ones are returned as the JSON envelope::

        {"compressed": true, "data": "<base64 gzip>",
         "originalSize": <bytes before>, "compressedSize": <base64 length>}
    """
    json_str = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    raw = json_str.encode("utf-8")
    if len(raw) <= threshold:
        return json_str

    data = base64.b64encode(gzip.compress(raw)).decode("ascii")
    logger.info(f"Compressed response from {len(raw)} to {len(data)} bytes")
    return json.dumps({
        "compressed": True,
        "data": data,
        "originalSize": len(raw),
        "compressedSize": len(data),
    })

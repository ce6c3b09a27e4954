"""Gate.io APIv4 request signing.

Canonical string (joined with ``\\n``)::

    METHOD
    /api/v4/futures/usdt/orders
    sorted&query=string
    hex(sha512(body))
    timestamp-seconds

signed with HMAC-SHA512 of the API secret, hex encoded. The timestamp is taken
fresh for every request; a signature is never cached.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return quote(str(value), safe="")


def build_query_string(params: Optional[Mapping[str, Any]]) -> str:
    """Sorted ``key=value`` pairs joined by ``&``; lists repeat the key."""
    if not params:
        return ""
    parts = []
    for key in sorted(params, key=lambda k: k.encode()):
        value = params[key]
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            parts.extend(f"{key}={_encode_value(v)}" for v in value)
        else:
            parts.append(f"{key}={_encode_value(value)}")
    return "&".join(parts)


def canonical_body(body: Optional[Mapping[str, Any]]) -> str:
    """JSON body exactly as it goes on the wire (no incidental whitespace)."""
    if body is None:
        return ""
    return json.dumps(body, separators=(",", ":"), sort_keys=True)


def hash_body(body: str) -> str:
    return hashlib.sha512(body.encode()).hexdigest()


def canonical_string(method: str, resource_path: str, query_string: str, body: str, timestamp: int) -> str:
    return "\n".join(
        [method.upper(), resource_path, query_string, hash_body(body), str(timestamp)]
    )


def sign(
    method: str,
    resource_path: str,
    query_string: str,
    body: str,
    timestamp: int,
    secret: str,
) -> str:
    """Return the hex HMAC-SHA512 signature for one request."""
    message = canonical_string(method, resource_path, query_string, body, timestamp)
    return hmac.new(secret.encode(), message.encode(), hashlib.sha512).hexdigest()


def current_timestamp() -> int:
    """Whole seconds since epoch (UTC)."""
    return int(time.time())


def signature_headers(
    api_key: str,
    secret: str,
    method: str,
    resource_path: str,
    query_string: str = "",
    body: str = "",
    timestamp: Optional[int] = None,
) -> Dict[str, str]:
    """Headers for one private call: KEY, Timestamp, SIGN."""
    ts = current_timestamp() if timestamp is None else timestamp
    return {
        "KEY": api_key,
        "Timestamp": str(ts),
        "SIGN": sign(method, resource_path, query_string, body, ts, secret),
    }


def redact(value: Optional[str], keep: int = 4) -> str:
    """Prefix-only rendering of a credential for logs."""
    if not value:
        return "<unset>"
    return f"{value[:keep]}***"

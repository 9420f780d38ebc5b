"""HMAC-SHA256 signing with TTL for stateless tokens.

Two shapes are supported:

* ``create_signed_token`` / ``verify_signed_token`` wrap a small JSON payload
  as ``{b64url_payload}.{expires_unix}.{hex_hmac}`` (browser sessions).
* ``sign_params`` / ``verify_params`` sign a flat parameter mapping that
  travels in the clear, e.g. a pending authorization echoed through a login
  redirect. The canonical form is the sorted, url-encoded parameters plus
  the expiry.

Rotating the secret key invalidates every outstanding token at once.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from collections.abc import Mapping
from urllib.parse import urlencode

__all__ = [
    "create_signed_token",
    "verify_signed_token",
    "sign_params",
    "verify_params",
]


def create_signed_token(key: str, payload: Mapping[str, str], ttl_seconds: int) -> str:
    """Issue a token carrying *payload* that expires after *ttl_seconds*."""
    body = base64.urlsafe_b64encode(
        json.dumps(dict(payload), separators=(",", ":"), sort_keys=True).encode()
    ).rstrip(b"=").decode()
    expires = str(int(time.time()) + ttl_seconds)
    sig = _sign(key, f"{body}.{expires}")
    return f"{body}.{expires}.{sig}"


def verify_signed_token(token: str, key: str) -> dict[str, str] | None:
    """Return the payload of a valid, unexpired token, else None."""
    parts = token.split(".")
    if len(parts) != 3:
        return None

    body, expires_str, sig = parts
    if not _not_expired(expires_str):
        return None
    if not hmac.compare_digest(sig, _sign(key, f"{body}.{expires_str}")):
        return None

    try:
        padded = body + "=" * (-len(body) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (ValueError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return {str(k): str(v) for k, v in payload.items()}


def sign_params(key: str, params: Mapping[str, str], ttl_seconds: int) -> tuple[str, str]:
    """Sign *params*; returns ``(expires, signature)`` to send alongside them."""
    expires = str(int(time.time()) + ttl_seconds)
    return expires, _sign(key, _canonical(params, expires))


def verify_params(key: str, params: Mapping[str, str], expires: str, signature: str) -> bool:
    """Check that *params* are exactly what was signed and not yet expired."""
    if not expires or not signature or not _not_expired(expires):
        return False
    return hmac.compare_digest(signature, _sign(key, _canonical(params, expires)))


def _canonical(params: Mapping[str, str], expires: str) -> str:
    items = sorted((k, v) for k, v in params.items() if v)
    return f"{urlencode(items)}|{expires}"


def _not_expired(expires_str: str) -> bool:
    try:
        expires = int(expires_str)
    except ValueError:
        return False
    return time.time() <= expires


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()

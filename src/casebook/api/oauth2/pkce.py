# PKCE (RFC 7636) helpers. Only the S256 method is supported.
# Created: 2026-03-02

from __future__ import annotations

import base64
import hashlib
import hmac


def compute_code_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(ASCII(code_verifier))) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(code_verifier: str, code_challenge: str, method: str = "S256") -> bool:
    """Check *code_verifier* against the stored challenge in constant time."""
    if method != "S256":
        return False
    try:
        expected = compute_code_challenge(code_verifier)
    except UnicodeEncodeError:
        # Verifiers are restricted to unreserved ASCII characters
        expected = ""
    return hmac.compare_digest(expected.encode(), code_challenge.encode("utf-8", "replace"))

# Pending authorization requests carried across the upstream login hop.
# Created: 2026-03-02
#
# The original /oauth/authorize parameters ride in the callback URL's query
# string next to an expiry (``exp``) and an HMAC (``sig``). The callback only
# accepts parameters that come back byte-for-byte unchanged, so no server-side
# session affinity is needed.

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass

from casebook.security.signing import sign_params, verify_params

SIGNATURE_PARAM = "sig"
EXPIRY_PARAM = "exp"


@dataclass(frozen=True)
class PendingAuthorization:
    """A validated /oauth/authorize request awaiting a logged-in user."""

    response_type: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str = "S256"
    state: str | None = None
    scope: str | None = None
    resource: str | None = None

    def params(self) -> dict[str, str]:
        """Non-empty request parameters, in a stable order."""
        return {k: v for k, v in asdict(self).items() if v}

    def to_signed_query(self, key: str, ttl_seconds: int) -> dict[str, str]:
        params = self.params()
        expires, signature = sign_params(key, params, ttl_seconds)
        params[EXPIRY_PARAM] = expires
        params[SIGNATURE_PARAM] = signature
        return params

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> PendingAuthorization:
        return cls(
            response_type=query.get("response_type") or "code",
            client_id=query.get("client_id") or "",
            redirect_uri=query.get("redirect_uri") or "",
            code_challenge=query.get("code_challenge") or "",
            code_challenge_method=query.get("code_challenge_method") or "S256",
            state=query.get("state") or None,
            scope=query.get("scope") or None,
            resource=query.get("resource") or None,
        )


def verify_pending(query: Mapping[str, str], key: str) -> PendingAuthorization | None:
    """Rebuild the pending request from *query* if its signature holds."""
    pending = PendingAuthorization.from_query(query)
    signed = {k: v for k, v in query.items() if k not in (SIGNATURE_PARAM, EXPIRY_PARAM)}
    if signed != pending.params():
        # Extra or defaulted parameters were not part of the signed request
        return None
    if not verify_params(
        key,
        signed,
        query.get(EXPIRY_PARAM, ""),
        query.get(SIGNATURE_PARAM, ""),
    ):
        return None
    return pending

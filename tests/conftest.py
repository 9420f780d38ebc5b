# Shared fixtures: isolated config dir, fixed signing key, fresh singletons.
# Created: 2026-03-02

import base64
import hashlib
import secrets

import pytest

from casebook.api.api_tokens import reset_api_token_manager
from casebook.api.oauth2.server import reset_oauth_server
from casebook.config import get_settings
from casebook.security.audit import reset_audit_logger

TEST_SECRET = "test-secret-key-0123456789"

_CLEARED_ENV = (
    "CASEBOOK_PUBLIC_BASE_URL",
    "CASEBOOK_DATA_DIR",
    "CASEBOOK_DEV_SESSION",
    "CASEBOOK_STRICT_CLIENT_VALIDATION",
    "CASEBOOK_OAUTH_DEFAULT_PERMISSION",
    "CASEBOOK_LINEAR_CLIENT_ID",
    "CASEBOOK_LINEAR_CLIENT_SECRET",
)


def _reset_singletons():
    get_settings.cache_clear()
    reset_oauth_server()
    reset_api_token_manager()
    reset_audit_logger()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("CASEBOOK_CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("CASEBOOK_SECRET_KEY", TEST_SECRET)
    for name in _CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    _reset_singletons()
    yield tmp_path
    _reset_singletons()


def make_pkce_pair():
    """Generate a PKCE code_verifier and S256 code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge

# Tests for the OAuth HTTP endpoints, end to end through the FastAPI app.
# Created: 2026-03-02

from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest
from conftest import make_pkce_pair
from fastapi.testclient import TestClient

from casebook.api.oauth2.storage import OAuthStorage
from casebook.api.serve import create_api_app
from casebook.api.sessions import SESSION_COOKIE, SessionUser, encode_session

BASE = "https://testserver"
REDIRECT = "http://localhost:8765/callback"


@pytest.fixture
def client():
    return TestClient(create_api_app(), follow_redirects=False)


def _login(client, user_id="user-1", organization_id="org-1"):
    client.cookies.set(
        SESSION_COOKIE, encode_session(SessionUser(user_id, organization_id, "Test User"))
    )


def _register(client, redirect_uris=None):
    resp = client.post(
        "/oauth/register",
        json={"client_name": "Test Client", "redirect_uris": redirect_uris or [REDIRECT]},
    )
    assert resp.status_code == 201
    return resp.json()["client_id"]


def _authorize_params(client_id, challenge, **extra):
    return {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": REDIRECT,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        **extra,
    }


def _query(location):
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


def _get_code(client, client_id, challenge, **extra):
    resp = client.get("/oauth/authorize", params=_authorize_params(client_id, challenge, **extra))
    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(REDIRECT)
    return _query(location)["code"]


def _token_pair(client):
    _login(client)
    client_id = _register(client)
    verifier, challenge = make_pkce_pair()
    code = _get_code(client, client_id, challenge, scope="mcp:read")
    resp = client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
        },
    )
    assert resp.status_code == 200
    return client_id, resp.json()


class TestFullFlow:
    def test_discovery_register_login_token_refresh(self, client):
        # 1. Discovery
        meta = client.get("/.well-known/oauth-authorization-server").json()
        assert meta["registration_endpoint"] == f"{BASE}/oauth/register"

        # 2. Registration
        client_id = _register(client)

        # 3. Authorization without a session goes to the login page
        verifier, challenge = make_pkce_pair()
        resp = client.get(
            "/oauth/authorize", params=_authorize_params(client_id, challenge, state="xyz")
        )
        assert resp.status_code == 302
        signin = resp.headers["location"]
        assert signin.startswith(f"{BASE}/api/auth/signin/linear?")
        callback_url = _query(signin)["callbackUrl"]
        assert callback_url.startswith(f"{BASE}/oauth/callback?")
        callback_query = _query(callback_url)
        assert callback_query["client_id"] == client_id
        assert "sig" in callback_query
        assert "exp" in callback_query

        # 4. After login the callback issues the code
        _login(client)
        resp = client.get(callback_url)
        assert resp.status_code == 302
        redirect = _query(resp.headers["location"])
        assert redirect["state"] == "xyz"
        code = redirect["code"]

        # 5. Token exchange (form-encoded)
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": client_id,
                "redirect_uri": REDIRECT,
                "code_verifier": verifier,
            },
        )
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["access-control-allow-origin"] == "*"
        tokens = resp.json()
        assert tokens["token_type"] == "Bearer"
        assert tokens["expires_in"] == 3600

        # 6. The access token works against a protected endpoint
        whoami = client.get(
            "/api/auth/whoami", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert whoami.status_code == 200
        assert whoami.json()["organization_id"] == "org-1"
        assert whoami.json()["client_id"] == client_id

        # 7. Refresh (JSON body) rotates the pair
        resp = client.post(
            "/oauth/token",
            json={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": client_id,
            },
        )
        assert resp.status_code == 200
        rotated = resp.json()
        assert rotated["refresh_token"] != tokens["refresh_token"]

        # 8. Replaying the old refresh token kills the whole family
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": client_id,
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"
        whoami = client.get(
            "/api/auth/whoami", headers={"Authorization": f"Bearer {rotated['access_token']}"}
        )
        assert whoami.status_code == 401


class TestAuthorizeEndpoint:
    def test_error_redirect_preserves_state(self, client):
        client_id = _register(client)
        resp = client.get(
            "/oauth/authorize",
            params={
                "response_type": "code",
                "client_id": client_id,
                "redirect_uri": REDIRECT,
                "state": "abc",
            },
        )
        assert resp.status_code == 302
        params = _query(resp.headers["location"])
        assert params["error"] == "invalid_request"
        assert params["state"] == "abc"
        assert "code_challenge" in params["error_description"]

    def test_unsupported_response_type(self, client):
        resp = client.get(
            "/oauth/authorize",
            params={"response_type": "token", "client_id": "c", "redirect_uri": REDIRECT},
        )
        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "unsupported_response_type"

    def test_missing_redirect_uri_returns_json(self, client):
        resp = client.get(
            "/oauth/authorize",
            params={"response_type": "code", "client_id": "c", "code_challenge": "x"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_plain_challenge_method(self, client):
        client_id = _register(client)
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(client_id, "x", code_challenge_method="plain"),
        )
        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "invalid_request"

    def test_logged_in_gets_code_directly(self, client):
        _login(client)
        client_id = _register(client)
        _, challenge = make_pkce_pair()
        assert _get_code(client, client_id, challenge)

    def test_unregistered_client_never_receives_code(self, client):
        _login(client, user_id="victim", organization_id="victim-org")
        _, challenge = make_pkce_pair()
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(
                "never-registered", challenge, redirect_uri="https://evil.example/steal"
            ),
        )
        assert resp.status_code == 400
        assert "location" not in resp.headers
        assert resp.json()["error"] == "invalid_request"

    def test_unregistered_redirect_uri_never_receives_code(self, client):
        _login(client)
        client_id = _register(client)
        _, challenge = make_pkce_pair()
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(
                client_id, challenge, redirect_uri="https://evil.example/steal"
            ),
        )
        assert resp.status_code == 400
        assert "location" not in resp.headers

    def test_redirect_uri_query_preserved(self, client):
        _login(client)
        redirect_uri = "http://localhost:8765/callback?session=1"
        client_id = _register(client, redirect_uris=[redirect_uri])
        _, challenge = make_pkce_pair()
        resp = client.get(
            "/oauth/authorize",
            params=_authorize_params(client_id, challenge, redirect_uri=redirect_uri),
        )
        params = _query(resp.headers["location"])
        assert params["session"] == "1"
        assert "code" in params


class TestCallbackEndpoint:
    def _signed_callback(self, client, state="s1"):
        client_id = _register(client)
        _, challenge = make_pkce_pair()
        resp = client.get(
            "/oauth/authorize", params=_authorize_params(client_id, challenge, state=state)
        )
        return _query(resp.headers["location"])["callbackUrl"]

    def test_missing_params(self, client):
        resp = client.get("/oauth/callback", params={"client_id": "c"})
        assert resp.status_code == 400
        assert resp.json()["error_description"] == "Missing required OAuth parameters"

    def test_tampered_redirect_uri_rejected(self, client):
        params = _query(self._signed_callback(client))
        params["redirect_uri"] = "http://localhost:6666/steal"
        _login(client)
        resp = client.get("/oauth/callback", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_no_session(self, client):
        resp = client.get(self._signed_callback(client))
        assert resp.status_code == 401
        assert resp.json()["error"] == "access_denied"


class TestTokenEndpoint:
    def test_missing_grant_type(self, client):
        resp = client.post("/oauth/token", data={"client_id": "c"})
        assert resp.status_code == 400
        assert resp.json()["error_description"] == "grant_type is required"

    def test_missing_client_id(self, client):
        resp = client.post("/oauth/token", data={"grant_type": "authorization_code"})
        assert resp.json()["error_description"] == "client_id is required"

    def test_unsupported_grant(self, client):
        resp = client.post(
            "/oauth/token", data={"grant_type": "client_credentials", "client_id": "c"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_grant_type"

    def test_missing_verifier(self, client):
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "client_id": "c",
                "code": "x",
                "redirect_uri": REDIRECT,
            },
        )
        assert resp.json()["error_description"] == "code_verifier is required (PKCE)"

    def test_invalid_json(self, client):
        resp = client.post(
            "/oauth/token", content=b"{oops", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_code_replay(self, client):
        _login(client)
        client_id = _register(client)
        verifier, challenge = make_pkce_pair()
        code = _get_code(client, client_id, challenge)
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
        }
        assert client.post("/oauth/token", data=body).status_code == 200
        replay = client.post("/oauth/token", data=body)
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_grant"

    def test_store_failure_is_retryable(self, client):
        _login(client)
        client_id = _register(client)
        verifier, challenge = make_pkce_pair()
        code = _get_code(client, client_id, challenge)
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": REDIRECT,
            "code_verifier": verifier,
        }
        with patch.object(OAuthStorage, "_save", side_effect=OSError("disk full")):
            failed = client.post("/oauth/token", data=body)
        assert failed.status_code == 500
        assert failed.json()["error"] == "server_error"

        resp = client.post("/oauth/token", data=body)
        assert resp.status_code == 200
        tokens = resp.json()

        refresh = {
            "grant_type": "refresh_token",
            "refresh_token": tokens["refresh_token"],
            "client_id": client_id,
        }
        with patch.object(OAuthStorage, "_save", side_effect=OSError("disk full")):
            assert client.post("/oauth/token", data=refresh).status_code == 500
        assert client.post("/oauth/token", data=refresh).status_code == 200

    def test_preflight(self, client):
        resp = client.options("/oauth/token")
        assert resp.status_code == 204
        assert "POST" in resp.headers["access-control-allow-methods"]


class TestRevokeEndpoint:
    def test_revoke_access_token(self, client):
        _, tokens = _token_pair(client)
        resp = client.post("/oauth/revoke", data={"token": tokens["access_token"]})
        assert resp.status_code == 200
        assert resp.json() == {}
        whoami = client.get(
            "/api/auth/whoami", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert whoami.status_code == 401

    def test_unknown_token_still_200(self, client):
        resp = client.post("/oauth/revoke", data={"token": "cbat_unknown"})
        assert resp.status_code == 200

    def test_missing_token(self, client):
        resp = client.post("/oauth/revoke", data={})
        assert resp.status_code == 400


class TestRegistrationEndpoint:
    def test_register(self, client):
        resp = client.post(
            "/oauth/register",
            json={"client_name": "Cursor", "redirect_uris": ["cursor://oauth/callback"]},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["client_id"].startswith("mcp_")
        assert body["client_name"] == "Cursor"
        assert body["token_endpoint_auth_method"] == "none"
        assert body["registration_client_uri"] == f"{BASE}/oauth/register/{body['client_id']}"
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_invalid_redirect(self, client):
        resp = client.post("/oauth/register", json={"redirect_uris": ["http://evil.example"]})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_redirect_uri"

    def test_invalid_json(self, client):
        resp = client.post(
            "/oauth/register", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_read_back(self, client):
        client_id = _register(client)
        resp = client.get(f"/oauth/register/{client_id}")
        assert resp.status_code == 200
        assert resp.json()["redirect_uris"] == [REDIRECT]

    def test_read_unknown(self, client):
        resp = client.get("/oauth/register/mcp_nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "invalid_client"

    def test_preflight(self, client):
        assert client.options("/oauth/register").status_code == 204


class TestDiscovery:
    def test_authorization_server_metadata(self, client):
        resp = client.get("/.well-known/oauth-authorization-server")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=3600"
        meta = resp.json()
        assert meta["issuer"] == BASE
        assert meta["authorization_endpoint"] == f"{BASE}/oauth/authorize"
        assert meta["token_endpoint"] == f"{BASE}/oauth/token"
        assert meta["code_challenge_methods_supported"] == ["S256"]
        assert meta["token_endpoint_auth_methods_supported"] == ["none"]
        assert set(meta["scopes_supported"]) == {"mcp:read", "mcp:write", "mcp:admin"}

    def test_protected_resource_metadata(self, client):
        meta = client.get("/.well-known/oauth-protected-resource").json()
        assert meta["resource"] == f"{BASE}/api/mcp/sse"
        assert meta["authorization_servers"] == [BASE]
        assert meta["bearer_methods_supported"] == ["header"]

    def test_localhost_uses_http(self, client):
        meta = client.get(
            "/.well-known/oauth-authorization-server", headers={"Host": "localhost:3000"}
        ).json()
        assert meta["issuer"] == "http://localhost:3000"

    def test_configured_base_url(self, client, monkeypatch):
        from casebook.config import get_settings

        monkeypatch.setenv("CASEBOOK_PUBLIC_BASE_URL", "https://casebook.example.com/")
        get_settings.cache_clear()
        meta = client.get("/.well-known/oauth-protected-resource").json()
        assert meta["authorization_servers"] == ["https://casebook.example.com"]

    def test_preflight(self, client):
        resp = client.options("/.well-known/oauth-protected-resource")
        assert resp.status_code == 204
        assert resp.headers["access-control-allow-methods"] == "GET, OPTIONS"


class TestOpenAPI:
    def test_schema_documents_oauth_models(self, client):
        resp = client.get("/api/openapi.json")
        assert resp.status_code == 200
        schemas = resp.json()["components"]["schemas"]
        assert "TokenResponse" in schemas
        assert "OAuthErrorResponse" in schemas

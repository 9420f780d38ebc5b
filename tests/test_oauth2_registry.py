# Tests for Dynamic Client Registration validation.
# Created: 2026-03-02

import pytest

from casebook.api.oauth2.registry import ClientRegistry, check_redirect_uri
from casebook.api.oauth2.storage import OAuthStorage


@pytest.fixture
def storage():
    return OAuthStorage()


@pytest.fixture
def registry(storage):
    return ClientRegistry(storage)


class TestRedirectUriRules:
    @pytest.mark.parametrize(
        "uri",
        [
            "http://localhost:8765/callback",
            "http://127.0.0.1/cb",
            "https://app.example.com/oauth/callback",
            "cursor://anysphere.cursor-retrieval/oauth/callback",
            "vscode://ms-vscode.mcp/callback",
        ],
    )
    def test_accepted(self, uri):
        assert check_redirect_uri(uri) is None

    @pytest.mark.parametrize(
        "uri",
        [
            "http://example.com/callback",
            "javascript:alert(1)",
            "data:text/html,hi",
            "file:///etc/passwd",
            "not a uri",
            "",
            "https://",
        ],
    )
    def test_rejected(self, uri):
        error = check_redirect_uri(uri)
        assert error is not None
        assert error.error == "invalid_redirect_uri"

    def test_non_string(self):
        assert check_redirect_uri(42).error == "invalid_redirect_uri"


class TestClientRegistry:
    def test_register_minimal(self, registry, storage):
        client, error = registry.register({"redirect_uris": ["http://localhost:3334/cb"]})
        assert error is None
        assert client.client_id.startswith("mcp_")
        assert len(client.client_id) == len("mcp_") + 32
        assert client.client_name == "MCP Client"
        assert client.grant_types == ["authorization_code", "refresh_token"]
        assert client.response_types == ["code"]
        assert client.token_endpoint_auth_method == "none"
        assert storage.get_client(client.client_id) is client

    def test_register_full(self, registry):
        client, error = registry.register(
            {
                "client_name": "Claude",
                "redirect_uris": ["https://claude.ai/api/mcp/auth_callback"],
                "grant_types": ["authorization_code"],
                "response_types": ["code"],
                "token_endpoint_auth_method": "none",
            }
        )
        assert error is None
        assert client.client_name == "Claude"
        assert client.grant_types == ["authorization_code"]

    def test_client_ids_unique(self, registry):
        ids = {
            registry.register({"redirect_uris": ["http://localhost/cb"]})[0].client_id
            for _ in range(20)
        }
        assert len(ids) == 20

    def test_missing_redirect_uris(self, registry):
        client, error = registry.register({"client_name": "x"})
        assert client is None
        assert error.error == "invalid_redirect_uri"

    def test_empty_redirect_uris(self, registry):
        _, error = registry.register({"redirect_uris": []})
        assert error.error == "invalid_redirect_uri"

    def test_one_bad_uri_fails_all(self, registry, storage):
        _, error = registry.register(
            {"redirect_uris": ["http://localhost/cb", "http://evil.example/cb"]}
        )
        assert error.error == "invalid_redirect_uri"
        assert storage.client_count() == 0

    def test_unsupported_grant_type(self, registry):
        _, error = registry.register(
            {"redirect_uris": ["http://localhost/cb"], "grant_types": ["client_credentials"]}
        )
        assert error.error == "invalid_client_metadata"
        assert "client_credentials" in error.description

    def test_unsupported_response_type(self, registry):
        _, error = registry.register(
            {"redirect_uris": ["http://localhost/cb"], "response_types": ["token"]}
        )
        assert error.error == "invalid_client_metadata"

    def test_redirect_checked_before_grant_types(self, registry):
        _, error = registry.register(
            {"redirect_uris": ["http://evil.example/cb"], "grant_types": ["implicit"]}
        )
        assert error.error == "invalid_redirect_uri"

    def test_get(self, registry):
        client, _ = registry.register({"redirect_uris": ["http://localhost/cb"]})
        assert registry.get(client.client_id) is client
        assert registry.get("mcp_unknown") is None


class TestPersistence:
    def test_clients_survive_reload(self, tmp_path):
        path = tmp_path / "oauth_store.json"
        client, _ = ClientRegistry(OAuthStorage(persist_path=path)).register(
            {"client_name": "Persisted", "redirect_uris": ["http://localhost/cb"]}
        )
        reloaded = OAuthStorage(persist_path=path).get_client(client.client_id)
        assert reloaded is not None
        assert reloaded.client_name == "Persisted"
        assert reloaded.redirect_uris == ["http://localhost/cb"]

    def test_store_file_is_private(self, tmp_path):
        path = tmp_path / "oauth_store.json"
        ClientRegistry(OAuthStorage(persist_path=path)).register(
            {"redirect_uris": ["http://localhost/cb"]}
        )
        assert path.stat().st_mode & 0o777 == 0o600

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "oauth_store.json"
        path.write_text("{not json")
        assert OAuthStorage(persist_path=path).client_count() == 0

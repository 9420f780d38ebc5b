# OAuth2 authorization server: registration, PKCE codes, token pairs.
# Created: 2026-03-02

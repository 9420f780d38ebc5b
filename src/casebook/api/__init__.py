# Casebook HTTP API: OAuth 2.0 authorization server and bearer validation.
# Created: 2026-03-02

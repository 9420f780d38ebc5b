# Security primitives: HMAC signing and the credential audit log.
# Created: 2026-03-02

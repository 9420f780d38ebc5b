# Pydantic request/response schemas for the HTTP routes.
# Created: 2026-03-02

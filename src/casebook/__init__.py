"""Casebook: OAuth 2.0 authorization server for MCP clients."""

__version__ = "0.4.0"

# Request body parsing for the OAuth endpoints.
# Created: 2026-03-02
#
# Parsing yields a value instead of raising so that routes branch explicitly
# on malformed input vs. well-formed-but-invalid input.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedBody:
    """A request body flattened to string values."""

    fields: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        value = self.fields.get(key)
        return value or None


@dataclass(frozen=True)
class BodyParseError:
    description: str


def _flatten(data: dict[str, Any]) -> dict[str, str]:
    flat: dict[str, str] = {}
    for key, value in data.items():
        if isinstance(value, bool):
            flat[key] = "true" if value else "false"
        elif isinstance(value, str | int | float):
            flat[key] = str(value)
    return flat


async def parse_json_body(request: Request) -> ParsedBody | BodyParseError:
    """Parse a JSON object body, keeping nested values in ``raw``."""
    try:
        data = json.loads(await request.body() or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return BodyParseError("Invalid JSON body")
    if not isinstance(data, dict):
        return BodyParseError("Request body must be a JSON object")
    return ParsedBody(fields=_flatten(data), raw=data)


async def parse_form_or_json(request: Request) -> ParsedBody | BodyParseError:
    """Parse JSON, form-urlencoded, or multipart bodies into a flat map."""
    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        return await parse_json_body(request)

    try:
        form = await request.form()
    except Exception as exc:  # malformed multipart raises parser-specific errors
        logger.debug("Failed to parse form body: %s", exc)
        return BodyParseError("Failed to parse request body")

    data = {key: value for key, value in form.items() if isinstance(value, str)}
    return ParsedBody(fields=data, raw=dict(data))

# Router aggregation.
# Created: 2026-03-02
#
# mount_routers(app) registers every router at the paths OAuth clients
# expect (/.well-known/*, /oauth/*) and the browser/API paths under /api/.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Imported lazily inside mount_routers() to avoid circular imports.
_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("casebook.api.routes.well_known", "router", "Discovery"),
    ("casebook.api.routes.registration", "router", "Registration"),
    ("casebook.api.routes.oauth2", "router", "OAuth2"),
    ("casebook.api.routes.auth", "router", "Auth"),
    ("casebook.api.routes.api_tokens", "router", "API Tokens"),
]


def mount_routers(app: FastAPI) -> None:
    """Mount all routers on *app*. Import failures propagate."""
    for module_path, attr_name, tag in _ROUTERS:
        mod = importlib.import_module(module_path)
        app.include_router(getattr(mod, attr_name))
        logger.debug("Mounted router: %s (%s)", module_path, tag)

"""HTTP server for ``casebook serve``.

Serves the discovery documents, the OAuth endpoints, the Linear login and
the API token routes. Endpoints that browser-based MCP clients call
cross-origin set their own ``Access-Control-*`` headers, so no CORS
middleware is installed.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI

    from casebook import __version__
    from casebook.api.deps import install_error_handlers
    from casebook.api.routes import mount_routers

    app = FastAPI(
        title="Casebook",
        description="OAuth 2.0 authorization server for MCP clients.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url=None,
        openapi_url="/api/openapi.json",
    )
    install_error_handlers(app)
    mount_routers(app)
    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 3000,
    dev: bool = False,
) -> None:
    """Start the server with uvicorn."""
    import uvicorn

    from casebook.config import get_settings

    settings = get_settings()
    display_host = "localhost" if host in ("127.0.0.1", "0.0.0.0") else host
    base = settings.public_base_url or f"http://{display_host}:{port}"
    logger.info("Casebook listening on %s:%d", host, port)
    logger.info("Authorization server metadata: %s/.well-known/oauth-authorization-server", base)
    if settings.dev_session:
        logger.warning("Development session is enabled: every request is signed in")
    if not settings.linear_client_id:
        logger.warning("CASEBOOK_LINEAR_CLIENT_ID is not set; Linear login is unavailable")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "casebook.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port, log_level=settings.log_level.lower())

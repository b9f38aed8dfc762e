"""Entry point for the Cafe Storefront service.

Creates the main FastAPI application, mounts the mock hosted backend when
enabled, configures logging, and starts the uvicorn server.
"""

from __future__ import annotations

import structlog
import uvicorn
from fastapi import FastAPI

from common import setup_logging

from cafe_storefront.api import create_app
from cafe_storefront.backend.client import BackendClient
from cafe_storefront.config import Settings, get_settings
from cafe_storefront.mock_backend.backend_app import MockBackendApp

logger = structlog.get_logger(__name__)

MOCK_BACKEND_PATH = "/mock-backend"


def build_app(settings: Settings | None = None, backend: BackendClient | None = None) -> FastAPI:
    """Construct the fully-configured application.

    When ``mock_backend_enabled`` is set the in-memory hosted backend is
    mounted at ``/mock-backend``; the default ``backend_url`` points there.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = create_app(settings, backend=backend)

    if settings.mock_backend_enabled:
        mock = MockBackendApp(table=settings.products_table, auto_confirm=True)
        app.mount(MOCK_BACKEND_PATH, mock.app, name="mock-backend")
        app.state.mock_backend = mock
        logger.info("mock_backend_mounted", path=MOCK_BACKEND_PATH, products=len(mock.products))

    logger.info(
        "application_ready",
        service=settings.service_name,
        version=settings.service_version,
        backend_url=settings.backend_url,
        mock_backend=settings.mock_backend_enabled,
    )
    return app


def main() -> None:
    """Launch the Cafe Storefront server."""
    settings = get_settings()
    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated instances.
"""

from __future__ import annotations

from fastapi import FastAPI

from throttle_store.api.routes import health_router, throttle_router
from throttle_store.core.config import settings
from throttle_store.core.exception_handlers import setup_exception_handlers
from throttle_store.core.logging import configure_logging
from throttle_store.core.middleware import request_id_middleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Throttle Store API",
        description=(
            "Distributed rate-limit counters backed by Redis. Exposes counter "
            "inspection and reset endpoints and a store health check."
        ),
        version="0.1.0",
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(throttle_router, prefix="/v1")
    app.include_router(health_router)

    return app

from __future__ import annotations

import logging

import redis
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from throttle_store.core.config import settings
from throttle_store.core.rate_limit import get_counter_store
from throttle_store.schemas.throttle import StoreHealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Does not touch the counter store.
    """

    return {"status": "ok"}


@router.get("/health/store", response_model=StoreHealthResponse)
def store_health_check():
    """Ping the counter store; responds 503 when it is unreachable."""

    backend = settings.store.backend.lower()
    try:
        get_counter_store().ping()
    except redis.RedisError as exc:
        logger.warning(
            "health.store_unavailable",
            extra={"backend": backend, "error_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "backend": backend},
        )

    return StoreHealthResponse(status="ok", backend=backend)

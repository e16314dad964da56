"""Pydantic schemas for throttle counter responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ThrottleCounterResponse(BaseModel):
    """Current state of one throttle counter."""

    throttle_id: str = Field(..., description="Identifier the counter was looked up by.")
    total_requests: int = Field(
        ..., ge=0, description="Requests counted in the current window."
    )
    timestamp: datetime = Field(..., description="When the current window was opened.")


class StoreHealthResponse(BaseModel):
    """Connectivity status of the counter store."""

    status: str = Field(..., description="'ok' when the store answered, 'unavailable' otherwise.")
    backend: str = Field(..., description="Configured store backend (redis or memory).")

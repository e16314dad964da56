"""Inspection endpoints for individual throttle counters.

Lets operators see where a requester stands in its window and reset it. Both
endpoints are themselves rate limited.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from throttle_store.core.rate_limit import enforce_rate_limit, get_counter_store
from throttle_store.schemas.throttle import ThrottleCounterResponse

router = APIRouter(tags=["Throttle"], dependencies=[Depends(enforce_rate_limit)])


@router.get("/throttle/{throttle_id}", response_model=ThrottleCounterResponse)
def read_counter(throttle_id: str) -> ThrottleCounterResponse:
    """Return the active counter for ``throttle_id``.

    Raises:
        HTTPException: 404 when no counter is stored (missing, expired or malformed).
    """
    counter = get_counter_store().get(throttle_id)
    if counter is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Counter not found")

    return ThrottleCounterResponse(
        throttle_id=throttle_id,
        total_requests=counter.total_requests,
        timestamp=counter.timestamp,
    )


@router.delete("/throttle/{throttle_id}", status_code=status.HTTP_204_NO_CONTENT)
def reset_counter(throttle_id: str) -> Response:
    """Delete the counter for ``throttle_id``. Succeeds even if none exists."""
    get_counter_store().remove(throttle_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

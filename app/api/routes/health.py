from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.rate_limit import RateLimiterRegistry, get_rate_limiters

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> JSONResponse:
    """Readiness check: the rate limit store must answer a ping.

    Limiters keep answering during a store outage (failure policy), so this
    is what tells load balancers and operators that protection is degraded.
    """

    backend = limiters.limiter.backend_name
    if await limiters.limiter.ping():
        return JSONResponse(status_code=200, content={"status": "ok", "rate_limit_backend": backend})
    return JSONResponse(
        status_code=503,
        content={"status": "degraded", "rate_limit_backend": backend},
    )

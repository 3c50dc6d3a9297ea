from __future__ import annotations

from fastapi import APIRouter, Request

from ..schemas import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    redis = request.app.state.redis
    cache = request.app.state.cache

    services = {"cache": "up", "rate_limiter": "memory"}
    if redis is not None:
        try:
            await redis.ping()
            services["rate_limiter"] = "redis"
        except Exception:
            services["rate_limiter"] = "down"

    status = "healthy" if services["rate_limiter"] != "down" else "degraded"
    return HealthResponse(status=status, services=services, cache_entries=cache.stats())

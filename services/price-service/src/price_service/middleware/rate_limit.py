from __future__ import annotations

from fastapi import Request

from ..config import Settings
from ..errors import RateLimited
from ..observability import observe_rate_limited
from ..rate_limit import RateDecision


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or ""
    ip = forwarded.split(",")[0].strip() or (request.headers.get("x-real-ip") or "").strip()
    if not ip and request.client:
        ip = request.client.host
    return f"ip:{ip or 'anon'}"


def rate_limit_dependency(settings: Settings):
    async def limiter(request: Request) -> RateDecision:
        rate_limiter = request.app.state.rate_limiter
        decision = await rate_limiter.allow(
            client_key(request),
            settings.rate_limit_requests,
            settings.rate_limit_window,
        )
        if not decision.allowed:
            observe_rate_limited("global")
            raise RateLimited(
                "Rate limit exceeded. Please try again shortly.",
                decision,
                retry_after=decision.retry_after(rate_limiter.clock()),
            )
        return decision

    return limiter

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .cache import CacheStore
from .config import Settings
from .errors import PriceServiceError, RateLimited
from .observability import configure_logging, metrics_response, observability_middleware
from .providers.base import ProviderId, build_provider_configs
from .providers.florida import FloridaClient
from .providers.goodrx import GoodRxClient
from .providers.http import CachedFetcher
from .providers.mock import MockClient
from .providers.nadac import NadacClient
from .providers.rxnorm import RxNormClient
from .rate_limit import InMemoryRateLimiter, RedisRateLimiter
from .redis_client import create_redis
from .resolver import NameResolver
from .routers import health as health_router
from .routers import prices as prices_router
from .schemas import ErrorResponse
from .services.aggregator import Aggregator


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.settings = settings
        app.state.redis = await create_redis(settings.redis_url)
        app.state.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            transport=transport,
        )
        app.state.cache = CacheStore(clock=clock)
        if app.state.redis is not None:
            app.state.rate_limiter = RedisRateLimiter(app.state.redis, clock=clock)
        else:
            app.state.rate_limiter = InMemoryRateLimiter(clock=clock)

        configs = build_provider_configs(settings)
        fetcher = CachedFetcher(
            app.state.http_client, app.state.cache, default_timeout=settings.http_timeout
        )
        providers = {
            ProviderId.GOODRX: GoodRxClient(
                fetcher,
                api_key=settings.goodrx_api_key,
                base_url=settings.goodrx_base_url,
                ttl_seconds=configs[ProviderId.GOODRX].cache_ttl,
            ),
            ProviderId.NADAC: NadacClient(
                fetcher,
                base_url=settings.nadac_base_url,
                ttl_seconds=configs[ProviderId.NADAC].cache_ttl,
            ),
            ProviderId.FLORIDA: FloridaClient(
                fetcher,
                url_template=settings.florida_export_url_template,
                test_file=settings.florida_test_path,
                ttl_seconds=configs[ProviderId.FLORIDA].cache_ttl,
                timeout=settings.florida_timeout,
            ),
            ProviderId.MOCK: MockClient(),
        }
        resolver = NameResolver(
            RxNormClient(
                fetcher,
                base_url=settings.rxnav_base_url,
                ttl_seconds=configs[ProviderId.RXNORM].cache_ttl,
            )
        )
        app.state.provider_configs = configs
        app.state.aggregator = Aggregator(
            resolver,
            providers,
            app.state.rate_limiter,
            configs,
            rate_window=settings.rate_limit_window,
        )
        try:
            yield
        finally:
            await app.state.http_client.aclose()
            if app.state.redis is not None:
                await app.state.redis.close()

    app = FastAPI(title="Price Service", version="0.1.0", lifespan=lifespan)
    app.middleware("http")(observability_middleware)
    app.add_exception_handler(PriceServiceError, price_service_error_handler)

    app.include_router(prices_router.router, prefix="/api")
    app.include_router(health_router.router)

    @app.get("/metrics")
    async def metrics():
        return metrics_response()

    return app


async def price_service_error_handler(request: Request, exc: PriceServiceError) -> JSONResponse:
    privacy = (request.query_params.get("privacy") or "on").strip().lower() or "on"
    if isinstance(exc, RateLimited):
        headers = prices_router.response_headers(privacy, exc.decision)
        headers["Retry-After"] = str(exc.retry_after)
        body = ErrorResponse(error=str(exc), remaining=0, reset_at=exc.decision.reset_at_ms)
    else:
        headers = prices_router.response_headers(privacy)
        body = ErrorResponse(error=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


configure_logging("price-service")
app = create_app()

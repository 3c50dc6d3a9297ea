from __future__ import annotations

import dataclasses
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest

from price_service.cache import CacheStore
from price_service.config import Settings
from price_service.providers.http import CachedFetcher


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Responder = Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Routes requests by host and path; anything unrouted answers 404."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Responder] = {}
        self.requests: List[httpx.Request] = []

    def add(self, host: str, path: str, response: Any) -> None:
        if callable(response):
            self.routes[(host, path)] = response
        else:
            self.routes[(host, path)] = lambda request: httpx.Response(200, json=response)

    def calls(self, host: str | None = None) -> List[httpx.Request]:
        if host is None:
            return list(self.requests)
        return [request for request in self.requests if request.url.host == host]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.url.host, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"error": "not found"})
        return responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "redis_url": None,
        "rate_limit_requests": 30,
        "rate_limit_window": 60,
        "goodrx_rate_limit_requests": 8,
        "cache_ttl_rxnorm": 86_400,
        "cache_ttl_nadac": 900,
        "cache_ttl_goodrx": 60,
        "cache_ttl_florida": 3600,
        "http_timeout": 10.0,
        "florida_timeout": 12.0,
        "rxnav_base_url": "https://rxnav.nlm.nih.gov/REST",
        "nadac_base_url": "https://healthdata.gov/resource/3tha-57c6.json",
        "goodrx_base_url": "https://api.goodrx.com/v2/price",
        "goodrx_api_key": None,
        "florida_export_url_template": None,
        "florida_test_file": None,
        "public_dir": "public",
    }
    values.update(overrides)
    return dataclasses.replace(Settings(), **values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def cache(clock: FakeClock) -> CacheStore:
    return CacheStore(clock=clock)


@pytest.fixture
def fetcher_factory(upstream: FakeUpstream, cache: CacheStore):
    """Builds a CachedFetcher; call it inside the coroutine that uses it."""

    def build() -> CachedFetcher:
        client = httpx.AsyncClient(transport=upstream.transport)
        return CachedFetcher(client, cache)

    return build

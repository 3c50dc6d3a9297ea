from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..cache import CacheStore


logger = logging.getLogger(__name__)


class CachedFetcher:
    """Timeout-bounded GETs against a shared client, memoized per (bucket, url)."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: CacheStore,
        default_timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._cache = cache
        self._default_timeout = default_timeout

    async def get_json(
        self,
        url: str,
        *,
        bucket: str,
        ttl_seconds: float,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        cached = self._cache.get(bucket, url)
        if cached is not None:
            return cached
        response = await self._get(url, bucket, headers, timeout)
        data = response.json()
        self._cache.put(bucket, url, data, ttl_seconds)
        return data

    async def get_bytes(
        self,
        url: str,
        *,
        bucket: str,
        ttl_seconds: float,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bytes:
        cached = self._cache.get(bucket, url)
        if cached is not None:
            return cached
        response = await self._get(url, bucket, headers, timeout)
        content = response.content
        self._cache.put(bucket, url, content, ttl_seconds)
        return content

    async def _get(
        self,
        url: str,
        bucket: str,
        headers: Mapping[str, str] | None,
        timeout: float | None,
    ) -> httpx.Response:
        try:
            response = await self._client.get(
                url,
                headers=dict(headers or {}),
                timeout=timeout or self._default_timeout,
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Upstream HTTP error bucket=%s status=%s url=%s body=%r",
                bucket,
                exc.response.status_code,
                url,
                _truncate(exc.response.text),
            )
            raise
        except httpx.TimeoutException as exc:
            logger.warning("Upstream timeout bucket=%s url=%s error=%s", bucket, url, str(exc))
            raise
        except httpx.RequestError as exc:
            logger.warning(
                "Upstream request error bucket=%s url=%s error_type=%s error=%s",
                bucket,
                url,
                type(exc).__name__,
                str(exc),
            )
            raise


def _truncate(value: str, limit: int = 500) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}...<truncated>"

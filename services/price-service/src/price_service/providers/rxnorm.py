from __future__ import annotations

from typing import Any, List
from urllib.parse import quote

import httpx

from .http import CachedFetcher


# RxNav search modes: 1 = normalized string match, 9 = approximate match
SEARCH_NORMALIZED = 1
SEARCH_APPROXIMATE = 9


class RxNormClient:
    def __init__(
        self,
        fetcher: CachedFetcher,
        base_url: str = "https://rxnav.nlm.nih.gov/REST",
        ttl_seconds: int = 86_400,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/")
        self._ttl_seconds = ttl_seconds

    def find_url(self, name: str, search: int) -> str:
        return str(
            httpx.URL(f"{self._base_url}/rxcui.json", params={"name": name, "search": str(search)})
        )

    def ndcs_url(self, rxcui: str) -> str:
        return f"{self._base_url}/rxcui/{quote(rxcui, safe='')}/ndcs.json"

    def name_url(self, rxcui: str) -> str:
        return f"{self._base_url}/rxcui/{quote(rxcui, safe='')}.json"

    async def find_rxcui(self, name: str, search: int) -> tuple[str | None, str]:
        url = self.find_url(name, search)
        data = await self._get(url, "rxnorm_find")
        ids = _dig(data, "idGroup", "rxnormId")
        if isinstance(ids, list) and ids:
            return str(ids[0]), url
        return None, url

    async def ndcs(self, rxcui: str) -> tuple[List[str], str]:
        url = self.ndcs_url(rxcui)
        data = await self._get(url, "rxnorm_ndcs")
        ndcs = _dig(data, "ndcGroup", "ndcList", "ndc")
        if not isinstance(ndcs, list):
            return [], url
        return [str(ndc) for ndc in ndcs], url

    async def display_name(self, rxcui: str) -> str | None:
        data = await self._get(self.name_url(rxcui), "rxnorm_name")
        name = _dig(data, "idGroup", "name")
        return name if isinstance(name, str) and name.strip() else None

    async def _get(self, url: str, bucket: str) -> Any:
        return await self._fetcher.get_json(url, bucket=bucket, ttl_seconds=self._ttl_seconds)


def _dig(data: Any, *path: str) -> Any:
    # RxNav answers with either a top-level payload or one wrapped in "rxnormdata"
    if isinstance(data, dict) and isinstance(data.get("rxnormdata"), dict):
        data = data["rxnormdata"]
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data

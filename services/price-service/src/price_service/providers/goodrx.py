from __future__ import annotations

from typing import Any, List

import httpx

from .base import (
    Ok,
    PriceProvider,
    ProviderId,
    ProviderQuery,
    ProviderResult,
    Unconfigured,
    coerce_price,
    coerce_str,
    derive_chain,
)
from .http import CachedFetcher
from ..schemas import PriceQuote


GOODRX_MAX_RESULTS = 10
GOODRX_NOTE = "Consumer-facing discount price (volatile; do not store long-term)."


class GoodRxClient(PriceProvider):
    provider_id = ProviderId.GOODRX

    def __init__(
        self,
        fetcher: CachedFetcher,
        api_key: str | None,
        base_url: str = "https://api.goodrx.com/v2/price",
        ttl_seconds: int = 60,
    ) -> None:
        self._fetcher = fetcher
        self._api_key = api_key
        self._base_url = base_url
        self._ttl_seconds = ttl_seconds

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _fetch(self, query: ProviderQuery) -> ProviderResult:
        if not self._api_key:
            return Unconfigured("no GoodRx API key is configured on this server")

        params = {
            "name": query.drug,
            "quantity": str(query.qty),
            "limit": str(min(max(query.limit, 1), GOODRX_MAX_RESULTS)),
        }
        if query.zip:
            params["zip"] = query.zip
        url = str(httpx.URL(self._base_url, params=params))
        headers = {"x-api-key": self._api_key, "accept": "application/json"}

        data = await self._fetcher.get_json(
            url, bucket="goodrx", ttl_seconds=self._ttl_seconds, headers=headers
        )
        return Ok(rows=self._map_rows(_extract_items(data), query, url), source_url=url)

    def _map_rows(self, items: List[Any], query: ProviderQuery, url: str) -> List[PriceQuote]:
        rows: List[PriceQuote] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            unit = coerce_price(
                _first_present(item, "price_per_unit", "unit_price", "price")
            )
            if unit is None:
                continue
            total = coerce_price(item.get("total_price"))
            if total is None:
                total = unit * query.qty
            pharmacy = coerce_str(item.get("pharmacy_name")) or coerce_str(item.get("pharmacy"))
            rows.append(
                PriceQuote(
                    drug=(
                        coerce_str(item.get("generic_name"))
                        or coerce_str(item.get("name"))
                        or query.drug
                    ).lower(),
                    form=coerce_str(item.get("form")),
                    strength=coerce_str(item.get("strength")),
                    qty=query.qty,
                    unit_price=unit,
                    total_price=total,
                    pharmacy=pharmacy,
                    chain=derive_chain(pharmacy),
                    pricing_unit=coerce_str(item.get("pricing_unit")),
                    package_size=coerce_str(item.get("package_size")),
                    ndc=coerce_str(item.get("ndc")),
                    zip=query.zip,
                    source=url,
                    dataset=self.descriptor.row_label,
                    effective_date=coerce_str(item.get("effective_date"))
                    or coerce_str(item.get("updated_at")),
                    notes=GOODRX_NOTE,
                )
            )
        return rows


def _extract_items(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("results", "prices"):
            value = data.get(key)
            if isinstance(value, list):
                return value
    return []


def _first_present(item: dict, *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None

from __future__ import annotations

from typing import Any, List

import httpx

from .base import Ok, PriceProvider, ProviderId, ProviderQuery, ProviderResult, coerce_price, coerce_str
from .http import CachedFetcher
from ..schemas import PriceQuote


NADAC_MAX_PAGE_SIZE = 50
NADAC_NOTE = "NADAC is an acquisition cost benchmark (not retail price)."


class NadacClient(PriceProvider):
    """National Average Drug Acquisition Cost rows from the HealthData.gov Socrata API."""

    provider_id = ProviderId.NADAC

    def __init__(
        self,
        fetcher: CachedFetcher,
        base_url: str = "https://healthdata.gov/resource/3tha-57c6.json",
        ttl_seconds: int = 900,
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url
        self._ttl_seconds = ttl_seconds

    def build_url(self, drug: str, limit: int) -> str:
        needle = drug.replace("'", "''")
        params = {
            "$select": "ndc, generic_name, ndc_description, effective_date, "
            "nadac_per_unit, pricing_unit, package_size",
            "$where": f"upper(generic_name) like upper('%{needle}%') "
            f"OR upper(ndc_description) like upper('%{needle}%')",
            "$order": "effective_date DESC",
            "$limit": str(min(max(limit, 1), NADAC_MAX_PAGE_SIZE)),
        }
        return str(httpx.URL(self._base_url, params=params))

    async def _fetch(self, query: ProviderQuery) -> ProviderResult:
        url = self.build_url(query.drug, query.limit)
        data = await self._fetcher.get_json(url, bucket="nadac", ttl_seconds=self._ttl_seconds)
        if not isinstance(data, list):
            raise ValueError("NADAC payload is not a list")
        return Ok(rows=self._map_rows(data, query.qty, url), source_url=url)

    def _map_rows(self, data: List[Any], qty: int, url: str) -> List[PriceQuote]:
        rows: List[PriceQuote] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            unit = coerce_price(item.get("nadac_per_unit"))
            if unit is None:
                continue
            rows.append(
                PriceQuote(
                    drug=(coerce_str(item.get("generic_name")) or "").lower(),
                    qty=qty,
                    unit_price=unit,
                    total_price=unit * qty,
                    pricing_unit=coerce_str(item.get("pricing_unit")),
                    package_size=coerce_str(item.get("package_size")),
                    ndc=coerce_str(item.get("ndc")),
                    source=url,
                    dataset=self.descriptor.row_label,
                    effective_date=coerce_str(item.get("effective_date")),
                    notes=NADAC_NOTE,
                )
            )
        return rows

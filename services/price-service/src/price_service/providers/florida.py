from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List
from urllib.parse import quote

from .base import (
    Err,
    Ok,
    PriceProvider,
    ProviderId,
    ProviderQuery,
    ProviderResult,
    Unconfigured,
    coerce_price,
    derive_chain,
)
from .http import CachedFetcher
from .tabular import pick, read_table
from ..schemas import PriceQuote


BUNDLED_SAMPLE = Path(__file__).resolve().parent.parent / "data" / "florida-sample.csv"
DEFAULT_COUNTY = "All Counties"
FLORIDA_NOTE = "Retail 'usual & customary' price from paid-claims-derived data; updated monthly."

PHARMACY_COLUMNS = ("Pharmacy", "Pharmacy Name", "Name")
DRUG_COLUMNS = ("Drug Name", "Drug")
QUANTITY_COLUMNS = ("Quantity", "Qty")
PRICE_COLUMNS = ("Price", "Usual and Customary Price", "U&C")
CITY_COLUMNS = ("City",)
ADDRESS_COLUMNS = ("Address", "Street")
NDC_COLUMNS = ("NDC", "NDC Code")


class FloridaClient(PriceProvider):
    """MyFloridaRX usual-and-customary prices.

    Sources are tried in order: the live export URL template, a developer
    sample file under the public directory, then the bundled sample CSV.
    """

    provider_id = ProviderId.FLORIDA

    def __init__(
        self,
        fetcher: CachedFetcher,
        url_template: str | None = None,
        test_file: Path | None = None,
        fallback_file: Path | None = BUNDLED_SAMPLE,
        ttl_seconds: int = 3600,
        timeout: float = 12.0,
    ) -> None:
        self._fetcher = fetcher
        self._url_template = url_template
        self._test_file = test_file
        self._fallback_file = fallback_file
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout

    def build_url(self, drug: str, county: str | None) -> str:
        template = self._url_template or ""
        return template.replace("{drug}", quote(drug, safe="")).replace(
            "{county}", quote(county or DEFAULT_COUNTY, safe="")
        )

    async def _fetch(self, query: ProviderQuery) -> ProviderResult:
        if self._url_template:
            url = self.build_url(query.drug, query.county)
            content = await self._fetcher.get_bytes(
                url, bucket="florida", ttl_seconds=self._ttl_seconds, timeout=self._timeout
            )
            rows = await asyncio.to_thread(self._parse, content, url, query, False)
            return Ok(rows=rows, source_url=url)

        if self._test_file is not None:
            source = f"/{self._test_file.name}"
            if not self._test_file.is_file():
                return Err(
                    f"the configured sample file {source} is missing (check FL_MYRX_TEST_XLS)",
                    source_url=source,
                )
            return await self._read_file(self._test_file, source, query)

        if self._fallback_file is not None and self._fallback_file.is_file():
            return await self._read_file(self._fallback_file, f"/{self._fallback_file.name}", query)

        return Unconfigured("no Florida export URL or sample file is configured")

    async def _read_file(self, path: Path, source: str, query: ProviderQuery) -> ProviderResult:
        content = await asyncio.to_thread(path.read_bytes)
        rows = await asyncio.to_thread(self._parse, content, source, query, True)
        return Ok(rows=rows, source_url=source)

    def _parse(
        self,
        content: bytes,
        source: str,
        query: ProviderQuery,
        filter_drug: bool,
    ) -> List[PriceQuote]:
        needle = query.drug.lower()
        rows: List[PriceQuote] = []
        for record in read_table(content):
            if len(rows) >= query.limit:
                break
            row = self._map_record(record, source, query)
            if row is None:
                continue
            if filter_drug and needle not in row.drug:
                continue
            rows.append(row)
        return rows

    def _map_record(
        self,
        record: Dict[str, str],
        source: str,
        query: ProviderQuery,
    ) -> PriceQuote | None:
        price = _parse_money(pick(record, PRICE_COLUMNS))
        if price is None:
            return None
        quantity = coerce_price(pick(record, QUANTITY_COLUMNS, "30")) or 1.0
        unit = price / quantity
        pharmacy = pick(record, PHARMACY_COLUMNS)
        return PriceQuote(
            drug=(pick(record, DRUG_COLUMNS) or query.drug).lower(),
            qty=query.qty,
            unit_price=unit,
            total_price=unit * query.qty,
            pharmacy=pharmacy,
            chain=derive_chain(pharmacy),
            ndc=pick(record, NDC_COLUMNS),
            pricing_unit="per unit",
            address=pick(record, ADDRESS_COLUMNS),
            city=pick(record, CITY_COLUMNS),
            state="FL",
            source=source,
            dataset=self.descriptor.row_label,
            notes=FLORIDA_NOTE,
        )


def _parse_money(value: str | None) -> float | None:
    if value is None:
        return None
    return coerce_price(value.replace("$", "").replace(",", "").strip())

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from .base import Ok, PriceProvider, ProviderId, ProviderQuery, ProviderResult, derive_chain
from ..schemas import PriceQuote


@dataclass(frozen=True)
class MockFixture:
    drug: str
    form: str
    strength: str
    qty: int
    total_price: float
    pharmacy: str
    zip_coverage: Tuple[str, ...]
    source: str
    last_updated: str


MOCK_FIXTURES: Tuple[MockFixture, ...] = (
    MockFixture(
        drug="atorvastatin",
        form="tablet",
        strength="20 mg",
        qty=30,
        total_price=9.99,
        pharmacy="Walmart (Mock)",
        zip_coverage=("85001", "85002", "85281", "99999"),
        source="mock://walmart/atorvastatin-20mg-30",
        last_updated="2025-09-01T00:00:00Z",
    ),
    MockFixture(
        drug="atorvastatin",
        form="tablet",
        strength="10 mg",
        qty=30,
        total_price=11.49,
        pharmacy="CVS (Mock)",
        zip_coverage=("85001", "85018", "85281"),
        source="mock://cvs/atorvastatin-10mg-30",
        last_updated="2025-08-27T00:00:00Z",
    ),
    MockFixture(
        drug="metformin",
        form="tablet",
        strength="500 mg",
        qty=60,
        total_price=6.5,
        pharmacy="Costco (Mock)",
        zip_coverage=("85001", "85281"),
        source="mock://costco/metformin-500mg-60",
        last_updated="2025-09-05T00:00:00Z",
    ),
)


class MockClient(PriceProvider):
    """In-memory demonstration prices, rescaled to the requested quantity."""

    provider_id = ProviderId.MOCK

    def __init__(self, fixtures: Tuple[MockFixture, ...] = MOCK_FIXTURES) -> None:
        self._fixtures = fixtures

    async def _fetch(self, query: ProviderQuery) -> ProviderResult:
        needle = query.drug.lower()
        rows: List[PriceQuote] = []
        for fixture in self._fixtures:
            if needle not in fixture.drug.lower():
                continue
            if query.zip and query.zip not in fixture.zip_coverage:
                continue
            unit = fixture.total_price / fixture.qty
            rows.append(
                PriceQuote(
                    drug=fixture.drug,
                    form=fixture.form,
                    strength=fixture.strength,
                    qty=query.qty,
                    unit_price=unit,
                    total_price=unit * query.qty,
                    pharmacy=fixture.pharmacy,
                    chain=derive_chain(fixture.pharmacy),
                    zip=query.zip,
                    source=fixture.source,
                    dataset=self.descriptor.row_label,
                    last_updated=fixture.last_updated,
                )
            )
        return Ok(rows=rows, source_url="mock://fixtures")

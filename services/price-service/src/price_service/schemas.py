from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


DedupeMode = Literal["none", "chain", "pharmacy"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PriceQuote(_CamelModel):
    model_config = ConfigDict(frozen=True)

    drug: str
    form: str | None = None
    strength: str | None = None
    qty: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, allow_inf_nan=False)
    total_price: float = Field(..., ge=0, allow_inf_nan=False)
    pricing_unit: str | None = None
    package_size: str | None = None
    pharmacy: str | None = None
    chain: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    ndc: str | None = None
    zip: str | None = None
    source: str
    dataset: str
    effective_date: str | None = None
    last_updated: str | None = None
    notes: str | None = None

    @field_validator("unit_price", "total_price")
    @classmethod
    def _round_price(cls, value: float) -> float:
        return round(value, 4)


class PriceQuery(BaseModel):
    """Validated, clamped request inputs."""

    model_config = ConfigDict(frozen=True)

    drug: str = Field(..., min_length=1)
    zip: str | None = Field(None, pattern=r"^\d{5}$")
    qty: int = Field(30, ge=1, le=5000)
    limit: int = Field(25, ge=1, le=50)
    include_mock: bool = True
    include_nadac: bool = True
    include_rxnorm: bool = True
    include_goodrx: bool = False
    include_florida: bool = False
    florida_county: str | None = None
    chains: List[str] = Field(default_factory=list)
    form: str | None = None
    strength: str | None = None
    dedupe: DedupeMode = "none"
    privacy: str = "on"


class PriceInputs(_CamelModel):
    drug: str
    normalized_drug: str
    zip: str | None = None
    qty: int
    limit: int
    include_good_rx: bool
    include_nadac: bool
    include_mock: bool
    include_rx_norm: bool
    include_florida: bool
    fl_county: str | None = None
    chains: str | None = None
    dedupe: DedupeMode
    form: str | None = None
    strength: str | None = None


class DatasetInfo(_CamelModel):
    name: str
    homepage: str | None = None
    info: str | None = None


class ResolutionInfo(_CamelModel):
    rxcui: str | None = None
    canonical_name: str | None = None
    ndc_count: int = 0
    source_url: str | None = None
    ndcs_source_url: str | None = None
    match_mode: str | None = None


class NadacBaseline(_CamelModel):
    unit_min: float | None = None
    note: str = "Minimum NADAC per-unit for the resolved drug form/strength."


class FloridaSource(_CamelModel):
    url: str
    count: int


class Transparency(_CamelModel):
    attempted: List[str] = Field(default_factory=list)
    datasets: List[DatasetInfo] = Field(default_factory=list)
    caveats: List[str] = Field(default_factory=list)
    resolution: ResolutionInfo | None = None
    nadac_baseline: NadacBaseline = Field(default_factory=NadacBaseline)
    florida: FloridaSource | None = None


class ChainSummary(_CamelModel):
    chain: str
    count: int
    min_total: float


class PriceResponse(_CamelModel):
    ok: bool = True
    count: int
    privacy: str
    inputs: PriceInputs
    results: List[PriceQuote]
    group_summary: List[ChainSummary] = Field(default_factory=list)
    transparency: Transparency


class ErrorResponse(_CamelModel):
    ok: bool = False
    error: str
    remaining: int | None = None
    reset_at: int | None = None


class HealthResponse(BaseModel):
    status: str
    services: dict
    cache_entries: dict[str, int] = Field(default_factory=dict)
    version: str = "1.0.0"

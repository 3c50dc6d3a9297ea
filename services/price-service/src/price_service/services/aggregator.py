from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

from ..observability import observe_rate_limited
from ..providers.base import (
    DESCRIPTORS,
    Err,
    Ok,
    PriceProvider,
    ProviderConfig,
    ProviderId,
    ProviderQuery,
    ProviderResult,
    Unconfigured,
)
from ..rate_limit import RateLimiter
from ..resolver import NameResolver
from ..schemas import (
    ChainSummary,
    DatasetInfo,
    FloridaSource,
    NadacBaseline,
    PriceQuery,
    PriceQuote,
    Transparency,
)


logger = logging.getLogger(__name__)

# fan-out order; ties in the final sort keep this order
PROVIDER_ORDER = (ProviderId.GOODRX, ProviderId.NADAC, ProviderId.FLORIDA, ProviderId.MOCK)


@dataclass
class AggregateResult:
    normalized_drug: str
    rows: List[PriceQuote]
    group_summary: List[ChainSummary]
    transparency: Transparency


class Aggregator:
    def __init__(
        self,
        resolver: NameResolver,
        providers: Mapping[ProviderId, PriceProvider],
        rate_limiter: RateLimiter,
        configs: Mapping[ProviderId, ProviderConfig],
        rate_window: float,
    ) -> None:
        self._resolver = resolver
        self._providers = providers
        self._rate_limiter = rate_limiter
        self._configs = configs
        self._rate_window = rate_window

    async def run(self, query: PriceQuery, client_key: str) -> AggregateResult:
        drug = query.drug.lower()
        transparency = Transparency()

        if query.include_rxnorm:
            resolved = await self._resolver.resolve(drug)
            transparency.resolution = resolved.to_info()
            if resolved.name:
                drug = resolved.name.lower()

        selected = await self._select_providers(query, client_key, transparency)
        provider_query = ProviderQuery(
            drug=drug,
            qty=query.qty,
            limit=query.limit,
            zip=query.zip,
            county=query.florida_county,
        )
        outcomes = await asyncio.gather(
            *(self._providers[provider_id].fetch(provider_query) for provider_id in selected),
            return_exceptions=True,
        )

        rows: List[PriceQuote] = []
        for provider_id, outcome in zip(selected, outcomes):
            if isinstance(outcome, BaseException):
                outcome = _unexpected_failure(provider_id, outcome)
            rows.extend(_record_outcome(provider_id, outcome, transparency))

        transparency.nadac_baseline = NadacBaseline(unit_min=_nadac_unit_min(rows))

        rows = _apply_filters(rows, query, transparency)
        if query.dedupe != "none":
            rows = dedupe_rows(rows, query.dedupe)
            transparency.caveats.append(
                f"Deduped by {query.dedupe}; kept the cheapest per {query.dedupe}."
            )
        results = sort_rows(rows)[: query.limit]

        logger.info(
            "price_aggregation_completed",
            extra={"drug": drug, "rows": len(results), "attempted": list(transparency.attempted)},
        )
        return AggregateResult(
            normalized_drug=drug,
            rows=results,
            group_summary=summarize_chains(results),
            transparency=transparency,
        )

    async def _select_providers(
        self,
        query: PriceQuery,
        client_key: str,
        transparency: Transparency,
    ) -> List[ProviderId]:
        enabled = {
            ProviderId.GOODRX: query.include_goodrx,
            ProviderId.NADAC: query.include_nadac,
            ProviderId.FLORIDA: query.include_florida,
            ProviderId.MOCK: query.include_mock,
        }
        selected: List[ProviderId] = []
        for provider_id in PROVIDER_ORDER:
            if not enabled[provider_id] or provider_id not in self._providers:
                continue
            config = self._configs.get(provider_id)
            if config is not None and config.rate_limit is not None and config.credential_present:
                decision = await self._rate_limiter.allow(
                    f"{client_key}|{provider_id.name.lower()}",
                    config.rate_limit,
                    self._rate_window,
                )
                if not decision.allowed:
                    observe_rate_limited(provider_id.name.lower())
                    transparency.caveats.append(
                        f"{provider_id.value} calls throttled for this client to protect "
                        "upstream limits; its prices are omitted from this response."
                    )
                    continue
            transparency.attempted.append(provider_id.value)
            selected.append(provider_id)
        return selected


def _unexpected_failure(provider_id: ProviderId, exc: BaseException) -> Err:
    if not isinstance(exc, Exception):
        raise exc
    logger.warning(
        "Provider failed unexpectedly provider=%s error_type=%s error=%s",
        provider_id.value,
        type(exc).__name__,
        str(exc),
    )
    return Err("the provider failed unexpectedly")


def _record_outcome(
    provider_id: ProviderId,
    outcome: ProviderResult,
    transparency: Transparency,
) -> List[PriceQuote]:
    descriptor = DESCRIPTORS[provider_id]
    name = provider_id.value
    if provider_id is ProviderId.FLORIDA:
        source_url = "" if isinstance(outcome, Unconfigured) else outcome.source_url
        count = len(outcome.rows) if isinstance(outcome, Ok) else 0
        transparency.florida = FloridaSource(url=source_url, count=count)

    if isinstance(outcome, Unconfigured):
        transparency.caveats.append(
            f"{name} was skipped because {outcome.reason}; this is a configuration gap, "
            "not an upstream failure."
        )
        return []
    if isinstance(outcome, Err):
        transparency.caveats.append(f"{name} data is unavailable because {outcome.reason}.")
        return []
    if not outcome.rows:
        transparency.caveats.append(f"{name} returned no rows for this query.")
        return []

    transparency.datasets.append(
        DatasetInfo(name=descriptor.dataset_name, homepage=descriptor.homepage, info=descriptor.info)
    )
    if descriptor.inclusion_caveat:
        transparency.caveats.append(descriptor.inclusion_caveat)
    return list(outcome.rows)


def _nadac_unit_min(rows: Iterable[PriceQuote]) -> float | None:
    label = DESCRIPTORS[ProviderId.NADAC].row_label
    prices = [row.unit_price for row in rows if row.dataset == label]
    return min(prices) if prices else None


def _apply_filters(
    rows: List[PriceQuote],
    query: PriceQuery,
    transparency: Transparency,
) -> List[PriceQuote]:
    if query.chains:
        allowed = set(query.chains)
        rows = [row for row in rows if row.chain and row.chain in allowed]
        transparency.caveats.append(
            "Chain filter applied; non-chain datasets without a pharmacy (e.g., NADAC) are omitted."
        )
    if query.form:
        rows = [row for row in rows if query.form in (row.form or "").lower()]
        transparency.caveats.append(f'Form filter applied: "{query.form}".')
    if query.strength:
        rows = [row for row in rows if query.strength in (row.strength or "").lower()]
        transparency.caveats.append(f'Strength filter applied: "{query.strength}".')
    return rows


def dedupe_rows(rows: Iterable[PriceQuote], mode: str) -> List[PriceQuote]:
    picked: Dict[str, PriceQuote] = {}
    for row in rows:
        if mode == "chain":
            key = row.chain or row.pharmacy or "unknown"
        else:
            key = row.pharmacy or "unknown"
        previous = picked.get(key)
        if previous is None or row.total_price < previous.total_price:
            picked[key] = row
    return list(picked.values())


def sort_rows(rows: Iterable[PriceQuote]) -> List[PriceQuote]:
    return sorted(rows, key=lambda row: row.total_price)


def summarize_chains(rows: Iterable[PriceQuote]) -> List[ChainSummary]:
    counts: Dict[str, int] = {}
    minimums: Dict[str, float] = {}
    for row in rows:
        if not row.chain:
            continue
        counts[row.chain] = counts.get(row.chain, 0) + 1
        minimums[row.chain] = min(minimums.get(row.chain, row.total_price), row.total_price)
    return [
        ChainSummary(chain=chain, count=count, min_total=round(minimums[chain], 4))
        for chain, count in counts.items()
    ]

from __future__ import annotations

import re
from typing import Mapping

from fastapi import APIRouter, Request, Response

from ..errors import InputError
from ..middleware.rate_limit import client_key, rate_limit_dependency
from ..observability import set_query_drug
from ..providers.base import ProviderConfig, ProviderId
from ..rate_limit import RateDecision
from ..schemas import PriceInputs, PriceQuery, PriceResponse


router = APIRouter(prefix="/prices", tags=["prices"])

_ZIP_PATTERN = re.compile(r"^\d{5}$")
_DEDUPE_MODES = {"none", "chain", "pharmacy"}


def _clamp_int(value: str | None, default: int, low: int, high: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        number = int(float(value))
    except (ValueError, OverflowError):
        return default
    return min(max(number, low), high)


def _flag(value: str | None, default: bool) -> bool:
    text = (value or "").strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    return default


def parse_price_query(
    params: Mapping[str, str],
    configs: Mapping[ProviderId, ProviderConfig],
) -> PriceQuery:
    drug = (params.get("drug") or "").strip()
    if not drug:
        raise InputError("Missing required query param: drug (e.g., ?drug=atorvastatin)")
    zip_code = (params.get("zip") or "").strip()
    if zip_code and not _ZIP_PATTERN.match(zip_code):
        raise InputError("Invalid zip. Use 5 digits, e.g., 85001")

    chains = [
        chain.strip()
        for chain in (params.get("chains") or "").lower().split(",")
        if chain.strip()
    ]
    dedupe = (params.get("dedupe") or "none").strip().lower()
    if dedupe not in _DEDUPE_MODES:
        dedupe = "none"

    return PriceQuery(
        drug=drug,
        zip=zip_code or None,
        qty=_clamp_int(params.get("qty"), 30, 1, 5000),
        limit=_clamp_int(params.get("limit"), 25, 1, 50),
        include_mock=_flag(params.get("includeMock"), configs[ProviderId.MOCK].enabled_by_default),
        include_nadac=_flag(
            params.get("includeNadac"), configs[ProviderId.NADAC].enabled_by_default
        ),
        include_rxnorm=_flag(
            params.get("includeRxNorm"), configs[ProviderId.RXNORM].enabled_by_default
        ),
        include_goodrx=_flag(
            params.get("includeGoodRx"), configs[ProviderId.GOODRX].enabled_by_default
        ),
        include_florida=_flag(
            params.get("includeFlorida"), configs[ProviderId.FLORIDA].enabled_by_default
        ),
        florida_county=(params.get("flCounty") or "").strip() or None,
        chains=chains,
        form=(params.get("form") or "").strip().lower() or None,
        strength=(params.get("strength") or "").strip().lower() or None,
        dedupe=dedupe,
        privacy=(params.get("privacy") or "on").strip().lower() or "on",
    )


def response_headers(privacy: str, decision: RateDecision | None = None) -> dict[str, str]:
    headers = {
        "Cache-Control": "no-store",
        "X-MediFindr-Privacy": privacy,
    }
    if decision is not None:
        headers["X-RateLimit-Limit"] = str(decision.limit)
        headers["X-RateLimit-Remaining"] = str(max(0, decision.remaining))
        headers["X-RateLimit-Reset"] = str(decision.reset_at_ms)
    return headers


@router.get("", response_model=PriceResponse)
async def get_prices(request: Request, response: Response) -> PriceResponse:
    settings = request.app.state.settings
    query = parse_price_query(request.query_params, request.app.state.provider_configs)
    set_query_drug(query.drug)

    rate_limit = rate_limit_dependency(settings)
    decision = await rate_limit(request)

    aggregator = request.app.state.aggregator
    result = await aggregator.run(query, client_key(request))

    response.headers.update(response_headers(query.privacy, decision))
    return PriceResponse(
        count=len(result.rows),
        privacy=query.privacy,
        inputs=PriceInputs(
            drug=query.drug,
            normalized_drug=result.normalized_drug,
            zip=query.zip,
            qty=query.qty,
            limit=query.limit,
            include_good_rx=query.include_goodrx,
            include_nadac=query.include_nadac,
            include_mock=query.include_mock,
            include_rx_norm=query.include_rxnorm,
            include_florida=query.include_florida,
            fl_county=query.florida_county,
            chains=",".join(query.chains) or None,
            dedupe=query.dedupe,
            form=query.form,
            strength=query.strength,
        ),
        results=result.rows,
        group_summary=result.group_summary,
        transparency=result.transparency,
    )

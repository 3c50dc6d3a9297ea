from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Tuple

from .providers.rxnorm import SEARCH_APPROXIMATE, SEARCH_NORMALIZED, RxNormClient
from .schemas import ResolutionInfo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedName:
    rxcui: str | None = None
    name: str | None = None
    ndcs: Tuple[str, ...] = field(default_factory=tuple)
    resolution_source_url: str | None = None
    ndcs_source_url: str | None = None
    match_mode: str | None = None

    @property
    def resolved(self) -> bool:
        return self.rxcui is not None

    def to_info(self) -> ResolutionInfo:
        return ResolutionInfo(
            rxcui=self.rxcui,
            canonical_name=self.name,
            ndc_count=len(self.ndcs),
            source_url=self.resolution_source_url,
            ndcs_source_url=self.ndcs_source_url,
            match_mode=self.match_mode,
        )


class NameResolver:
    """Maps free-text drug names to RxNorm concepts.

    Tries a normalized search, then an approximate one. Resolution never fails
    a request: on any error the caller gets an unresolved result and keeps the
    original query.
    """

    def __init__(self, client: RxNormClient) -> None:
        self._client = client

    async def resolve(self, query: str) -> ResolvedName:
        try:
            return await self._resolve(query)
        except Exception as exc:
            logger.warning(
                "RxNorm resolution failed query=%r error_type=%s error=%s",
                query,
                type(exc).__name__,
                str(exc),
            )
            return ResolvedName()

    async def _resolve(self, query: str) -> ResolvedName:
        match_mode = "exact"
        rxcui, source_url = await self._client.find_rxcui(query, SEARCH_NORMALIZED)
        if rxcui is None:
            match_mode = "approximate"
            rxcui, source_url = await self._client.find_rxcui(query, SEARCH_APPROXIMATE)
        if rxcui is None:
            return ResolvedName()

        ndcs, ndcs_url = await self._client.ndcs(rxcui)
        name = await self._client.display_name(rxcui)
        return ResolvedName(
            rxcui=rxcui,
            name=name,
            ndcs=tuple(ndcs),
            resolution_source_url=source_url,
            ndcs_source_url=ndcs_url,
            match_mode=match_mode,
        )

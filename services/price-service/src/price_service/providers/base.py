from __future__ import annotations

import logging
import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Union

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..observability import observe_provider_call
from ..schemas import PriceQuote


logger = logging.getLogger(__name__)


class ProviderId(str, Enum):
    GOODRX = "GoodRx"
    NADAC = "NADAC"
    FLORIDA = "Florida MyFloridaRX"
    MOCK = "Mock"
    RXNORM = "RxNorm"


@dataclass(frozen=True)
class ProviderDescriptor:
    dataset_name: str
    homepage: str | None
    info: str
    row_label: str
    inclusion_caveat: str | None = None


DESCRIPTORS: Dict[ProviderId, ProviderDescriptor] = {
    ProviderId.GOODRX: ProviderDescriptor(
        dataset_name="GoodRx",
        homepage="https://www.goodrx.com/",
        info="Consumer-facing discount cash prices.",
        row_label="GoodRx",
        inclusion_caveat="GoodRx prices change frequently; do not store long-term.",
    ),
    ProviderId.NADAC: ProviderDescriptor(
        dataset_name="NADAC (HealthData.gov)",
        homepage="https://www.medicaid.gov/medicaid/nadac",
        info="Open benchmark of pharmacy acquisition cost; updated weekly.",
        row_label="NADAC (HealthData.gov 2024)",
        inclusion_caveat="NADAC is acquisition cost, not retail price.",
    ),
    ProviderId.FLORIDA: ProviderDescriptor(
        dataset_name="Florida MyFloridaRX",
        homepage="https://prescription.healthfinder.fl.gov/",
        info="Pharmacy-level 'usual & customary' retail prices (monthly).",
        row_label="Florida MyFloridaRX",
        inclusion_caveat="Florida-only dataset based on paid claims; prices change frequently.",
    ),
    ProviderId.MOCK: ProviderDescriptor(
        dataset_name="Mock",
        homepage=None,
        info="Demonstration data for development.",
        row_label="Mock",
    ),
    ProviderId.RXNORM: ProviderDescriptor(
        dataset_name="RxNorm (NLM RxNav)",
        homepage="https://lhncbc.nlm.nih.gov/RxNav/",
        info="Drug name normalization and NDC lookup.",
        row_label="RxNorm",
    ),
}


@dataclass(frozen=True)
class ProviderConfig:
    enabled_by_default: bool
    credential_present: bool = True
    cache_ttl: int = 0
    rate_limit: int | None = None


def build_provider_configs(settings: Settings) -> Dict[ProviderId, ProviderConfig]:
    has_goodrx_key = bool(settings.goodrx_api_key)
    return {
        ProviderId.RXNORM: ProviderConfig(True, cache_ttl=settings.cache_ttl_rxnorm),
        ProviderId.GOODRX: ProviderConfig(
            enabled_by_default=has_goodrx_key,
            credential_present=has_goodrx_key,
            cache_ttl=settings.cache_ttl_goodrx,
            rate_limit=settings.goodrx_rate_limit_requests,
        ),
        ProviderId.NADAC: ProviderConfig(True, cache_ttl=settings.cache_ttl_nadac),
        ProviderId.FLORIDA: ProviderConfig(False, cache_ttl=settings.cache_ttl_florida),
        ProviderId.MOCK: ProviderConfig(True),
    }


@dataclass(frozen=True)
class ProviderQuery:
    drug: str
    qty: int
    limit: int
    zip: str | None = None
    county: str | None = None


@dataclass(frozen=True)
class Ok:
    rows: List[PriceQuote] = field(default_factory=list)
    source_url: str = ""


@dataclass(frozen=True)
class Err:
    reason: str
    source_url: str = ""


@dataclass(frozen=True)
class Unconfigured:
    reason: str


ProviderResult = Union[Ok, Err, Unconfigured]


class PriceProvider(ABC):
    provider_id: ProviderId

    @property
    def descriptor(self) -> ProviderDescriptor:
        return DESCRIPTORS[self.provider_id]

    async def fetch(self, query: ProviderQuery) -> ProviderResult:
        started = time.perf_counter()
        try:
            result = await self._fetch(query)
        except httpx.TimeoutException:
            result = Err("the upstream request timed out")
        except httpx.HTTPStatusError as exc:
            result = Err(f"the upstream service answered HTTP {exc.response.status_code}")
        except httpx.RequestError as exc:
            result = Err(f"the upstream service could not be reached ({type(exc).__name__})")
        except (ValueError, TypeError, KeyError, ValidationError) as exc:
            logger.warning(
                "Provider response rejected provider=%s error_type=%s error=%s",
                self.provider_id.value,
                type(exc).__name__,
                str(exc),
            )
            result = Err("the upstream response could not be parsed")
        except OSError as exc:
            result = Err(f"the data source could not be read ({type(exc).__name__})")
        observe_provider_call(
            self.provider_id.value,
            _outcome(result),
            (time.perf_counter() - started) * 1000,
        )
        return result

    @abstractmethod
    async def _fetch(self, query: ProviderQuery) -> ProviderResult:
        ...


def _outcome(result: ProviderResult) -> str:
    if isinstance(result, Ok):
        return "ok" if result.rows else "empty"
    if isinstance(result, Unconfigured):
        return "unconfigured"
    return "error"


_KNOWN_CHAINS = ("walmart", "cvs", "walgreens", "costco", "safeway", "kroger")


def derive_chain(pharmacy: str | None) -> str | None:
    if not pharmacy:
        return None
    name = pharmacy.lower()
    for chain in _KNOWN_CHAINS:
        if re.search(rf"\b{chain}\b", name):
            return chain
    return name.strip() or None


def coerce_price(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def coerce_str(value: object) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None

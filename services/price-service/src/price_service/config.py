from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    app_env: str = os.getenv("APP_ENV", "development")
    app_debug: bool = _env_bool("APP_DEBUG", True)

    redis_url: str | None = _env_str("REDIS_URL")

    rate_limit_requests: int = _env_int("RATE_MAX", 30)
    rate_limit_window: int = _env_int("RATE_WINDOW_SECONDS", 60)
    goodrx_rate_limit_requests: int = _env_int("GOODRX_RATE_MAX", 8)

    cache_ttl_rxnorm: int = _env_int("CACHE_TTL_RXNORM_SECONDS", 86_400)
    cache_ttl_nadac: int = _env_int("CACHE_TTL_NADAC_SECONDS", 15 * 60)
    cache_ttl_goodrx: int = _env_int("CACHE_TTL_GOODRX_SECONDS", 60)
    cache_ttl_florida: int = _env_int("CACHE_TTL_FLORIDA_SECONDS", 3600)

    http_timeout: float = _env_float("HTTP_TIMEOUT_SECONDS", 10.0)
    florida_timeout: float = _env_float("FLORIDA_TIMEOUT_SECONDS", 12.0)

    rxnav_base_url: str = os.getenv("RXNAV_BASE_URL", "https://rxnav.nlm.nih.gov/REST")
    nadac_base_url: str = os.getenv(
        "NADAC_BASE_URL", "https://healthdata.gov/resource/3tha-57c6.json"
    )
    goodrx_base_url: str = os.getenv("GOODRX_BASE_URL", "https://api.goodrx.com/v2/price")
    goodrx_api_key: str | None = _env_str("GOODRX_API_KEY")

    florida_export_url_template: str | None = _env_str("FL_MYRX_EXPORT_URL_TEMPLATE")
    florida_test_file: str | None = _env_str("FL_MYRX_TEST_XLS")
    public_dir: str = os.getenv("PUBLIC_DIR", "public")

    @property
    def florida_test_path(self) -> Path | None:
        if not self.florida_test_file:
            return None
        return Path(self.public_dir) / self.florida_test_file.lstrip("/")

from __future__ import annotations

from .rate_limit import RateDecision


class PriceServiceError(Exception):
    status_code = 500


class InputError(PriceServiceError):
    status_code = 400


class RateLimited(PriceServiceError):
    status_code = 429

    def __init__(self, message: str, decision: RateDecision, retry_after: int) -> None:
        super().__init__(message)
        self.decision = decision
        self.retry_after = retry_after

"""
Error taxonomy shared by the clients, services and routers.
"""

from typing import Optional


class BudgetBotError(Exception):
    """Base class for every error raised on purpose by this package."""


class UpstreamError(BudgetBotError):
    """An upstream API rejected or failed a call. Not retryable by default."""

    retryable = False

    def __init__(self, message: str, service: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class UpstreamUnavailable(UpstreamError):
    """Transport failure or 5xx. Safe to retry."""

    retryable = True


class UpstreamRateLimited(UpstreamError):
    """Throttled by the upstream. Retry with backoff."""

    retryable = True

    def __init__(self, message: str, service: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, service=service, status_code=429)
        self.retry_after = retry_after


class ValidationError(BudgetBotError):
    """Account is missing configuration a feature needs."""


class DeliveryError(BudgetBotError):
    """A chat template could not be delivered."""

    def __init__(self, message: str, response: Optional[dict] = None):
        super().__init__(message)
        self.response = response or {}


class MutationApplyFailure(BudgetBotError):
    """The immediate half of a pause failed; nothing was recorded or scheduled."""


class MutationRevertFailure(BudgetBotError):
    """A scheduled revert ran out of retries."""

"""
Metric Service — Concurrent spend/click aggregation across ad accounts and
the derived ratios shown to operators.

Divisors are floored to 1 instead of producing inf/NaN: zero calls means
cost-per-call equals total spend, zero clicks means click-to-call is
calls * 100. This is business policy, not a crash guard.
"""

import asyncio
import logging
from decimal import Decimal
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from budgetbot.dates import DateRange
from budgetbot.errors import UpstreamRateLimited
from budgetbot.schemas import MetricTotals
from budgetbot.services.gateway import UpstreamGateway
from budgetbot.utils import micros_to_amount

logger = logging.getLogger(__name__)


class AccountError(BaseModel):
    account_id: str
    error: str
    error_type: str


class AggregateResult(BaseModel):
    spend_total: Decimal = Decimal(0)
    clicks_total: int = 0
    succeeded: list[str] = Field(default_factory=list)
    errors: list[AccountError] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors

    @property
    def warnings(self) -> list[str]:
        return [f"{e.account_id}: {e.error}" for e in self.errors]


# ── Derived metrics ───────────────────────────────────────────────────

ONE = Decimal(1)


def cost_per_enquiry(spend, calls) -> Decimal:
    calls = Decimal(calls)
    return Decimal(spend) / (calls if calls != 0 else ONE)


def cost_per_call(spend, calls) -> Decimal:
    return Decimal(spend) / max(Decimal(calls), ONE)


def click_to_call_pct(calls, clicks) -> Decimal:
    return Decimal(calls) / max(Decimal(clicks), ONE) * 100


# ── Aggregation ───────────────────────────────────────────────────────

class MetricAggregator:
    def __init__(
        self,
        gateway: UpstreamGateway,
        retry_attempts: int = 3,
        retry_multiplier: float = 1.0,
    ):
        self.gateway = gateway
        self.retry_attempts = max(1, retry_attempts)
        self.retry_multiplier = retry_multiplier

    async def _query_one(self, account_id: str, date_range: DateRange) -> MetricTotals:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(UpstreamRateLimited),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_multiplier, max=10),
            reraise=True,
        ):
            with attempt:
                return await self.gateway.query_metrics(account_id, date_range)

    async def aggregate(self, account_ids: list[str], date_range: DateRange) -> AggregateResult:
        """
        Fan out one metrics query per account and sum what comes back.
        A failing account is reported in `errors` and adds nothing to the
        totals, so callers can tell "no spend" from "query failed".
        """
        results = await asyncio.gather(
            *(self._query_one(a, date_range) for a in account_ids),
            return_exceptions=True,
        )

        agg = AggregateResult()
        cost_micros = 0
        for account_id, res in zip(account_ids, results):
            if isinstance(res, BaseException):
                if not isinstance(res, Exception):
                    raise res
                logger.warning(f"Metrics query failed for {account_id} ({date_range.google}): {res}")
                agg.errors.append(AccountError(
                    account_id=account_id,
                    error=str(res),
                    error_type=type(res).__name__,
                ))
                continue
            cost_micros += res.cost_micros
            agg.clicks_total += res.clicks
            agg.succeeded.append(account_id)

        agg.spend_total = micros_to_amount(cost_micros)
        logger.info(
            f"Aggregated {len(agg.succeeded)}/{len(account_ids)} accounts for {date_range.google}: "
            f"spend={agg.spend_total} clicks={agg.clicks_total}"
        )
        return agg

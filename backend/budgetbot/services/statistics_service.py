"""
Statistics Service — Spend, clicks and call metrics for a named date range.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from budgetbot.dates import DateRange, resolve_date_range
from budgetbot.errors import ValidationError
from budgetbot.models import StatisticRecord
from budgetbot.schemas import Account
from budgetbot.services.client_service import get_or_create_client
from budgetbot.services.gateway import UpstreamGateway
from budgetbot.services.metric_service import MetricAggregator, click_to_call_pct, cost_per_call
from budgetbot.utils import local_now, money

logger = logging.getLogger(__name__)


class StatisticsBundle(BaseModel):
    date_range_name: str
    date_from: str
    date_to: str
    spend: Decimal
    clicks: int
    answered: int
    missed: int
    calls: int
    cost_per_call: Decimal
    click_to_call_pct: Decimal
    warnings: list[str] = Field(default_factory=list)
    record_id: Optional[str] = None


class SpendingSummary(BaseModel):
    date_range_name: str
    date_from: str
    date_to: str
    spend: Decimal
    clicks: int
    warnings: list[str] = Field(default_factory=list)


class StatisticsReporter:
    def __init__(
        self,
        db: AsyncSession,
        gateway: UpstreamGateway,
        aggregator: MetricAggregator,
        timezone: str = "Australia/Sydney",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.aggregator = aggregator
        self.timezone = timezone
        self.clock = clock or (lambda: local_now(timezone))

    @classmethod
    def from_settings(cls, db: AsyncSession, gateway: UpstreamGateway, settings, **kwargs) -> "StatisticsReporter":
        aggregator = MetricAggregator(
            gateway,
            retry_attempts=settings.aggregate_retry_attempts,
            retry_multiplier=settings.aggregate_retry_multiplier,
        )
        return cls(db, gateway, aggregator, timezone=settings.timezone, **kwargs)

    async def _calls(self, account: Account, date_range: DateRange):
        account_ids = await self.gateway.list_sub_accounts(account.call_tracking_id)
        return await self.gateway.fetch_call_summary(account_ids, date_range)

    async def report(self, account: Account, date_index) -> StatisticsBundle:
        """
        Aggregate spend and calls concurrently, derive the ratios and persist
        a StatisticRecord. Partially failed aggregations are still returned
        and stored, with the failing accounts listed under `warnings`.
        """
        if not account.ad_platform_ids or not account.call_tracking_id:
            raise ValidationError("Google Ads and WildJar ids are required for statistics")

        date_range = resolve_date_range(date_index, self.clock())
        agg, summary = await asyncio.gather(
            self.aggregator.aggregate(account.ad_platform_ids, date_range),
            self._calls(account, date_range),
        )

        answered = summary.answered
        missed = summary.missed + summary.abandoned
        calls = answered + missed
        bundle = StatisticsBundle(
            date_range_name=date_range.name,
            date_from=date_range.start_str,
            date_to=date_range.end_str,
            spend=money(agg.spend_total),
            clicks=agg.clicks_total,
            answered=answered,
            missed=missed,
            calls=calls,
            cost_per_call=money(cost_per_call(agg.spend_total, calls)),
            click_to_call_pct=money(click_to_call_pct(calls, agg.clicks_total)),
            warnings=agg.warnings,
        )

        client = await get_or_create_client(self.db, account)
        record = StatisticRecord(
            client_id=client.id,
            spendings=bundle.spend,
            clicks_count=bundle.clicks,
            answered_calls=answered,
            missed_calls=missed,
            cost_per_call=bundle.cost_per_call,
            click_to_call_pct=bundle.click_to_call_pct,
            date_range_name=bundle.date_range_name,
            date_from=bundle.date_from,
            date_to=bundle.date_to,
            warnings=bundle.warnings or None,
        )
        self.db.add(record)
        await self.db.commit()
        bundle.record_id = str(record.id)

        if bundle.warnings:
            logger.warning(f"Statistics for {account.crm_id} ({date_range.name}) incomplete: {bundle.warnings}")
        logger.info(
            f"Statistics {account.crm_id} {date_range.name}: spend={bundle.spend} clicks={bundle.clicks} "
            f"calls={calls} cpc={bundle.cost_per_call} ctc={bundle.click_to_call_pct}%"
        )
        return bundle

    async def spending(self, account: Account, date_index) -> SpendingSummary:
        """Total spend and clicks only; nothing is persisted."""
        if not account.ad_platform_ids:
            raise ValidationError("No Google Ads accounts are configured for this account")
        date_range = resolve_date_range(date_index, self.clock())
        agg = await self.aggregator.aggregate(account.ad_platform_ids, date_range)
        return SpendingSummary(
            date_range_name=date_range.name,
            date_from=date_range.start_str,
            date_to=date_range.end_str,
            spend=money(agg.spend_total),
            clicks=agg.clicks_total,
            warnings=agg.warnings,
        )

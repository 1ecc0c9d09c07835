"""
Enquiry Notifier — Hourly WhatsApp summary of today's spend and calls.

For every CRM account with the hourly-updates flag ticked, look up the
opted-in chat customer behind its WhatsApp number and send a template with
today's spend, call count and cost per enquiry. One account failing never
stops the sweep.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional
from pydantic import BaseModel, Field

from budgetbot.dates import DateRange, resolve_date_range
from budgetbot.errors import UpstreamError
from budgetbot.schemas import Account
from budgetbot.services.gateway import UpstreamGateway
from budgetbot.services.metric_service import MetricAggregator, cost_per_enquiry
from budgetbot.utils import currency_format, local_now, normalize_phone

logger = logging.getLogger(__name__)


class NotificationFailure(BaseModel):
    account_id: str
    params: list[str] = Field(default_factory=list)
    error: str


class NotifyReport(BaseModel):
    sent: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failures: list[NotificationFailure] = Field(default_factory=list)


class EnquiryNotifier:
    def __init__(
        self,
        gateway: UpstreamGateway,
        aggregator: MetricAggregator,
        flag_name: str = "cf_whatsapp_hourly_updates",
        template_id: int = 1060,
        timezone: str = "Australia/Sydney",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.aggregator = aggregator
        self.flag_name = flag_name
        self.template_id = template_id
        self.timezone = timezone
        self.clock = clock or (lambda: local_now(timezone))

    @classmethod
    def from_settings(cls, gateway: UpstreamGateway, settings, **kwargs) -> "EnquiryNotifier":
        aggregator = MetricAggregator(
            gateway,
            retry_attempts=settings.aggregate_retry_attempts,
            retry_multiplier=settings.aggregate_retry_multiplier,
        )
        return cls(
            gateway,
            aggregator,
            flag_name=settings.hourly_updates_flag,
            template_id=settings.enquiry_template_id,
            timezone=settings.timezone,
            **kwargs,
        )

    async def _today_calls(self, account: Account, today: DateRange) -> int:
        account_ids = await self.gateway.list_sub_accounts(account.call_tracking_id)
        summary = await self.gateway.fetch_call_summary(account_ids, today)
        return summary.total

    async def build_params(self, account: Account, now: datetime) -> list[str]:
        """Template params: name, HH:MM, spend, calls, cost per enquiry."""
        today = resolve_date_range(1, now)
        spend_result, calls = await asyncio.gather(
            self.aggregator.aggregate(account.ad_platform_ids, today),
            self._today_calls(account, today),
        )
        if not spend_result.complete:
            raise UpstreamError(
                f"Spend incomplete for {account.crm_id}: {'; '.join(spend_result.warnings)}",
                service="google_ads",
            )
        spend = spend_result.spend_total
        return [
            account.name,
            now.strftime("%H:%M"),
            currency_format(spend),
            str(calls),
            currency_format(cost_per_enquiry(spend, calls)),
        ]

    async def notify_account(self, crm_id: str, now: datetime, report: NotifyReport) -> None:
        params: list[str] = []
        try:
            account = await self.gateway.get_account(crm_id)
            phone = normalize_phone(account.wa_phone)
            if not phone or not account.ad_platform_ids or not account.call_tracking_id:
                logger.info(f"Enquiry update skipped for {crm_id}: missing phone, ad or call-tracking ids")
                report.skipped.append(crm_id)
                return

            customer = await self.gateway.find_customer_by_phone(phone)
            if customer is None:
                logger.info(f"Enquiry update skipped for {crm_id}: no opted-in chat customer for {phone}")
                report.skipped.append(crm_id)
                return

            params = await self.build_params(account, now)
            await self.gateway.send_notification(customer.id, self.template_id, params)
        except Exception as e:
            logger.error(f"Enquiry update failed for {crm_id}: {e} params={params}")
            report.failures.append(NotificationFailure(account_id=crm_id, params=params, error=str(e)))
            return

        logger.info(f"Enquiry update sent to {crm_id} ({account.name}): {params}")
        report.sent.append(crm_id)

    async def run(self) -> NotifyReport:
        now = self.clock()
        report = NotifyReport()
        account_ids = await self.gateway.find_flagged_accounts(self.flag_name)
        logger.info(f"Enquiry sweep: {len(account_ids)} flagged accounts")
        for crm_id in account_ids:
            await self.notify_account(crm_id, now, report)
        logger.info(
            f"Enquiry sweep done: {len(report.sent)} sent, {len(report.skipped)} skipped, "
            f"{len(report.failures)} failed"
        )
        return report

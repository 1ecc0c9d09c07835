"""
Upstream Gateway — the one seam between business logic and the four
upstreams (Google Ads, WildJar, FreshSales, LandBot).

Services depend on the UpstreamGateway protocol; LiveGateway is the
production implementation and tests substitute an in-memory fake.
"""

import logging
from decimal import Decimal
from typing import Optional, Protocol

from budgetbot.clients.freshsales import FreshSalesClient
from budgetbot.clients.google_ads import GoogleAdsApi
from budgetbot.clients.landbot import LandBotClient
from budgetbot.clients.wildjar import WildJarClient
from budgetbot.config import Settings, get_settings
from budgetbot.dates import DateRange
from budgetbot.schemas import Account, CallSummary, Campaign, Customer, MetricTotals
from budgetbot.utils import amount_to_micros, micros_to_amount

logger = logging.getLogger(__name__)

CAMPAIGN_ENABLED = "ENABLED"
CAMPAIGN_PAUSED = "PAUSED"


class UpstreamGateway(Protocol):
    # Ad platform
    async def list_campaigns(self, account_id: str) -> list[Campaign]: ...
    async def set_campaign_status(self, account_id: str, campaign_ids: list[str], status: str) -> None: ...
    async def set_budget_amount(self, account_id: str, budget_id: str, amount: Decimal) -> None: ...
    async def query_metrics(self, account_id: str, date_range: DateRange) -> MetricTotals: ...

    # Call tracking
    async def list_sub_accounts(self, root_id: str) -> list[str]: ...
    async def fetch_call_summary(self, account_ids: list[str], date_range: DateRange) -> CallSummary: ...

    # CRM
    async def find_flagged_accounts(self, flag_name: str) -> list[str]: ...
    async def get_account(self, crm_id: str) -> Account: ...
    async def find_account_by_phone(self, phone: str) -> Optional[Account]: ...

    # Chat
    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]: ...
    async def send_notification(self, customer_id: str, template_id: int, params: list[str]) -> None: ...

    async def aclose(self) -> None: ...


class LiveGateway:
    """UpstreamGateway backed by the real APIs."""

    def __init__(
        self,
        ads: GoogleAdsApi,
        calls: WildJarClient,
        crm: FreshSalesClient,
        chat: LandBotClient,
        timezone: str = "Australia/Sydney",
        template_language: str = "en",
    ):
        self.ads = ads
        self.calls = calls
        self.crm = crm
        self.chat = chat
        self.timezone = timezone
        self.template_language = template_language

    async def __aenter__(self) -> "LiveGateway":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ── Ad platform ───────────────────────────────────────────────────

    async def list_campaigns(self, account_id: str) -> list[Campaign]:
        return await self.ads.list_campaigns(account_id)

    async def set_campaign_status(self, account_id: str, campaign_ids: list[str], status: str) -> None:
        logger.info(f"Google Ads {account_id}: set {len(campaign_ids)} campaigns -> {status}: {campaign_ids}")
        await self.ads.mutate_campaign_status(account_id, campaign_ids, status)

    async def set_budget_amount(self, account_id: str, budget_id: str, amount: Decimal) -> None:
        """Idempotent: a budget already at `amount` is left untouched."""
        target = amount_to_micros(amount)
        current = await self.ads.get_budget_amount_micros(account_id, budget_id)
        if current == target:
            logger.info(f"Google Ads {account_id}: budget {budget_id} already {amount}, no-op")
            return
        before = micros_to_amount(current) if current is not None else None
        logger.info(f"Google Ads {account_id}: budget {budget_id} {before} -> {amount}")
        await self.ads.mutate_budget(account_id, budget_id, target)

    async def query_metrics(self, account_id: str, date_range: DateRange) -> MetricTotals:
        return await self.ads.query_metrics(account_id, date_range.google)

    # ── Call tracking ─────────────────────────────────────────────────

    async def list_sub_accounts(self, root_id: str) -> list[str]:
        return await self.calls.list_sub_accounts(root_id)

    async def fetch_call_summary(self, account_ids: list[str], date_range: DateRange) -> CallSummary:
        return await self.calls.summary(account_ids, date_range, self.timezone)

    # ── CRM ───────────────────────────────────────────────────────────

    async def find_flagged_accounts(self, flag_name: str) -> list[str]:
        return await self.crm.find_flagged_accounts(flag_name)

    async def get_account(self, crm_id: str) -> Account:
        return await self.crm.get_account(crm_id)

    async def find_account_by_phone(self, phone: str) -> Optional[Account]:
        return await self.crm.find_account_by_phone(phone)

    # ── Chat ──────────────────────────────────────────────────────────

    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        return await self.chat.find_customer_by_phone(phone)

    async def send_notification(self, customer_id: str, template_id: int, params: list[str]) -> None:
        await self.chat.send_template(customer_id, template_id, params, language=self.template_language)

    async def aclose(self) -> None:
        self.ads.close()
        for client in (self.calls, self.crm, self.chat):
            await client.aclose()


def create_gateway(settings: Settings) -> LiveGateway:
    """Factory: build a LiveGateway from settings."""
    return LiveGateway(
        ads=GoogleAdsApi(
            developer_token=settings.google_ads_developer_token,
            client_id=settings.google_ads_client_id,
            client_secret=settings.google_ads_client_secret,
            refresh_token=settings.google_ads_refresh_token,
            login_customer_id=settings.google_ads_login_customer_id or None,
        ),
        calls=WildJarClient(settings.wildjar_base_url, settings.wildjar_token, timeout=settings.http_timeout),
        crm=FreshSalesClient(settings.freshsales_base_url, settings.freshsales_api_key, timeout=settings.http_timeout),
        chat=LandBotClient(settings.landbot_base_url, settings.landbot_token, timeout=settings.http_timeout),
        timezone=settings.timezone,
        template_language=settings.enquiry_template_language,
    )


async def get_gateway():
    """FastAPI dependency: one LiveGateway per request, closed afterwards."""
    async with create_gateway(get_settings()) as gateway:
        yield gateway

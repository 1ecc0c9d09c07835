"""
Google Ads Client
Wraps the google-ads SDK (sync gRPC) for the handful of GAQL reads and
mutates this service needs. Every public method is async and runs the SDK
call in a worker thread.
"""

import asyncio
import logging
from typing import Any, Optional

from google.ads.googleads.client import GoogleAdsClient as SdkClient
from google.ads.googleads.errors import GoogleAdsException
from google.api_core import exceptions as api_exceptions
from google.api_core import protobuf_helpers

from budgetbot.errors import UpstreamError, UpstreamRateLimited, UpstreamUnavailable
from budgetbot.schemas import Campaign, MetricTotals
from budgetbot.utils import micros_to_amount

logger = logging.getLogger(__name__)

CAMPAIGN_QUERY = (
    "SELECT campaign.id, campaign.name, campaign.status, campaign.advertising_channel_type, "
    "campaign_budget.id, campaign_budget.amount_micros "
    "FROM campaign WHERE campaign.status != 'REMOVED'"
)
METRICS_QUERY = "SELECT metrics.cost_micros, metrics.clicks FROM customer WHERE segments.date DURING {during}"
BUDGET_QUERY = "SELECT campaign_budget.amount_micros FROM campaign_budget WHERE campaign_budget.id = {budget_id}"

_TRANSIENT_CODES = {"UNAVAILABLE", "INTERNAL", "DEADLINE_EXCEEDED", "ABORTED", "UNKNOWN"}


def _translate(e: Exception, what: str) -> UpstreamError:
    """Map SDK / api_core failures onto the error taxonomy."""
    if isinstance(e, GoogleAdsException):
        code = e.error.code().name if e.error is not None else "UNKNOWN"
        if code == "RESOURCE_EXHAUSTED":
            return UpstreamRateLimited(f"Google Ads quota exhausted during {what}", service="google_ads")
        if code in _TRANSIENT_CODES:
            return UpstreamUnavailable(f"Google Ads {code} during {what}", service="google_ads")
        messages = "; ".join(err.message for err in e.failure.errors) if e.failure else str(e)
        return UpstreamError(f"Google Ads rejected {what}: {messages}", service="google_ads")
    if isinstance(e, (api_exceptions.ResourceExhausted, api_exceptions.TooManyRequests)):
        return UpstreamRateLimited(f"Google Ads throttled {what}: {e}", service="google_ads")
    if isinstance(e, (
        api_exceptions.ServiceUnavailable,
        api_exceptions.DeadlineExceeded,
        api_exceptions.InternalServerError,
    )):
        return UpstreamUnavailable(f"Google Ads unavailable during {what}: {e}", service="google_ads")
    return UpstreamUnavailable(f"Google Ads call failed during {what}: {e}", service="google_ads")


class GoogleAdsApi:
    """
    One instance per logical operation. The SDK client and its service
    stubs are created lazily, reused for every call, and released by close().
    """

    def __init__(
        self,
        developer_token: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        login_customer_id: Optional[str] = None,
    ):
        self._config = {
            "developer_token": developer_token,
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "use_proto_plus": True,
        }
        if login_customer_id:
            self._config["login_customer_id"] = login_customer_id.replace("-", "")
        self._client: Optional[SdkClient] = None
        self._services: dict[str, Any] = {}

    def _sdk(self) -> SdkClient:
        if self._client is None:
            self._client = SdkClient.load_from_dict(self._config)
        return self._client

    def _service(self, name: str):
        if name not in self._services:
            self._services[name] = self._sdk().get_service(name)
        return self._services[name]

    async def _run(self, what: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except UpstreamError:
            raise
        except Exception as e:
            raise _translate(e, what) from e

    # ── Reads ─────────────────────────────────────────────────────────

    def _search(self, customer_id: str, query: str) -> list:
        stream = self._service("GoogleAdsService").search_stream(customer_id=customer_id, query=query)
        rows = []
        for batch in stream:
            rows.extend(batch.results)
        return rows

    async def list_campaigns(self, customer_id: str) -> list[Campaign]:
        rows = await self._run(f"list_campaigns({customer_id})", self._search, customer_id, CAMPAIGN_QUERY)
        campaigns = []
        for row in rows:
            channel = row.campaign.advertising_channel_type
            campaigns.append(Campaign(
                account_id=customer_id,
                campaign_id=str(row.campaign.id),
                budget_id=str(row.campaign_budget.id),
                name=row.campaign.name,
                budget_amount=micros_to_amount(row.campaign_budget.amount_micros),
                channel_type=getattr(channel, "name", str(channel)),
                status=getattr(row.campaign.status, "name", str(row.campaign.status)),
            ))
        logger.info(f"Google Ads {customer_id}: {len(campaigns)} campaigns")
        return campaigns

    async def query_metrics(self, customer_id: str, during: str) -> MetricTotals:
        rows = await self._run(
            f"query_metrics({customer_id}, {during})",
            self._search, customer_id, METRICS_QUERY.format(during=during),
        )
        totals = MetricTotals()
        for row in rows:
            totals.cost_micros += int(row.metrics.cost_micros)
            totals.clicks += int(row.metrics.clicks)
        return totals

    async def get_budget_amount_micros(self, customer_id: str, budget_id: str) -> Optional[int]:
        rows = await self._run(
            f"get_budget({customer_id}, {budget_id})",
            self._search, customer_id, BUDGET_QUERY.format(budget_id=int(budget_id)),
        )
        if not rows:
            return None
        return int(rows[0].campaign_budget.amount_micros)

    # ── Mutates ───────────────────────────────────────────────────────

    def _mutate_budget(self, customer_id: str, budget_id: str, amount_micros: int):
        client = self._sdk()
        service = self._service("CampaignBudgetService")
        op = client.get_type("CampaignBudgetOperation")
        budget = op.update
        budget.resource_name = service.campaign_budget_path(customer_id, budget_id)
        budget.amount_micros = amount_micros
        client.copy_from(op.update_mask, protobuf_helpers.field_mask(None, budget._pb))
        return service.mutate_campaign_budgets(customer_id=customer_id, operations=[op])

    def _mutate_campaign_status(self, customer_id: str, campaign_ids: list[str], status: str):
        client = self._sdk()
        service = self._service("CampaignService")
        status_enum = getattr(client.enums.CampaignStatusEnum, status)
        operations = []
        for campaign_id in campaign_ids:
            op = client.get_type("CampaignOperation")
            campaign = op.update
            campaign.resource_name = service.campaign_path(customer_id, campaign_id)
            campaign.status = status_enum
            client.copy_from(op.update_mask, protobuf_helpers.field_mask(None, campaign._pb))
            operations.append(op)
        return service.mutate_campaigns(customer_id=customer_id, operations=operations)

    async def mutate_budget(self, customer_id: str, budget_id: str, amount_micros: int) -> None:
        await self._run(
            f"mutate_budget({customer_id}, {budget_id})",
            self._mutate_budget, customer_id, budget_id, amount_micros,
        )

    async def mutate_campaign_status(self, customer_id: str, campaign_ids: list[str], status: str) -> None:
        if not campaign_ids:
            return
        await self._run(
            f"mutate_campaign_status({customer_id}, {status})",
            self._mutate_campaign_status, customer_id, campaign_ids, status,
        )

    def close(self) -> None:
        """Release the gRPC channels held by cached service stubs."""
        for name, service in self._services.items():
            transport = getattr(service, "transport", None)
            if transport is not None and hasattr(transport, "close"):
                try:
                    transport.close()
                except Exception as e:
                    logger.debug(f"Closing {name} transport failed: {e}")
        self._services.clear()
        self._client = None

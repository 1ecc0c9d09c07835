"""
WildJar call-tracking client — sub-account discovery and call summaries.
"""

import logging
from typing import Optional
import httpx

from budgetbot.clients.http import JsonApiClient
from budgetbot.dates import DateRange
from budgetbot.schemas import CallSummary

logger = logging.getLogger(__name__)


def _as_int(value) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


class WildJarClient(JsonApiClient):
    service = "wildjar"

    def __init__(self, base_url: str, token: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def list_sub_accounts(self, root_id: str) -> list[str]:
        """The root account plus its direct children; calls are summed across all of them."""
        data = await self.get(f"account/{root_id}")
        details = data.get("data", data) if isinstance(data, dict) else {}
        children = details.get("children") or []
        ids = [str(c["id"] if isinstance(c, dict) else c) for c in children]
        ids.append(str(root_id))
        return ids

    async def summary(self, account_ids: list[str], date_range: DateRange, timezone: str) -> CallSummary:
        data = await self.get("summary", params={
            "account": ",".join(account_ids),
            "datefrom": date_range.start_str,
            "dateto": date_range.end_str,
            "timezone": timezone,
        })
        summary = data.get("summary") or {}
        return CallSummary(
            answered=_as_int(summary.get("answeredTot")),
            missed=_as_int(summary.get("missedTot")),
            abandoned=_as_int(summary.get("abandonedTot")),
        )

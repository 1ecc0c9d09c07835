"""
FreshSales CRM client — sales account lookups and custom-field parsing.
"""

import logging
from typing import Optional
import httpx

from budgetbot.clients.http import JsonApiClient
from budgetbot.schemas import Account

logger = logging.getLogger(__name__)


class FreshSalesClient(JsonApiClient):
    service = "freshsales"

    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url,
            headers={"Authorization": f"Token token={api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def find_flagged_accounts(self, flag_name: str, per_page: int = 100) -> list[str]:
        """Ids of every sales account whose checkbox `flag_name` is ticked."""
        ids: list[str] = []
        page = 1
        while True:
            data = await self.post(
                "filtered_search/sales_account",
                json={
                    "filter_rule": [
                        {"attribute": flag_name, "operator": "is_in", "value": ["true"]},
                    ],
                    "page": page,
                    "per_page": per_page,
                },
            )
            batch = data.get("sales_accounts") or []
            ids.extend(str(a["id"]) for a in batch if a.get("id") is not None)
            total_pages = (data.get("meta") or {}).get("total_pages") or 1
            if page >= total_pages or not batch:
                break
            page += 1
        logger.info(f"FreshSales: {len(ids)} accounts flagged {flag_name}")
        return ids

    async def get_account(self, account_id: str) -> Account:
        data = await self.get(f"sales_accounts/{account_id}")
        return Account.from_crm(data["sales_account"])

    async def find_account_by_phone(self, phone: str) -> Optional[Account]:
        """The chat bot identifies operators by phone; resolve it to their sales account."""
        results = await self.get("search", params={"q": phone, "include": "sales_account", "per_page": 100})
        if isinstance(results, dict):
            results = results.get("sales_accounts") or results.get("results") or []
        for item in results or []:
            if item.get("type", "sales_account") == "sales_account" and item.get("id") is not None:
                return await self.get_account(str(item["id"]))
        return None

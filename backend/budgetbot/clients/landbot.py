"""
LandBot chat client — customer lookup and WhatsApp template delivery.
"""

import logging
from typing import Optional
import httpx

from budgetbot.clients.http import JsonApiClient
from budgetbot.errors import DeliveryError, UpstreamError
from budgetbot.schemas import Customer

logger = logging.getLogger(__name__)


class LandBotClient(JsonApiClient):
    service = "landbot"

    def __init__(self, base_url: str, token: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url,
            headers={"Authorization": f"Token {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        """First opted-in customer with this phone number, or None."""
        data = await self.get("customers/", params={"search_by": "phone", "search": phone})
        for raw in data.get("customers") or []:
            if raw.get("opt_in") is True:
                return Customer(
                    id=str(raw["id"]),
                    name=raw.get("name") or "",
                    phone=raw.get("phone"),
                    opt_in=True,
                )
        return None

    async def send_template(
        self,
        customer_id: str,
        template_id: int,
        params: list[str],
        language: str = "en",
    ) -> dict:
        payload = {
            "template_id": template_id,
            "template_params": list(params),
            "template_language": language,
        }
        try:
            res = await self.post(f"customers/{customer_id}/send_template/", json=payload)
        except UpstreamError as e:
            raise DeliveryError(f"Template {template_id} to {customer_id} failed: {e}") from e
        if isinstance(res, dict) and res.get("errors"):
            raise DeliveryError(f"Template {template_id} to {customer_id} rejected", response=res)
        return res

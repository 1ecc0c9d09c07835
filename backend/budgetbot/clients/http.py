"""
Shared httpx plumbing for the REST upstreams (FreshSales, WildJar, LandBot).
Maps transport failures and HTTP status codes onto the error taxonomy.
"""

import logging
from typing import Any, Optional
import httpx

from budgetbot.errors import UpstreamError, UpstreamRateLimited, UpstreamUnavailable

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


class JsonApiClient:
    """Thin async JSON client. One instance = one pooled httpx connection set."""

    service = "upstream"

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path.lstrip("/"), **kwargs)
        except httpx.TransportError as e:
            logger.error(f"{self.service} {method} {path} transport error: {e}")
            raise UpstreamUnavailable(f"{self.service} unreachable: {e}", service=self.service)

        if response.status_code == 429:
            raise UpstreamRateLimited(
                f"{self.service} rate limited {method} {path}",
                service=self.service,
                retry_after=_retry_after(response),
            )
        if response.status_code >= 500:
            raise UpstreamUnavailable(
                f"{self.service} {method} {path} returned {response.status_code}",
                service=self.service,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise UpstreamError(
                f"{self.service} {method} {path} returned {response.status_code}: {response.text[:300]}",
                service=self.service,
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    async def get(self, path: str, params: Optional[dict] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, json: Optional[dict] = None) -> Any:
        return await self._request("POST", path, json=json)

    async def aclose(self) -> None:
        await self._http.aclose()

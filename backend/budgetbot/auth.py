"""
Authentication — API-key auth for the chat webhooks and audit reads,
cron-secret auth for scheduled jobs.

- Chat bot / programmatic: Authorization: Bearer <API_KEY>
- Cron: X-Cron-Secret: <CRON_SECRET> or Authorization: Bearer <CRON_SECRET>

In development with no API_KEY set, API-key auth is skipped for local dev.
"""

import hmac
import logging
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from budgetbot.config import get_settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _matches(token: str | None, secret: str) -> bool:
    return bool(token) and hmac.compare_digest(token.encode(), secret.encode())


async def require_auth(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Require the API key. Returns the key, or "dev-no-auth" in keyless development."""
    settings = get_settings()
    api_key = settings.api_key

    # Dev convenience: skip auth when no key is configured
    if not api_key:
        if settings.is_production:
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API_KEY must be set in production.",
            )
        return "dev-no-auth"

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <API_KEY>",
        )

    if _matches(credentials.credentials, api_key):
        return credentials.credentials

    raise HTTPException(status_code=401, detail="Invalid API key")


async def require_cron_secret(
    x_cron_secret: str | None = Header(None, alias="X-Cron-Secret"),
    authorization: str | None = Header(None),
) -> None:
    """Verify the request came from the scheduler with a valid secret."""
    secret = get_settings().cron_secret
    if not secret:
        raise HTTPException(500, "CRON_SECRET not configured")
    # Accept X-Cron-Secret header or Bearer token
    token = x_cron_secret
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
    if not _matches(token, secret):
        logger.warning("Rejected cron request with invalid secret")
        raise HTTPException(401, "Invalid cron secret")

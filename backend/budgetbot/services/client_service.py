"""
Local Client rows — the anchor that mutation and statistic records belong to.
"""

import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budgetbot.models import Client
from budgetbot.schemas import Account

logger = logging.getLogger(__name__)


async def get_or_create_client(db: AsyncSession, account: Account) -> Client:
    result = await db.execute(select(Client).where(Client.freshsales_id == account.crm_id))
    client = result.scalar_one_or_none()
    if client is None:
        client = Client(freshsales_id=account.crm_id, name=account.name)
        db.add(client)
        await db.flush()
        logger.info(f"Registered client {account.crm_id} ({account.name})")
    elif account.name and client.name != account.name:
        client.name = account.name
    return client

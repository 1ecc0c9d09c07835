"""
Cron / Scheduled Jobs — Endpoints for an external scheduler.

Both endpoints verify CRON_SECRET:
  X-Cron-Secret: <CRON_SECRET>  or  Authorization: Bearer <CRON_SECRET>

  POST /api/cron/notify-enquiries  hourly WhatsApp spend/calls summary
  POST /api/cron/mutations         run due pause/revert mutations (every minute)
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from budgetbot.auth import require_cron_secret
from budgetbot.config import get_settings
from budgetbot.database import get_db
from budgetbot.errors import UpstreamError
from budgetbot.services.enquiry_notifier import EnquiryNotifier
from budgetbot.services.gateway import UpstreamGateway, get_gateway
from budgetbot.services.mutation_service import MutationScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.post("/notify-enquiries")
async def cron_notify_enquiries(
    _: None = Depends(require_cron_secret),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    """Per-account failures are reported in the body; only a failed CRM sweep is an error."""
    notifier = EnquiryNotifier.from_settings(gateway, get_settings())
    try:
        report = await notifier.run()
    except UpstreamError as e:
        logger.exception("Enquiry sweep failed")
        raise HTTPException(502, str(e))
    return {"status": "ok", "result": report.model_dump()}


@router.post("/mutations")
async def cron_mutations(
    _: None = Depends(require_cron_secret),
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    """
    Execute every scheduled mutation that is due. Rows that exhausted their
    retries are returned under "dead" with status "alert" so the scheduler's
    failure notifications fire.
    """
    scheduler = MutationScheduler.from_settings(db, gateway, get_settings())
    report = await scheduler.run_due_mutations()
    status = "alert" if report.dead else "ok"
    return {"status": status, "result": report.model_dump()}

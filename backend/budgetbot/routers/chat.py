"""
Chat Router — Webhooks called by the WhatsApp chat bot.

The bot identifies the operator by phone number; every endpoint resolves it
to a CRM sales account first. Responses use the envelope
{"success": true, "message": str, "data": {...}}.
"""

import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from budgetbot.config import get_settings
from budgetbot.database import get_db
from budgetbot.errors import MutationApplyFailure, UpstreamError, ValidationError
from budgetbot.schemas import Account
from budgetbot.services.gateway import UpstreamGateway, get_gateway
from budgetbot.services.mutation_service import MutationScheduler, PauseResult
from budgetbot.services.statistics_service import StatisticsReporter
from budgetbot.utils import currency_format, normalize_phone

logger = logging.getLogger(__name__)

router = APIRouter()


class PhoneRequest(BaseModel):
    phone: str


class PauseRequest(PhoneRequest):
    campaign: int
    duration: Optional[int] = 1


class PauseAllRequest(PhoneRequest):
    duration: Optional[int] = 1


class DateRequest(PhoneRequest):
    date: Optional[int] = 1


def envelope(data: dict[str, Any], message: str = "Success!") -> dict:
    return {"success": True, "message": message, "data": data}


async def _resolve_account(gateway: UpstreamGateway, phone: str) -> Account:
    phone = normalize_phone(phone)
    if not phone:
        raise HTTPException(status_code=400, detail="phone is required")
    try:
        account = await gateway.find_account_by_phone(phone)
    except UpstreamError as e:
        logger.error(f"Account lookup for {phone} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if account is None:
        raise HTTPException(status_code=404, detail="No account is linked to this phone number")
    return account


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def _partial_message(result: PauseResult, warning: str, default: str = "") -> str:
    """Successful pauses are still returned with their revert date when some failed."""
    return f"{warning}: {'; '.join(result.failures)}" if result.failures else default


@router.post("/campaigns")
async def active_campaigns(
    payload: PhoneRequest,
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    """Budget groups that can be paused, numbered in the order the bot shows them."""
    account = await _resolve_account(gateway, payload.phone)
    scheduler = MutationScheduler.from_settings(db, gateway, get_settings())
    try:
        scheduler.require_budget_feature(account)
        groups = await scheduler.list_budget_groups(account)
    except (ValidationError, UpstreamError) as e:
        raise _http_error(e)
    return envelope({
        "name": account.name,
        "current_budget": currency_format(sum(g.current_budget for g in groups)),
        "campaigns": [g.display for g in groups],
    }, message="")


@router.post("/pause")
async def pause_budget(
    payload: PauseRequest,
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    """
    Pause one budget group until the chosen duration ends. A campaign number
    past the end of the list pauses every group.
    """
    account = await _resolve_account(gateway, payload.phone)
    scheduler = MutationScheduler.from_settings(db, gateway, get_settings())
    try:
        result = await scheduler.pause_budget_group(account, payload.campaign, payload.duration)
    except (ValidationError, UpstreamError, MutationApplyFailure) as e:
        raise _http_error(e)
    return envelope({
        "reverted": result.reverted,
        "duration": result.date_range_name,
        "campaigns": result.labels,
        "failures": result.failures,
    }, message=_partial_message(result, "Some budgets could not be paused"))


@router.post("/pause-all")
async def pause_all(
    payload: PauseAllRequest,
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    account = await _resolve_account(gateway, payload.phone)
    scheduler = MutationScheduler.from_settings(db, gateway, get_settings())
    try:
        result = await scheduler.pause_campaigns(account, payload.duration)
    except (ValidationError, UpstreamError, MutationApplyFailure) as e:
        raise _http_error(e)
    return envelope({
        "name": account.name,
        "reverted": result.reverted,
        "duration": result.date_range_name,
        "failures": result.failures,
    }, message=_partial_message(result, "Some campaigns could not be paused", default="Success!"))


@router.post("/enable")
async def enable_all(
    payload: PhoneRequest,
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    account = await _resolve_account(gateway, payload.phone)
    scheduler = MutationScheduler.from_settings(db, gateway, get_settings())
    try:
        count = await scheduler.enable_campaigns(account)
    except (ValidationError, UpstreamError) as e:
        raise _http_error(e)
    return envelope({"name": account.name, "enabled": count})


@router.post("/statistics")
async def statistics(
    payload: DateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    account = await _resolve_account(gateway, payload.phone)
    reporter = StatisticsReporter.from_settings(db, gateway, get_settings())
    try:
        bundle = await reporter.report(account, payload.date)
    except (ValidationError, UpstreamError) as e:
        raise _http_error(e)
    return envelope({
        "name": account.name,
        "date_range": bundle.date_range_name,
        "date_from": bundle.date_from,
        "date_to": bundle.date_to,
        "spendings": str(bundle.spend),
        "clicks": bundle.clicks,
        "answered": bundle.answered,
        "missed": bundle.missed,
        "calls": bundle.calls,
        "cost_per_call": str(bundle.cost_per_call),
        "click_to_call": str(bundle.click_to_call_pct),
        "warnings": bundle.warnings,
    }, message="Retrieved statistics")


@router.post("/spending")
async def spending(
    payload: DateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    account = await _resolve_account(gateway, payload.phone)
    reporter = StatisticsReporter.from_settings(db, gateway, get_settings())
    try:
        summary = await reporter.spending(account, payload.date)
    except (ValidationError, UpstreamError) as e:
        raise _http_error(e)
    return envelope({
        "name": account.name,
        "date_range": summary.date_range_name,
        "spending": currency_format(summary.spend),
        "warnings": summary.warnings,
    })

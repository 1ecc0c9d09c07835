"""
Audit Router — Read-only views of mutation records, scheduled reverts,
statistic snapshots and critical alerts.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budgetbot.database import get_db
from budgetbot.models import (
    ActivityLog, Client, MutationRecord, ScheduledMutation, ScheduledStatus, StatisticRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


@router.get("/mutations")
async def list_mutations(
    freshsales_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Mutation records, newest first, each with its scheduled apply/revert rows."""
    q = select(MutationRecord, Client).join(Client, MutationRecord.client_id == Client.id)
    if freshsales_id:
        q = q.where(Client.freshsales_id == freshsales_id)
    result = await db.execute(q.order_by(MutationRecord.created_at.desc()).limit(limit))
    rows = result.all()

    record_ids = [r.id for r, _ in rows]
    scheduled: dict = {}
    if record_ids:
        sm = await db.execute(
            select(ScheduledMutation).where(ScheduledMutation.mutation_record_id.in_(record_ids))
        )
        for s in sm.scalars().all():
            scheduled.setdefault(s.mutation_record_id, []).append({
                "id": str(s.id),
                "role": s.role,
                "kind": s.kind,
                "new_value": s.new_value,
                "not_before": _iso(s.not_before),
                "status": s.status,
                "attempts": s.attempts,
                "last_error": s.last_error,
                "completed_at": _iso(s.completed_at),
            })

    return {
        "mutations": [
            {
                "id": str(r.id),
                "client": {"freshsales_id": c.freshsales_id, "name": c.name},
                "kind": r.kind,
                "campaign": r.campaign_label,
                "status_old": r.status_old,
                "status_new": r.status_new,
                "budget_old": str(r.budget_old) if r.budget_old is not None else None,
                "budget_new": str(r.budget_new) if r.budget_new is not None else None,
                "date_revert_due": _iso(r.date_revert_due),
                "date_range_name": r.date_range_name,
                "created_at": _iso(r.created_at),
                "scheduled": scheduled.get(r.id, []),
            }
            for r, c in rows
        ],
    }


@router.get("/mutations/dead")
async def list_dead_mutations(db: AsyncSession = Depends(get_db)):
    """Scheduled mutations that exhausted their retries and need an operator."""
    result = await db.execute(
        select(ScheduledMutation)
        .where(ScheduledMutation.status == ScheduledStatus.DEAD.value)
        .order_by(ScheduledMutation.not_before)
    )
    return {
        "dead": [
            {
                "id": str(s.id),
                "kind": s.kind,
                "role": s.role,
                "target_account_id": s.target_account_id,
                "target_budget_id": s.target_budget_id,
                "target_campaign_ids": s.target_campaign_ids,
                "new_value": s.new_value,
                "attempts": s.attempts,
                "last_error": s.last_error,
            }
            for s in result.scalars().all()
        ],
    }


@router.get("/statistics")
async def list_statistics(
    freshsales_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    q = select(StatisticRecord, Client).join(Client, StatisticRecord.client_id == Client.id)
    if freshsales_id:
        q = q.where(Client.freshsales_id == freshsales_id)
    result = await db.execute(q.order_by(StatisticRecord.created_at.desc()).limit(limit))
    return {
        "statistics": [
            {
                "id": str(s.id),
                "client": {"freshsales_id": c.freshsales_id, "name": c.name},
                "spendings": str(s.spendings),
                "clicks": s.clicks_count,
                "answered": s.answered_calls,
                "missed": s.missed_calls,
                "cost_per_call": str(s.cost_per_call),
                "click_to_call": str(s.click_to_call_pct),
                "date_range_name": s.date_range_name,
                "date_from": s.date_from,
                "date_to": s.date_to,
                "warnings": s.warnings or [],
                "created_at": _iso(s.created_at),
            }
            for s, c in result.all()
        ],
    }


@router.get("/activity")
async def list_activity(
    status: Optional[str] = Query(None, description="success, failed or critical"),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    q = select(ActivityLog)
    if status:
        q = q.where(ActivityLog.status == status)
    result = await db.execute(q.order_by(ActivityLog.created_at.desc()).limit(limit))
    return {
        "activity": [
            {
                "id": str(a.id),
                "action": a.action,
                "category": a.category,
                "description": a.description,
                "details": a.details,
                "entity_type": a.entity_type,
                "entity_id": a.entity_id,
                "status": a.status,
                "created_at": _iso(a.created_at),
            }
            for a in result.scalars().all()
        ],
    }

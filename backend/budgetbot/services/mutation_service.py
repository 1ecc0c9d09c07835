"""
Mutation Service — Pause budgets or campaigns now, restore them later.

A pause is applied synchronously through the gateway. Only once the
platform has accepted it do we persist, in one transaction, the audit
MutationRecord, a completed "apply" ScheduledMutation and a pending
"revert" ScheduledMutation that carries the value captured before the
pause. Reverts are executed by run_due_mutations(), which is driven by the
cron endpoint or scripts/run_scheduler.py and therefore survives restarts.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from budgetbot.dates import Duration, resolve_duration, revert_due
from budgetbot.errors import (
    MutationApplyFailure, MutationRevertFailure, UpstreamRateLimited, ValidationError,
)
from budgetbot.models import (
    ActivityLog, MutationKind, MutationRecord, ScheduledKind, ScheduledMutation,
    ScheduledRole, ScheduledStatus,
)
from budgetbot.schemas import Account, BudgetGroup, Campaign, CF_BUDGET_FEATURE
from budgetbot.services.client_service import get_or_create_client
from budgetbot.services.gateway import CAMPAIGN_ENABLED, CAMPAIGN_PAUSED, UpstreamGateway
from budgetbot.utils import local_now, to_naive_utc

logger = logging.getLogger(__name__)

# Video campaigns can't be mutated through the budget/status API we use
EXCLUDED_CHANNEL_TYPES = {"VIDEO"}

STATUS_ACTIVE = "Active"
STATUS_PAUSED = "Paused"


def format_revert_date(dt: datetime) -> str:
    """e.g. 'Monday Oct 19, 2026 09:00am'"""
    return dt.strftime("%A %b %d, %Y %I:%M") + dt.strftime("%p").lower()


def group_by_budget(campaigns: list[Campaign]) -> list[BudgetGroup]:
    """
    Group campaigns sharing a budget, in first-seen order.
    The order is what operators index into, so it must be stable for a
    given campaign listing.
    """
    groups: dict[tuple[str, str], BudgetGroup] = {}
    for c in campaigns:
        key = (c.account_id, c.budget_id)
        if key not in groups:
            groups[key] = BudgetGroup(
                account_id=c.account_id,
                budget_id=c.budget_id,
                current_budget=c.budget_amount,
                member_names=[c.name],
            )
        else:
            groups[key].member_names.append(c.name)
    return list(groups.values())


class PauseResult(BaseModel):
    revert_at: datetime  # business-local, aware
    date_range_name: str
    labels: list[str] = Field(default_factory=list)
    record_ids: list[str] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)
    bulk: bool = False

    @property
    def reverted(self) -> str:
        return format_revert_date(self.revert_at)


class RunReport(BaseModel):
    done: list[str] = Field(default_factory=list)
    retried: list[str] = Field(default_factory=list)
    dead: list[str] = Field(default_factory=list)

    def raise_for_dead(self) -> None:
        if self.dead:
            raise MutationRevertFailure(
                f"{len(self.dead)} scheduled mutation(s) exhausted retries: {', '.join(self.dead)}"
            )


class MutationScheduler:
    def __init__(
        self,
        db: AsyncSession,
        gateway: UpstreamGateway,
        timezone: str = "Australia/Sydney",
        paused_amount: Decimal = Decimal(1),
        revert_hour: int = 9,
        max_attempts: int = 8,
        backoff_seconds: int = 60,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.timezone = timezone
        self.paused_amount = Decimal(paused_amount)
        self.revert_hour = revert_hour
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.clock = clock or (lambda: local_now(timezone))

    @classmethod
    def from_settings(cls, db: AsyncSession, gateway: UpstreamGateway, settings, **kwargs) -> "MutationScheduler":
        return cls(
            db,
            gateway,
            timezone=settings.timezone,
            paused_amount=Decimal(settings.paused_budget_amount),
            revert_hour=settings.revert_hour,
            max_attempts=settings.revert_max_attempts,
            backoff_seconds=settings.revert_backoff_seconds,
            **kwargs,
        )

    # ── Listing ───────────────────────────────────────────────────────

    @staticmethod
    def require_budget_feature(account: Account) -> None:
        if not account.has_feature(CF_BUDGET_FEATURE):
            raise ValidationError("This feature is not enabled on your account")
        if not account.ad_platform_ids:
            raise ValidationError("No Google Ads accounts are configured for this account")

    async def _fetch_campaigns(self, account: Account) -> list[Campaign]:
        per_account = await asyncio.gather(
            *(self.gateway.list_campaigns(ad_id) for ad_id in account.ad_platform_ids)
        )
        return [c for batch in per_account for c in batch if c.channel_type not in EXCLUDED_CHANNEL_TYPES]

    async def list_budget_groups(self, account: Account) -> list[BudgetGroup]:
        """Active budget groups; budgets at or below the paused sentinel are hidden."""
        campaigns = await self._fetch_campaigns(account)
        active = [c for c in campaigns if c.budget_amount > self.paused_amount]
        return group_by_budget(active)

    # ── Budget pause ──────────────────────────────────────────────────

    async def pause_budget_group(self, account: Account, index: int, duration_code) -> PauseResult:
        """
        Pause the budget group at 1-based `index` of list_budget_groups().

        Bulk fallback: an index past the end of the list pauses EVERY
        listed group. This mirrors the chat flow's "all campaigns" option
        that is offered as the last menu entry.

        A group that fails is collected in `failures` and the rest are still
        attempted. MutationApplyFailure is raised only when no group was paused.
        """
        self.require_budget_feature(account)
        index = int(index)
        if index < 1:
            raise ValidationError(f"Campaign number must be 1 or greater, got {index}")

        groups = await self.list_budget_groups(account)
        if not groups:
            raise ValidationError("There are no active budgets to pause")

        bulk = index > len(groups)
        selected = groups if bulk else [groups[index - 1]]
        if bulk:
            logger.info(f"Index {index} > {len(groups)} groups for {account.crm_id}: pausing all")

        duration = resolve_duration(duration_code)
        due_local = revert_due(duration, self.clock(), self.revert_hour)
        client = await get_or_create_client(self.db, account)
        await self.db.commit()
        # A failed commit rolls back and expires the client row
        client_id = client.id

        result = PauseResult(revert_at=due_local, date_range_name=duration.name, bulk=bulk)
        for group in selected:
            try:
                record = await self._pause_group(client_id, group, due_local, duration)
            except MutationApplyFailure as e:
                result.failures.append(str(e))
                continue
            result.labels.append(group.label)
            result.record_ids.append(str(record.id))
        return self._finish(result, account)

    def _finish(self, result: PauseResult, account: Account) -> PauseResult:
        if result.failures and not result.labels:
            raise MutationApplyFailure("; ".join(result.failures))
        if result.failures:
            logger.warning(
                f"Partial pause for {account.crm_id}: {len(result.labels)} paused, "
                f"{len(result.failures)} failed: {'; '.join(result.failures)}"
            )
        return result

    async def _pause_group(
        self, client_id, group: BudgetGroup, due_local: datetime, duration: Duration,
    ) -> MutationRecord:
        try:
            await self.gateway.set_budget_amount(group.account_id, group.budget_id, self.paused_amount)
        except Exception as e:
            logger.error(f"Pause of budget {group.budget_id} ({group.label}) failed: {e}")
            raise MutationApplyFailure(f"Could not pause {group.label}: {e}") from e

        now = to_naive_utc(self.clock())
        due = to_naive_utc(due_local)
        record = MutationRecord(
            client_id=client_id,
            kind=MutationKind.BUDGET.value,
            campaign_label=group.label[:1024],
            status_old=STATUS_ACTIVE,
            status_new=STATUS_PAUSED,
            budget_old=group.current_budget,
            budget_new=self.paused_amount,
            date_revert_due=due,
            date_range_name=duration.name,
        )
        self.db.add(record)
        await self.db.flush()

        self.db.add(ScheduledMutation(
            kind=ScheduledKind.BUDGET_AMOUNT.value,
            role=ScheduledRole.APPLY.value,
            target_account_id=group.account_id,
            target_budget_id=group.budget_id,
            new_value=str(self.paused_amount),
            not_before=now,
            attempts=1,
            status=ScheduledStatus.DONE.value,
            completed_at=now,
            mutation_record_id=record.id,
        ))
        self.db.add(ScheduledMutation(
            kind=ScheduledKind.BUDGET_AMOUNT.value,
            role=ScheduledRole.REVERT.value,
            target_account_id=group.account_id,
            target_budget_id=group.budget_id,
            new_value=str(group.current_budget),
            not_before=due,
            mutation_record_id=record.id,
        ))
        self.db.add(ActivityLog(
            client_id=client_id,
            action="budget_paused",
            category="mutations",
            description=f"Paused {group.label} until {format_revert_date(due_local)}",
            details={
                "account_id": group.account_id,
                "budget_before": str(group.current_budget),
                "budget_after": str(self.paused_amount),
                "revert_due": due.isoformat(),
            },
            entity_type="budget",
            entity_id=group.budget_id,
        ))
        await self._commit_or_compensate(
            lambda: self.gateway.set_budget_amount(group.account_id, group.budget_id, group.current_budget),
            what=f"budget {group.budget_id}",
        )
        logger.info(
            f"Budget {group.account_id}/{group.budget_id} {group.current_budget} -> {self.paused_amount}, "
            f"revert due {due.isoformat()}Z"
        )
        return record

    async def _commit_or_compensate(self, undo, what: str) -> None:
        """
        The platform change is already live. If we can't persist the revert,
        undo the change now rather than leave it paused with nothing to restore it.
        """
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.critical(f"Could not persist mutation of {what}: {e}. Undoing platform change.")
            try:
                await undo()
            except Exception as undo_error:
                logger.critical(f"UNDO FAILED for {what}; live config left mutated: {undo_error}")
            raise MutationApplyFailure(f"Could not record mutation of {what}: {e}") from e

    # ── Campaign status ───────────────────────────────────────────────

    async def pause_campaigns(self, account: Account, duration_code) -> PauseResult:
        """
        Pause every enabled campaign on each ad account and schedule them
        back to ENABLED. Campaigns that were already paused stay untouched.
        Ad accounts that fail are reported in `failures` as in pause_budget_group.
        """
        if not account.ad_platform_ids:
            raise ValidationError("No Google Ads accounts are configured for this account")

        duration = resolve_duration(duration_code)
        due_local = revert_due(duration, self.clock(), self.revert_hour)
        client = await get_or_create_client(self.db, account)
        await self.db.commit()
        client_id = client.id

        campaigns = await self._fetch_campaigns(account)
        result = PauseResult(revert_at=due_local, date_range_name=duration.name, bulk=True)
        for ad_id in account.ad_platform_ids:
            enabled = [c for c in campaigns if c.account_id == ad_id and c.status == CAMPAIGN_ENABLED]
            if not enabled:
                continue
            try:
                record = await self._pause_account_campaigns(client_id, ad_id, enabled, due_local, duration)
            except MutationApplyFailure as e:
                result.failures.append(str(e))
                continue
            result.labels.append(record.campaign_label)
            result.record_ids.append(str(record.id))
        return self._finish(result, account)

    async def _pause_account_campaigns(
        self, client_id, ad_id: str, enabled: list[Campaign], due_local: datetime, duration: Duration,
    ) -> MutationRecord:
        ids = [c.campaign_id for c in enabled]
        label = ", ".join(c.name for c in enabled)
        try:
            await self.gateway.set_campaign_status(ad_id, ids, CAMPAIGN_PAUSED)
        except Exception as e:
            logger.error(f"Pausing campaigns on {ad_id} failed: {e}")
            raise MutationApplyFailure(f"Could not pause campaigns on {ad_id}: {e}") from e

        now = to_naive_utc(self.clock())
        due = to_naive_utc(due_local)
        record = MutationRecord(
            client_id=client_id,
            kind=MutationKind.STATUS.value,
            campaign_label=label[:1024],
            status_old=STATUS_ACTIVE,
            status_new=STATUS_PAUSED,
            date_revert_due=due,
            date_range_name=duration.name,
        )
        self.db.add(record)
        await self.db.flush()
        for role, value, not_before, status in (
            (ScheduledRole.APPLY, CAMPAIGN_PAUSED, now, ScheduledStatus.DONE),
            (ScheduledRole.REVERT, CAMPAIGN_ENABLED, due, ScheduledStatus.PENDING),
        ):
            self.db.add(ScheduledMutation(
                kind=ScheduledKind.CAMPAIGN_STATUS.value,
                role=role.value,
                target_account_id=ad_id,
                target_campaign_ids=ids,
                new_value=value,
                not_before=not_before,
                attempts=1 if status == ScheduledStatus.DONE else 0,
                status=status.value,
                completed_at=now if status == ScheduledStatus.DONE else None,
                mutation_record_id=record.id,
            ))
        self.db.add(ActivityLog(
            client_id=client_id,
            action="campaigns_paused",
            category="mutations",
            description=f"Paused {len(ids)} campaigns on {ad_id} until {format_revert_date(due_local)}",
            details={"campaign_ids": ids, "status_before": CAMPAIGN_ENABLED, "status_after": CAMPAIGN_PAUSED},
            entity_type="campaign",
            entity_id=ad_id,
        ))
        await self._commit_or_compensate(
            lambda: self.gateway.set_campaign_status(ad_id, ids, CAMPAIGN_ENABLED),
            what=f"campaigns on {ad_id}",
        )
        logger.info(f"Paused {len(ids)} campaigns on {ad_id}, revert due {due.isoformat()}Z")
        return record

    async def enable_campaigns(self, account: Account) -> int:
        """Enable every non-video campaign on every ad account now. No revert."""
        if not account.ad_platform_ids:
            raise ValidationError("No Google Ads accounts are configured for this account")
        client = await get_or_create_client(self.db, account)
        campaigns = await self._fetch_campaigns(account)
        count = 0
        for ad_id in account.ad_platform_ids:
            ids = [c.campaign_id for c in campaigns if c.account_id == ad_id]
            if not ids:
                continue
            await self.gateway.set_campaign_status(ad_id, ids, CAMPAIGN_ENABLED)
            count += len(ids)
            self.db.add(ActivityLog(
                client_id=client.id,
                action="campaigns_enabled",
                category="mutations",
                description=f"Enabled {len(ids)} campaigns on {ad_id}",
                details={"campaign_ids": ids, "status_after": CAMPAIGN_ENABLED},
                entity_type="campaign",
                entity_id=ad_id,
            ))
        await self.db.commit()
        return count

    # ── Runner ────────────────────────────────────────────────────────

    async def _execute(self, task: ScheduledMutation) -> None:
        if task.kind == ScheduledKind.BUDGET_AMOUNT.value:
            await self.gateway.set_budget_amount(
                task.target_account_id, task.target_budget_id, Decimal(task.new_value)
            )
        elif task.kind == ScheduledKind.CAMPAIGN_STATUS.value:
            await self.gateway.set_campaign_status(
                task.target_account_id, list(task.target_campaign_ids or []), task.new_value
            )
        else:
            raise ValueError(f"Unknown scheduled mutation kind: {task.kind}")

    def _backoff(self, attempts: int, error: Exception) -> timedelta:
        delay = self.backoff_seconds * 2 ** max(attempts - 1, 0)
        if isinstance(error, UpstreamRateLimited) and error.retry_after:
            delay = max(delay, error.retry_after)
        return timedelta(seconds=delay)

    async def _claim_next(self, now: datetime) -> Optional[ScheduledMutation]:
        result = await self.db.execute(
            select(ScheduledMutation)
            .where(
                ScheduledMutation.status == ScheduledStatus.PENDING.value,
                ScheduledMutation.not_before <= now,
            )
            .order_by(ScheduledMutation.not_before)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    async def run_due_mutations(self, now: Optional[datetime] = None, limit: int = 200) -> RunReport:
        """
        Execute every pending scheduled mutation whose not_before has passed.
        One row per transaction. Failures are retried with exponential
        backoff; after max_attempts the row is marked dead and raised as a
        critical alert. Nothing is ever dropped silently.
        """
        now = now or to_naive_utc(self.clock())
        report = RunReport()
        seen: set = set()

        for _ in range(limit):
            task = await self._claim_next(now)
            if task is None or task.id in seen:
                break
            seen.add(task.id)
            task_ref = f"{task.kind}:{task.target_account_id}/{task.target_budget_id or 'campaigns'}"

            try:
                await self._execute(task)
            except Exception as e:
                task.attempts = (task.attempts or 0) + 1
                task.last_error = str(e)[:2000]
                if task.attempts >= self.max_attempts:
                    task.status = ScheduledStatus.DEAD.value
                    alert = MutationRevertFailure(
                        f"{task.role} {task_ref} -> {task.new_value} failed {task.attempts} times: {e}"
                    )
                    logger.critical(str(alert))
                    self.db.add(ActivityLog(
                        action=f"{task.role}_failed",
                        category="mutations",
                        description=str(alert),
                        details={
                            "scheduled_mutation_id": str(task.id),
                            "target_account_id": task.target_account_id,
                            "target_budget_id": task.target_budget_id,
                            "target_campaign_ids": task.target_campaign_ids,
                            "new_value": task.new_value,
                            "error": str(e),
                        },
                        entity_type="scheduled_mutation",
                        entity_id=str(task.id),
                        status="critical",
                    ))
                    report.dead.append(str(task.id))
                else:
                    task.not_before = now + self._backoff(task.attempts, e)
                    logger.warning(
                        f"Scheduled {task.role} {task_ref} attempt {task.attempts} failed: {e}. "
                        f"Retrying at {task.not_before.isoformat()}Z"
                    )
                    report.retried.append(str(task.id))
            else:
                task.attempts = (task.attempts or 0) + 1
                task.status = ScheduledStatus.DONE.value
                task.completed_at = now
                task.last_error = None
                self.db.add(ActivityLog(
                    action=f"{task.kind}_{task.role}",
                    category="mutations",
                    description=f"{task.role.capitalize()} {task_ref} -> {task.new_value}",
                    details={
                        "scheduled_mutation_id": str(task.id),
                        "target_campaign_ids": task.target_campaign_ids,
                        "value_after": task.new_value,
                        "due": task.not_before.isoformat(),
                    },
                    entity_type="scheduled_mutation",
                    entity_id=str(task.id),
                ))
                logger.info(f"Scheduled {task.role} {task_ref} -> {task.new_value} done")
                report.done.append(str(task.id))
            await self.db.commit()

        if report.done or report.retried or report.dead:
            logger.info(
                f"Scheduled mutations: {len(report.done)} done, "
                f"{len(report.retried)} retrying, {len(report.dead)} dead"
            )
        return report

"""
Tests for budget pausing, campaign pausing and the durable revert runner.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from budgetbot.database import init_db, make_engine, make_session_factory
from budgetbot.errors import (
    MutationApplyFailure, MutationRevertFailure, UpstreamRateLimited, UpstreamUnavailable, ValidationError,
)
from budgetbot.models import ActivityLog, MutationRecord, ScheduledMutation
from budgetbot.services.mutation_service import MutationScheduler, format_revert_date

# 2026-10-15 09:00 Sydney (AEDT, UTC+11)
REVERT_DUE_UTC = datetime(2026, 10, 14, 22, 0)


def _scheduler(db, gateway, now, **kwargs):
    return MutationScheduler(db, gateway, clock=lambda: now, **kwargs)


async def _count(db, model, *where):
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar()


# ── Listing ───────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_budget_groups_exclude_video_and_paused(db, gateway, account, now):
    groups = await _scheduler(db, gateway, now).list_budget_groups(account)
    assert [g.display for g in groups] == [
        "Brand $50",
        "(Search A)(Search B) $30",
        "Remarketing $20",
    ]
    assert groups[1].budget_id == "b2"


@pytest.mark.anyio
async def test_pause_requires_feature_flag(db, gateway, account, now):
    account.feature_flags = set()
    with pytest.raises(ValidationError):
        await _scheduler(db, gateway, now).pause_budget_group(account, 1, 1)
    assert gateway.budget_writes == []


# ── Pausing a budget group ────────────────────────────────────────────

@pytest.mark.anyio
async def test_pause_budget_group_records_and_schedules_revert(db, gateway, account, now):
    result = await _scheduler(db, gateway, now).pause_budget_group(account, 2, 1)

    assert gateway.budgets[("1112223333", "b2")] == Decimal(1)
    assert gateway.budgets[("1112223333", "b1")] == Decimal(50)
    assert result.labels == ["(Search A)(Search B)"]
    assert result.reverted == "Thursday Oct 15, 2026 09:00am"
    assert result.date_range_name == "Today"

    record = (await db.execute(select(MutationRecord))).scalar_one()
    assert record.campaign_label == "(Search A)(Search B)"
    assert record.budget_old == Decimal(30)
    assert record.budget_new == Decimal(1)
    assert record.status_old == "Active"
    assert record.status_new == "Paused"
    assert record.date_revert_due == REVERT_DUE_UTC

    rows = (await db.execute(select(ScheduledMutation).order_by(ScheduledMutation.role))).scalars().all()
    apply_row, revert_row = rows
    assert (apply_row.role, apply_row.status) == ("apply", "done")
    assert (revert_row.role, revert_row.status) == ("revert", "pending")
    assert revert_row.new_value == "30"
    assert revert_row.not_before == REVERT_DUE_UTC
    assert revert_row.mutation_record_id == record.id

    assert await _count(db, ActivityLog, ActivityLog.action == "budget_paused") == 1


@pytest.mark.anyio
async def test_pause_index_past_end_pauses_every_group(db, gateway, account, now):
    result = await _scheduler(db, gateway, now).pause_budget_group(account, 5, 4)

    assert result.bulk is True
    assert len(result.labels) == 3
    for key in [("1112223333", "b1"), ("1112223333", "b2"), ("4445556666", "b5")]:
        assert gateway.budgets[key] == Decimal(1)
    # Video budget untouched
    assert gateway.budgets[("1112223333", "b3")] == Decimal(40)
    assert await _count(db, MutationRecord) == 3
    assert result.reverted == "Wednesday Oct 21, 2026 09:00am"


@pytest.mark.anyio
async def test_pause_rejects_index_below_one(db, gateway, account, now):
    with pytest.raises(ValidationError):
        await _scheduler(db, gateway, now).pause_budget_group(account, 0, 1)


@pytest.mark.anyio
async def test_pause_with_nothing_active_is_rejected(db, gateway, account, now):
    for key in list(gateway.budgets):
        gateway.budgets[key] = Decimal(1)
    with pytest.raises(ValidationError):
        await _scheduler(db, gateway, now).pause_budget_group(account, 1, 1)


@pytest.mark.anyio
async def test_unknown_duration_falls_back_to_one_day(db, gateway, account, now):
    result = await _scheduler(db, gateway, now).pause_budget_group(account, 1, 42)
    assert result.date_range_name == "Today"
    assert result.revert_at.day == 15


@pytest.mark.anyio
async def test_apply_failure_writes_nothing(db, gateway, account, now):
    gateway.budget_errors.append(UpstreamUnavailable("Google Ads down"))

    with pytest.raises(MutationApplyFailure):
        await _scheduler(db, gateway, now).pause_budget_group(account, 1, 1)

    assert await _count(db, MutationRecord) == 0
    assert await _count(db, ScheduledMutation) == 0
    assert gateway.budgets[("1112223333", "b1")] == Decimal(50)


@pytest.mark.anyio
async def test_failed_commit_undoes_platform_change(db, gateway, account, now):
    scheduler = _scheduler(db, gateway, now)
    real_commit = db.commit
    calls = {"n": 0}

    async def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("database went away")
        await real_commit()

    with patch.object(db, "commit", side_effect=flaky_commit):
        with pytest.raises(MutationApplyFailure):
            await scheduler.pause_budget_group(account, 1, 1)

    assert [w[2] for w in gateway.budget_writes] == [Decimal(1), Decimal(50)]
    assert gateway.budgets[("1112223333", "b1")] == Decimal(50)
    assert await _count(db, ScheduledMutation) == 0


@pytest.mark.anyio
async def test_bulk_pause_continues_past_a_failed_group(db, gateway, account, now):
    gateway.budget_errors.extend([None, UpstreamUnavailable("blip")])

    result = await _scheduler(db, gateway, now).pause_budget_group(account, 5, 1)

    assert result.labels == ["Brand", "Remarketing"]
    assert result.failures == ["Could not pause (Search A)(Search B): blip"]
    assert result.reverted == "Thursday Oct 15, 2026 09:00am"
    assert gateway.budgets[("1112223333", "b1")] == Decimal(1)
    assert gateway.budgets[("1112223333", "b2")] == Decimal(30)
    assert gateway.budgets[("4445556666", "b5")] == Decimal(1)
    assert await _count(db, MutationRecord) == 2
    assert await _count(
        db, ScheduledMutation, ScheduledMutation.role == "revert", ScheduledMutation.status == "pending",
    ) == 2


@pytest.mark.anyio
async def test_bulk_pause_raises_when_every_group_fails(db, gateway, account, now):
    gateway.budget_errors.extend([UpstreamUnavailable("down")] * 3)

    with pytest.raises(MutationApplyFailure):
        await _scheduler(db, gateway, now).pause_budget_group(account, 5, 1)

    assert await _count(db, MutationRecord) == 0
    assert await _count(db, ScheduledMutation) == 0


@pytest.mark.anyio
async def test_bulk_pause_keeps_going_after_a_failed_commit(db, gateway, account, now):
    scheduler = _scheduler(db, gateway, now)
    real_commit = db.commit
    calls = {"n": 0}

    async def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 3:
            raise RuntimeError("database went away")
        await real_commit()

    with patch.object(db, "commit", side_effect=flaky_commit):
        result = await scheduler.pause_budget_group(account, 5, 1)

    assert result.labels == ["Brand", "Remarketing"]
    assert len(result.failures) == 1
    assert "budget b2" in result.failures[0]
    # b2 was paused, then restored when its records could not be saved
    assert [(w[1], w[2]) for w in gateway.budget_writes] == [
        ("b1", Decimal(1)), ("b2", Decimal(1)), ("b2", Decimal(30)), ("b5", Decimal(1)),
    ]
    assert await _count(db, MutationRecord) == 2


@pytest.mark.anyio
async def test_long_budget_label_is_truncated(db, gateway, account, now):
    gateway.add_campaign("1112223333", "c7", "b6", "x" * 1100, 25)

    result = await _scheduler(db, gateway, now).pause_budget_group(account, 3, 1)

    assert result.labels == ["x" * 1100]
    record = (await db.execute(select(MutationRecord))).scalar_one()
    assert len(record.campaign_label) == 1024


# ── Revert runner ─────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_revert_not_run_before_due(db, gateway, account, now):
    scheduler = _scheduler(db, gateway, now)
    await scheduler.pause_budget_group(account, 1, 1)

    report = await scheduler.run_due_mutations(now=REVERT_DUE_UTC - timedelta(minutes=1))
    assert report.done == []
    assert gateway.budgets[("1112223333", "b1")] == Decimal(1)


@pytest.mark.anyio
async def test_revert_survives_restart(db_url, engine, gateway, account, now):
    factory = make_session_factory(engine)
    async with factory() as session:
        result = await _scheduler(session, gateway, now).pause_budget_group(account, 1, 3)
        assert result.date_range_name == "Next 3 Days"
    await engine.dispose()

    due = REVERT_DUE_UTC + timedelta(days=2)

    # New process: fresh engine on the same database file
    restarted = make_engine(db_url)
    await init_db(bind=restarted)
    try:
        async with make_session_factory(restarted)() as session:
            early = await _scheduler(session, gateway, now).run_due_mutations(now=due - timedelta(minutes=1))
            assert early.done == []

            report = await _scheduler(session, gateway, now).run_due_mutations(now=due)
            assert len(report.done) == 1
            assert gateway.budgets[("1112223333", "b1")] == Decimal(50)

            revert = (await session.execute(
                select(ScheduledMutation).where(ScheduledMutation.role == "revert")
            )).scalar_one()
            assert revert.status == "done"
            assert revert.completed_at == due

            # Second pass finds nothing left to do
            again = await _scheduler(session, gateway, now).run_due_mutations(now=due + timedelta(hours=1))
            assert again.done == []
            assert len(gateway.budget_writes) == 2
    finally:
        await restarted.dispose()


@pytest.mark.anyio
async def test_revert_retries_with_backoff(db, gateway, account, now):
    scheduler = _scheduler(db, gateway, now, max_attempts=5, backoff_seconds=60)
    await scheduler.pause_budget_group(account, 1, 1)
    gateway.budget_errors.extend([UpstreamUnavailable("blip"), UpstreamUnavailable("blip")])

    first = await scheduler.run_due_mutations(now=REVERT_DUE_UTC)
    assert len(first.retried) == 1
    row = (await db.execute(select(ScheduledMutation).where(ScheduledMutation.role == "revert"))).scalar_one()
    assert row.attempts == 1
    assert row.not_before == REVERT_DUE_UTC + timedelta(seconds=60)
    assert row.last_error == "blip"

    second = await scheduler.run_due_mutations(now=REVERT_DUE_UTC + timedelta(seconds=60))
    assert len(second.retried) == 1
    await db.refresh(row)
    assert row.not_before == REVERT_DUE_UTC + timedelta(seconds=60 + 120)

    third = await scheduler.run_due_mutations(now=REVERT_DUE_UTC + timedelta(seconds=180))
    assert len(third.done) == 1
    assert gateway.budgets[("1112223333", "b1")] == Decimal(50)


@pytest.mark.anyio
async def test_rate_limit_retry_after_extends_backoff(db, gateway, account, now):
    scheduler = _scheduler(db, gateway, now, backoff_seconds=60)
    await scheduler.pause_budget_group(account, 1, 1)
    gateway.budget_errors.append(UpstreamRateLimited("slow down", retry_after=900))

    await scheduler.run_due_mutations(now=REVERT_DUE_UTC)
    row = (await db.execute(select(ScheduledMutation).where(ScheduledMutation.role == "revert"))).scalar_one()
    assert row.not_before == REVERT_DUE_UTC + timedelta(seconds=900)


@pytest.mark.anyio
async def test_revert_goes_dead_and_alerts(db, gateway, account, now):
    scheduler = _scheduler(db, gateway, now, max_attempts=2, backoff_seconds=10)
    await scheduler.pause_budget_group(account, 1, 1)
    gateway.budget_errors.extend([UpstreamUnavailable("down")] * 2)

    await scheduler.run_due_mutations(now=REVERT_DUE_UTC)
    report = await scheduler.run_due_mutations(now=REVERT_DUE_UTC + timedelta(seconds=10))

    assert len(report.dead) == 1
    with pytest.raises(MutationRevertFailure):
        report.raise_for_dead()

    row = (await db.execute(select(ScheduledMutation).where(ScheduledMutation.role == "revert"))).scalar_one()
    assert row.status == "dead"
    assert row.attempts == 2

    alert = (await db.execute(select(ActivityLog).where(ActivityLog.status == "critical"))).scalar_one()
    assert alert.details["new_value"] == "50"
    assert alert.entity_id == str(row.id)

    # Dead rows are never picked up again
    later = await scheduler.run_due_mutations(now=REVERT_DUE_UTC + timedelta(days=1))
    assert later.done == [] and later.dead == []


# ── Campaign status ───────────────────────────────────────────────────

@pytest.mark.anyio
async def test_pause_campaigns_only_touches_enabled_and_reverts_them(db, gateway, account, now):
    gateway.statuses[("4445556666", "c5")] = "PAUSED"
    gateway.statuses[("4445556666", "c6")] = "PAUSED"
    scheduler = _scheduler(db, gateway, now)

    result = await scheduler.pause_campaigns(account, 2)
    assert result.date_range_name == "Today and Tomorrow"
    assert result.reverted == "Friday Oct 16, 2026 09:00am"
    # VIDEO excluded; the second account had nothing enabled
    assert gateway.status_writes == [("1112223333", ["c1", "c2", "c3"], "PAUSED")]

    record = (await db.execute(select(MutationRecord))).scalar_one()
    assert record.kind == "status"
    assert record.budget_old is None

    due = REVERT_DUE_UTC + timedelta(days=1)
    report = await scheduler.run_due_mutations(now=due)
    assert len(report.done) == 1
    assert gateway.status_writes[-1] == ("1112223333", ["c1", "c2", "c3"], "ENABLED")
    assert gateway.statuses[("4445556666", "c6")] == "PAUSED"


@pytest.mark.anyio
async def test_status_apply_failure_writes_nothing(db, gateway, account, now):
    gateway.status_errors.extend([UpstreamUnavailable("down")] * 2)

    with pytest.raises(MutationApplyFailure):
        await _scheduler(db, gateway, now).pause_campaigns(account, 1)

    assert gateway.status_writes == []
    assert gateway.statuses[("1112223333", "c1")] == "ENABLED"
    assert await _count(db, MutationRecord) == 0
    assert await _count(db, ScheduledMutation) == 0


@pytest.mark.anyio
async def test_status_pause_reports_failed_account(db, gateway, account, now):
    gateway.status_errors.append(UpstreamUnavailable("down"))

    result = await _scheduler(db, gateway, now).pause_campaigns(account, 1)

    assert result.labels == ["Already Paused, Remarketing"]
    assert result.failures == ["Could not pause campaigns on 1112223333: down"]
    assert gateway.statuses[("1112223333", "c1")] == "ENABLED"
    assert gateway.statuses[("4445556666", "c6")] == "PAUSED"
    record = (await db.execute(select(MutationRecord))).scalar_one()
    assert record.kind == "status"
    assert await _count(db, ScheduledMutation, ScheduledMutation.target_account_id == "1112223333") == 0


@pytest.mark.anyio
async def test_status_failed_commit_undoes_platform_change(db, gateway, account, now):
    gateway.statuses[("4445556666", "c5")] = "PAUSED"
    gateway.statuses[("4445556666", "c6")] = "PAUSED"
    scheduler = _scheduler(db, gateway, now)
    real_commit = db.commit
    calls = {"n": 0}

    async def flaky_commit():
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("database went away")
        await real_commit()

    with patch.object(db, "commit", side_effect=flaky_commit):
        with pytest.raises(MutationApplyFailure):
            await scheduler.pause_campaigns(account, 1)

    assert gateway.status_writes == [
        ("1112223333", ["c1", "c2", "c3"], "PAUSED"),
        ("1112223333", ["c1", "c2", "c3"], "ENABLED"),
    ]
    assert gateway.statuses[("1112223333", "c1")] == "ENABLED"
    assert await _count(db, MutationRecord) == 0
    assert await _count(db, ScheduledMutation) == 0


@pytest.mark.anyio
async def test_enable_campaigns_is_immediate(db, gateway, account, now):
    count = await _scheduler(db, gateway, now).enable_campaigns(account)
    assert count == 5
    assert {w[0] for w in gateway.status_writes} == {"1112223333", "4445556666"}
    assert await _count(db, ScheduledMutation) == 0
    assert await _count(db, ActivityLog, ActivityLog.action == "campaigns_enabled") == 2


def test_format_revert_date():
    assert format_revert_date(datetime(2026, 10, 19, 21, 5)) == "Monday Oct 19, 2026 09:05pm"

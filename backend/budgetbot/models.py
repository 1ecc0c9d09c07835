"""
Budget Bot — Database Models
Audit trail of budget/status mutations, statistic snapshots, the durable
scheduled-mutation queue, and the activity log.
"""

import uuid
import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Text, Integer, Numeric, DateTime, JSON, ForeignKey, Index, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from budgetbot.database import Base
from budgetbot.utils import utcnow


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class MutationKind(str, enum.Enum):
    BUDGET = "budget"
    STATUS = "status"


class ScheduledKind(str, enum.Enum):
    BUDGET_AMOUNT = "budget_amount"
    CAMPAIGN_STATUS = "campaign_status"


class ScheduledRole(str, enum.Enum):
    APPLY = "apply"
    REVERT = "revert"


class ScheduledStatus(str, enum.Enum):
    PENDING = "pending"
    DONE = "done"
    DEAD = "dead"  # retries exhausted, needs an operator


# ══════════════════════════════════════════════════════════════════════
#  CLIENTS — Local reference to a CRM (FreshSales) account
# ══════════════════════════════════════════════════════════════════════

class Client(Base):
    """CRM account reference that mutation and statistic records hang off."""
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    freshsales_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    mutation_records: Mapped[list["MutationRecord"]] = relationship("MutationRecord", back_populates="client")
    statistic_records: Mapped[list["StatisticRecord"]] = relationship("StatisticRecord", back_populates="client")

    __table_args__ = (
        Index("ix_clients_freshsales_id", "freshsales_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  MUTATION RECORDS — Immutable audit entry per pause
# ══════════════════════════════════════════════════════════════════════

class MutationRecord(Base):
    """
    Written once when an operator pauses a budget group or campaigns.
    Never updated; the revert runs off its own scheduled_mutations row.
    """
    __tablename__ = "mutation_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # budget, status
    campaign_label: Mapped[str] = mapped_column(String(1024), nullable=False)
    status_old: Mapped[str] = mapped_column(String(20), nullable=False)
    status_new: Mapped[str] = mapped_column(String(20), nullable=False)
    budget_old: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=True)
    budget_new: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=True)
    date_revert_due: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # naive UTC
    date_range_name: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    client: Mapped["Client"] = relationship("Client", back_populates="mutation_records")

    __table_args__ = (
        Index("ix_mutation_records_client_id", "client_id"),
        Index("ix_mutation_records_created_at", "created_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  STATISTIC RECORDS — Snapshot of one statistics report
# ══════════════════════════════════════════════════════════════════════

class StatisticRecord(Base):
    """Computed metric bundle for one account and named date range."""
    __tablename__ = "statistic_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    spendings: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    clicks_count: Mapped[int] = mapped_column(Integer, nullable=False)
    answered_calls: Mapped[int] = mapped_column(Integer, nullable=False)
    missed_calls: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_per_call: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    click_to_call_pct: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    date_range_name: Mapped[str] = mapped_column(String(50), nullable=False)
    date_from: Mapped[str] = mapped_column(String(32), nullable=False)
    date_to: Mapped[str] = mapped_column(String(32), nullable=False)
    warnings: Mapped[list] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    client: Mapped["Client"] = relationship("Client", back_populates="statistic_records")

    __table_args__ = (
        Index("ix_statistic_records_client_id", "client_id"),
        Index("ix_statistic_records_created_at", "created_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  SCHEDULED MUTATIONS — Durable apply/revert queue
# ══════════════════════════════════════════════════════════════════════

class ScheduledMutation(Base):
    """
    One gateway call to be made no earlier than not_before.
    The revert row carries the original value captured at pause time and is
    the only thing the runner reads to restore it.
    """
    __tablename__ = "scheduled_mutations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)  # budget_amount, campaign_status
    role: Mapped[str] = mapped_column(String(10), nullable=False)  # apply, revert
    target_account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_budget_id: Mapped[str] = mapped_column(String(64), nullable=True)
    target_campaign_ids: Mapped[list] = mapped_column(JSON, nullable=True)
    new_value: Mapped[str] = mapped_column(String(64), nullable=False)
    not_before: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # naive UTC
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=ScheduledStatus.PENDING.value)
    last_error: Mapped[str] = mapped_column(Text, nullable=True)
    mutation_record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("mutation_records.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_scheduled_mutations_due", "status", "not_before"),
        Index("ix_scheduled_mutations_record", "mutation_record_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  ACTIVITY LOG — Every live-configuration change and alert
# ══════════════════════════════════════════════════════════════════════

class ActivityLog(Base):
    """Logs all actions taken in the system for audit trail."""
    __tablename__ = "activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # mutations, notifier, statistics
    description: Mapped[str] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=True)  # budget, campaign, scheduled_mutation
    entity_id: Mapped[str] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="success")  # success, failed, critical
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_activity_log_client_id", "client_id"),
        Index("ix_activity_log_category", "category"),
        Index("ix_activity_log_action", "action"),
        Index("ix_activity_log_created_at", "created_at"),
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
    )

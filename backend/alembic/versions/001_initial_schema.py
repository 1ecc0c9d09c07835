"""Initial schema: clients, mutation and statistic records, scheduled mutations, activity log.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    existing = insp.get_table_names()

    if "scheduled_mutations" in existing:
        return  # Already applied (e.g. from create_all)

    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("freshsales_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("freshsales_id"),
    )
    op.create_index("ix_clients_freshsales_id", "clients", ["freshsales_id"], unique=False)

    op.create_table(
        "mutation_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("campaign_label", sa.String(1024), nullable=False),
        sa.Column("status_old", sa.String(20), nullable=False),
        sa.Column("status_new", sa.String(20), nullable=False),
        sa.Column("budget_old", sa.Numeric(14, 2), nullable=True),
        sa.Column("budget_new", sa.Numeric(14, 2), nullable=True),
        sa.Column("date_revert_due", sa.DateTime(), nullable=False),
        sa.Column("date_range_name", sa.String(50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mutation_records_client_id", "mutation_records", ["client_id"], unique=False)
    op.create_index("ix_mutation_records_created_at", "mutation_records", ["created_at"], unique=False)

    op.create_table(
        "statistic_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("spendings", sa.Numeric(14, 2), nullable=False),
        sa.Column("clicks_count", sa.Integer(), nullable=False),
        sa.Column("answered_calls", sa.Integer(), nullable=False),
        sa.Column("missed_calls", sa.Integer(), nullable=False),
        sa.Column("cost_per_call", sa.Numeric(14, 2), nullable=False),
        sa.Column("click_to_call_pct", sa.Numeric(10, 2), nullable=False),
        sa.Column("date_range_name", sa.String(50), nullable=False),
        sa.Column("date_from", sa.String(32), nullable=False),
        sa.Column("date_to", sa.String(32), nullable=False),
        sa.Column("warnings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_statistic_records_client_id", "statistic_records", ["client_id"], unique=False)
    op.create_index("ix_statistic_records_created_at", "statistic_records", ["created_at"], unique=False)

    op.create_table(
        "scheduled_mutations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("role", sa.String(10), nullable=False),
        sa.Column("target_account_id", sa.String(64), nullable=False),
        sa.Column("target_budget_id", sa.String(64), nullable=True),
        sa.Column("target_campaign_ids", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.String(64), nullable=False),
        sa.Column("not_before", sa.DateTime(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("status", sa.String(20), nullable=True, server_default="pending"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("mutation_record_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["mutation_record_id"], ["mutation_records.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scheduled_mutations_due", "scheduled_mutations", ["status", "not_before"], unique=False)
    op.create_index("ix_scheduled_mutations_record", "scheduled_mutations", ["mutation_record_id"], unique=False)

    op.create_table(
        "activity_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="success"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_log_client_id", "activity_log", ["client_id"], unique=False)
    op.create_index("ix_activity_log_category", "activity_log", ["category"], unique=False)
    op.create_index("ix_activity_log_action", "activity_log", ["action"], unique=False)
    op.create_index("ix_activity_log_created_at", "activity_log", ["created_at"], unique=False)
    op.create_index("ix_activity_log_entity", "activity_log", ["entity_type", "entity_id"], unique=False)


def downgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "scheduled_mutations" not in insp.get_table_names():
        return

    op.drop_table("activity_log")
    op.drop_table("scheduled_mutations")
    op.drop_table("statistic_records")
    op.drop_table("mutation_records")
    op.drop_table("clients")

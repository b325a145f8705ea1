"""Create report job, report and webhook audit tables.

Revision ID: 4c1f2a9e7b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "4c1f2a9e7b10"
down_revision = None
branch_labels = None
depends_on = None

_UTC_NOW = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")
_REPORT_TABLES = ("greeting_reports", "org_reports", "requirement_reports")


def _create_report_table(name: str) -> None:
  op.create_table(
    name,
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=True),
    sa.Column("research_status", sa.String(), server_default="idle", nullable=False),
    sa.Column("research_report", sa.Text(), nullable=True),
    sa.Column("research_metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("webhook_status", sa.String(), server_default="pending", nullable=False),
    sa.Column("webhook_job_id", sa.String(), nullable=True),
    sa.Column("webhook_attempts", sa.Integer(), server_default="0", nullable=False),
    sa.Column("webhook_last_attempt", sa.String(), nullable=True),
    sa.Column("webhook_response", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f(f"ix_{name}_user_id"), name, ["user_id"], unique=False)
  # Batch webhook retry scans by status and attempt count.
  op.create_index(f"ix_{name}_webhook_retry", name, ["webhook_status", "webhook_attempts"], unique=False)


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "report_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("percent", sa.Integer(), server_default="0", nullable=False),
    sa.Column("eta_seconds", sa.Integer(), server_default="0", nullable=False),
    sa.Column("prompt", sa.Text(), nullable=False),
    sa.Column("model", sa.String(), nullable=False),
    sa.Column("temperature", sa.Float(), nullable=False),
    sa.Column("max_tokens", sa.Integer(), nullable=False),
    sa.Column("result", sa.Text(), nullable=True),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("idempotency_key", sa.String(), nullable=True),
    sa.Column("user_id", sa.String(), nullable=True),
    sa.Column("summary_id", sa.String(), nullable=True),
    sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("created_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_UTC_NOW, nullable=False),
    sa.Column("started_at", sa.String(), nullable=True),
    sa.Column("completed_at", sa.String(), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
    sa.UniqueConstraint("idempotency_key"),
  )
  op.create_index(op.f("ix_report_jobs_status"), "report_jobs", ["status"], unique=False)
  op.create_index(op.f("ix_report_jobs_user_id"), "report_jobs", ["user_id"], unique=False)
  op.create_index("ix_report_jobs_status_created", "report_jobs", ["status", "created_at"], unique=False)

  for name in _REPORT_TABLES:
    _create_report_table(name)

  op.create_table(
    "webhook_audit",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("webhook_type", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("report_id", sa.String(), nullable=True),
    sa.Column("report_table", sa.String(), nullable=True),
    sa.Column("request_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("response_status", sa.Integer(), nullable=False),
    sa.Column("response_body", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("attempt_number", sa.Integer(), server_default="1", nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_webhook_audit_job_id"), "webhook_audit", ["job_id"], unique=False)
  op.create_index(op.f("ix_webhook_audit_report_id"), "webhook_audit", ["report_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_webhook_audit_report_id"), table_name="webhook_audit")
  op.drop_index(op.f("ix_webhook_audit_job_id"), table_name="webhook_audit")
  op.drop_table("webhook_audit")
  for name in reversed(_REPORT_TABLES):
    op.drop_index(f"ix_{name}_webhook_retry", table_name=name)
    op.drop_index(op.f(f"ix_{name}_user_id"), table_name=name)
    op.drop_table(name)
  op.drop_index("ix_report_jobs_status_created", table_name="report_jobs")
  op.drop_index(op.f("ix_report_jobs_user_id"), table_name="report_jobs")
  op.drop_index(op.f("ix_report_jobs_status"), table_name="report_jobs")
  op.drop_table("report_jobs")

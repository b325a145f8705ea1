from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

_UTC_NOW_TEXT = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class ReportJob(Base):
  __tablename__ = "report_jobs"
  __table_args__ = (Index("ix_report_jobs_status_created", "status", "created_at"),)

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  eta_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  prompt: Mapped[str] = mapped_column(Text, nullable=False)
  model: Mapped[str] = mapped_column(String, nullable=False)
  temperature: Mapped[float] = mapped_column(Float, nullable=False)
  max_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
  result: Mapped[str | None] = mapped_column(Text, nullable=True)
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
  user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  summary_id: Mapped[str | None] = mapped_column(String, nullable=True)
  metadata_json: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)
  started_at: Mapped[str | None] = mapped_column(String, nullable=True)
  completed_at: Mapped[str | None] = mapped_column(String, nullable=True)


class _ReportColumns:
  """Columns shared by every report table that receives research results."""

  id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  research_status: Mapped[str] = mapped_column(String, nullable=False, server_default="idle")
  research_report: Mapped[str | None] = mapped_column(Text, nullable=True)
  research_metadata: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  webhook_status: Mapped[str] = mapped_column(String, nullable=False, server_default="pending")
  webhook_job_id: Mapped[str | None] = mapped_column(String, nullable=True)
  webhook_attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
  webhook_last_attempt: Mapped[str | None] = mapped_column(String, nullable=True)
  webhook_response: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_UTC_NOW_TEXT)


class GreetingReport(_ReportColumns, Base):
  __tablename__ = "greeting_reports"


class OrgReport(_ReportColumns, Base):
  __tablename__ = "org_reports"


class RequirementReport(_ReportColumns, Base):
  __tablename__ = "requirement_reports"


REPORT_MODELS: dict[str, type[_ReportColumns]] = {
  GreetingReport.__tablename__: GreetingReport,
  OrgReport.__tablename__: OrgReport,
  RequirementReport.__tablename__: RequirementReport,
}


class WebhookAudit(Base):
  __tablename__ = "webhook_audit"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  webhook_type: Mapped[str] = mapped_column(String, nullable=False)
  job_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  report_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  report_table: Mapped[str | None] = mapped_column(String, nullable=True)
  request_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  response_status: Mapped[int] = mapped_column(Integer, nullable=False)
  response_body: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

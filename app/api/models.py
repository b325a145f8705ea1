from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator, model_validator

from app.jobs.models import JobStatus

ProviderName = Literal["perplexity", "anthropic", "openai", "gemini"]


def _blank_to_none(value: Any) -> Any:
  if isinstance(value, str) and not value.strip():
    return None
  return value


class ReportJobRequest(BaseModel):
  """Request payload for asynchronous research report generation."""

  prompt: StrictStr = Field(min_length=1, description="Research prompt sent to the model.", examples=["Summarize the market for industrial heat pumps in Germany."])
  model: StrictStr | None = Field(default=None, description="Optional model alias; normalized for the primary provider.", examples=["sonar-pro"])
  temperature: float | None = Field(default=None, ge=0, le=2, description="Sampling temperature (default 0.2).")
  max_tokens: int | None = Field(default=None, gt=0, description="Completion budget (default 2600).")
  summary_id: StrictStr | None = Field(default=None, description="Optional caller summary reference.")
  user_id: StrictStr | None = Field(default=None, description="Optional owning user id.")
  report_type: StrictStr | None = Field(default=None, description="Report type to notify on completion (greeting, org, requirement).")
  report_id: StrictStr | None = Field(default=None, description="Report row that receives the outcome.")
  metadata: dict[str, Any] | None = Field(default=None, description="Free-form metadata stored with the job.")
  idempotency_key: StrictStr | None = Field(default=None, description="Optional client key; the Idempotency-Key header takes precedence.")
  model_config = ConfigDict(extra="ignore")

  @model_validator(mode="before")
  @classmethod
  def drop_blank_optionals(cls, values: Any) -> Any:
    if not isinstance(values, dict):
      return values
    data = dict(values)
    for key in ("model", "summary_id", "user_id", "report_type", "report_id", "idempotency_key"):
      data[key] = _blank_to_none(data.get(key))
    return data


class JobCreateResponse(BaseModel):
  """Response returned after queuing a job."""

  job_id: str
  status_url: str


class JobStatusResponse(BaseModel):
  """Polling view of a job."""

  job_id: str
  status: JobStatus
  percent: int = 0
  eta_seconds: int = 0
  result: str | None = None
  error: str | None = None


class ChatMessageIn(BaseModel):
  role: Literal["system", "user", "assistant"]
  content: StrictStr
  model_config = ConfigDict(extra="ignore")


class ChatCompletionRequest(BaseModel):
  """Synchronous chat completion through the provider chain."""

  messages: list[ChatMessageIn] = Field(min_length=1, description="Conversation turns; at least one user message is required.")
  model: StrictStr | None = Field(default=None, description="Optional model alias for the first provider tried.")
  temperature: float | None = Field(default=None, ge=0, le=2)
  max_tokens: int | None = Field(default=None, gt=0)
  provider: ProviderName | None = Field(default=None, description="Pin a single provider instead of the fallback chain.")
  fallback: bool = Field(default=False, description="With a provider set, try it first and fall back through the remaining chain.")
  model_config = ConfigDict(extra="ignore")

  @field_validator("messages")
  @classmethod
  def require_user_message(cls, messages: list[ChatMessageIn]) -> list[ChatMessageIn]:
    if not any(message.role == "user" and message.content.strip() for message in messages):
      raise ValueError("At least one non-empty user message is required.")
    return messages


class ChatCompletionResponse(BaseModel):
  content: str
  model: str
  provider: str


class WebhookPayload(BaseModel):
  """Inbound completion webhook body."""

  job_id: StrictStr = Field(min_length=1)
  report_id: StrictStr = Field(min_length=1)
  report_type: StrictStr = Field(min_length=1)
  research_report: str | None = None
  research_status: Literal["completed", "failed"] = "completed"
  research_metadata: dict[str, Any] | None = None
  final_data: dict[str, Any] | None = None
  error: str | None = None
  retry_attempt: bool = False
  model_config = ConfigDict(extra="ignore")


class WebhookRetryRequest(BaseModel):
  """Manually re-send the stored outcome of one report."""

  report_type: StrictStr = Field(min_length=1)
  report_id: StrictStr = Field(min_length=1)
  webhook_type: StrictStr = Field(default="final-report", min_length=1)
  model_config = ConfigDict(extra="ignore")


class WebhookRetryResponse(BaseModel):
  success: bool
  message: str | None = None
  error: str | None = None
  response: Any = None


class WebhookBatchRetryResponse(BaseModel):
  success: bool = True
  message: str = "Webhook retry batch completed"
  processed: int
  successes: int
  failures: int
  errors: list[str] = Field(default_factory=list)

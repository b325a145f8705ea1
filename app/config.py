"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

KNOWN_PROVIDERS: tuple[str, ...] = ("perplexity", "anthropic", "openai", "gemini")


@dataclass(frozen=True)
class ProviderSettings:
  """Credentials, endpoint and limits for one upstream chat provider."""

  name: str
  api_key: str | None
  base_url: str | None
  model: str
  timeout_ms: int
  context_limit: int
  api_version: str | None = None

  @property
  def has_credentials(self) -> bool:
    return bool(self.api_key)


@dataclass(frozen=True)
class WebhookSettings:
  """Outbound completion webhook configuration."""

  secret: str | None
  base_url: str
  endpoint: str
  timeout_ms: int
  max_retries: int
  user_agent: str
  manual_retry_limit: int = 3

  @property
  def url(self) -> str:
    return f"{self.base_url.rstrip('/')}/{self.endpoint.lstrip('/')}"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Polaris report engine."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_level: str
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  jobs_auto_process: bool
  default_temperature: float
  default_max_tokens: int
  max_prompt_chars: int
  queued_eta_seconds: int
  reasoning_timeout_factor: float
  reasoning_timeout_cap_ms: int
  provider_order: tuple[str, ...]
  webhook: WebhookSettings
  providers: dict[str, ProviderSettings] = field(hash=False)

  def provider(self, name: str) -> ProviderSettings:
    try:
      return self.providers[name]
    except KeyError as exc:
      raise ValueError(f"Unknown provider '{name}'.") from exc

  @property
  def default_model(self) -> str:
    """Model stored on jobs that do not request one: the primary provider's default."""
    return self.provider(self.provider_order[0]).model


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("POLARIS_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("POLARIS_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("POLARIS_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str, *, allow_zero: bool = False) -> int:
  raw = os.getenv(name) or default
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value < 0 or (value == 0 and not allow_zero):
    qualifier = "zero or a positive integer" if allow_zero else "a positive integer"
    raise ValueError(f"{name} must be {qualifier}.")
  return value


def _parse_float(name: str, default: str) -> float:
  raw = os.getenv(name) or default
  try:
    return float(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a number.") from exc


def _parse_provider_order(raw: str | None, primary: str | None) -> tuple[str, ...]:
  """Resolve the fixed fallback priority, optionally promoting one provider to the front."""
  names = [name.strip().lower() for name in (raw or ",".join(KNOWN_PROVIDERS)).split(",") if name.strip()]
  unknown = [name for name in names if name not in KNOWN_PROVIDERS]
  if unknown:
    raise ValueError(f"POLARIS_PROVIDER_ORDER contains unknown providers: {', '.join(unknown)}.")

  # Drop duplicates while keeping the configured priority.
  order = list(dict.fromkeys(names))
  if primary:
    primary = primary.strip().lower()
    if primary not in KNOWN_PROVIDERS:
      raise ValueError(f"POLARIS_PRIMARY_PROVIDER must be one of: {', '.join(KNOWN_PROVIDERS)}.")
    order = [primary] + [name for name in order if name != primary]

  if not order:
    raise ValueError("POLARIS_PROVIDER_ORDER must include at least one provider.")
  return tuple(order)


def _load_providers() -> dict[str, ProviderSettings]:
  return {
    "perplexity": ProviderSettings(
      name="perplexity",
      api_key=_optional_str(os.getenv("PERPLEXITY_API_KEY")),
      base_url=_optional_str(os.getenv("PERPLEXITY_BASE_URL")) or "https://api.perplexity.ai",
      model=_optional_str(os.getenv("PERPLEXITY_MODEL")) or "sonar",
      # Perplexity keeps the PPLX_SERVER_TIMEOUT_MS name for its server-side budget.
      timeout_ms=_positive_int("PPLX_SERVER_TIMEOUT_MS", os.getenv("PERPLEXITY_TIMEOUT_MS") or "75000"),
      context_limit=_positive_int("PERPLEXITY_CONTEXT_LIMIT", "127000"),
    ),
    "anthropic": ProviderSettings(
      name="anthropic",
      api_key=_optional_str(os.getenv("ANTHROPIC_API_KEY")),
      base_url=_optional_str(os.getenv("ANTHROPIC_BASE_URL")) or "https://api.anthropic.com",
      model=_optional_str(os.getenv("ANTHROPIC_MODEL")) or "claude-3-5-sonnet-latest",
      timeout_ms=_positive_int("ANTHROPIC_TIMEOUT_MS", "60000"),
      context_limit=_positive_int("ANTHROPIC_CONTEXT_LIMIT", "200000"),
      api_version=_optional_str(os.getenv("ANTHROPIC_VERSION")) or "2023-06-01",
    ),
    "openai": ProviderSettings(
      name="openai",
      api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
      base_url=_optional_str(os.getenv("OPENAI_BASE_URL")) or "https://api.openai.com/v1",
      model=_optional_str(os.getenv("OPENAI_MODEL")) or "gpt-4o-mini",
      timeout_ms=_positive_int("OPENAI_TIMEOUT_MS", "60000"),
      context_limit=_positive_int("OPENAI_CONTEXT_LIMIT", "128000"),
    ),
    "gemini": ProviderSettings(
      name="gemini",
      api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
      base_url=_optional_str(os.getenv("GEMINI_BASE_URL")),
      model=_optional_str(os.getenv("GEMINI_MODEL")) or "gemini-2.5-flash",
      timeout_ms=_positive_int("GEMINI_TIMEOUT_MS", "60000"),
      context_limit=_positive_int("GEMINI_CONTEXT_LIMIT", "1000000"),
    ),
  }


def _load_webhook_settings() -> WebhookSettings:
  base_url = _optional_str(os.getenv("WEBHOOK_BASE_URL")) or _optional_str(os.getenv("POLARIS_BASE_URL")) or "http://localhost:8080"
  return WebhookSettings(
    secret=_optional_str(os.getenv("WEBHOOK_SECRET")),
    base_url=base_url,
    endpoint=_optional_str(os.getenv("WEBHOOK_ENDPOINT")) or "api/webhooks/final-report",
    timeout_ms=_positive_int("WEBHOOK_TIMEOUT_MS", "10000"),
    max_retries=_positive_int("WEBHOOK_MAX_RETRIES", "3", allow_zero=True),
    user_agent=_optional_str(os.getenv("WEBHOOK_USER_AGENT")) or "Polaris-Webhook/1.0",
  )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("POLARIS_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("POLARIS_DEBUG"))

  log_level = (os.getenv("POLARIS_LOG_LEVEL") or "INFO").strip().upper()
  if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
    raise ValueError("POLARIS_LOG_LEVEL must be a standard logging level name.")

  log_max_bytes = _positive_int("POLARIS_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = _positive_int("POLARIS_LOG_BACKUP_COUNT", "10", allow_zero=True)

  default_temperature = _parse_float("POLARIS_DEFAULT_TEMPERATURE", "0.2")
  if not 0.0 <= default_temperature <= 2.0:
    raise ValueError("POLARIS_DEFAULT_TEMPERATURE must be between 0 and 2.")

  reasoning_timeout_factor = _parse_float("LLM_REASONING_TIMEOUT_FACTOR", "1.5")
  if reasoning_timeout_factor < 1.0:
    raise ValueError("LLM_REASONING_TIMEOUT_FACTOR must be at least 1.0.")

  providers = _load_providers()

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("POLARIS_ALLOWED_ORIGINS")),
    log_level=log_level,
    log_dir=(os.getenv("POLARIS_LOG_DIR") or "logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
    log_http_4xx=_parse_bool(os.getenv("POLARIS_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("POLARIS_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("POLARIS_PG_CONNECT_TIMEOUT", "5"),
    jobs_auto_process=_parse_bool(os.getenv("POLARIS_JOBS_AUTO_PROCESS"), default=True),
    default_temperature=default_temperature,
    default_max_tokens=_positive_int("POLARIS_DEFAULT_MAX_TOKENS", "2600"),
    max_prompt_chars=_positive_int("POLARIS_MAX_PROMPT_CHARS", "10000"),
    queued_eta_seconds=_positive_int("POLARIS_QUEUED_ETA_SECONDS", "90"),
    reasoning_timeout_factor=reasoning_timeout_factor,
    reasoning_timeout_cap_ms=_positive_int("LLM_REASONING_TIMEOUT_CAP_MS", "110000"),
    provider_order=_parse_provider_order(os.getenv("POLARIS_PROVIDER_ORDER"), _optional_str(os.getenv("POLARIS_PRIMARY_PROVIDER"))),
    webhook=_load_webhook_settings(),
    providers=providers,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations don't require unrelated env vars.
  debug = _parse_bool(os.getenv("POLARIS_DEBUG"))
  pg_connect_timeout = _positive_int("POLARIS_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("POLARIS_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)

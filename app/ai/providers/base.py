"""Base interfaces for chat-completion providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from app.core.errors import UpstreamProviderError

ChatMessage = dict[str, str]


class ProviderErrorKind(str, Enum):
  """Failure categories a provider call can end in."""

  MISSING_CREDENTIALS = "missing_credentials"
  UPSTREAM_HTTP = "upstream_http"
  TIMEOUT = "timeout"
  NETWORK = "network"
  MALFORMED_RESPONSE = "malformed_response"


class ProviderError(UpstreamProviderError):
  """A single provider call failed."""

  def __init__(self, provider: str, kind: ProviderErrorKind, message: str, *, status_code: int | None = None) -> None:
    self.provider = provider
    self.kind = kind
    self.status_code = status_code
    self.detail = message
    super().__init__(f"{provider}: {message}")


@dataclass(frozen=True)
class ChatOptions:
  """Per-call tuning; unset values fall back to provider settings."""

  temperature: float | None = None
  max_tokens: int | None = None
  timeout_ms: int | None = None
  model: str | None = None


@dataclass(frozen=True)
class ChatCompletion:
  """Normalized provider response."""

  content: str
  model_used: str
  provider: str
  truncated: bool = False
  usage: dict[str, int] | None = None


def split_system_messages(messages: list[ChatMessage]) -> tuple[str | None, list[ChatMessage]]:
  """Separate system prompts from the conversation turns."""
  system_parts = [message["content"] for message in messages if message.get("role") == "system"]
  turns = [message for message in messages if message.get("role") != "system"]
  return ("\n\n".join(system_parts) if system_parts else None), turns


def usage_dict(prompt_tokens: Any, completion_tokens: Any) -> dict[str, int] | None:
  if prompt_tokens is None and completion_tokens is None:
    return None
  prompt = int(prompt_tokens or 0)
  completion = int(completion_tokens or 0)
  return {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": prompt + completion}


class ChatProvider(ABC):
  """Abstract base class for chat-completion providers."""

  name: str

  @abstractmethod
  async def complete(self, messages: list[ChatMessage], *, model: str, temperature: float, max_tokens: int) -> ChatCompletion:
    """Run one chat completion; raise ``ProviderError`` on failure."""

  async def aclose(self) -> None:
    """Release network resources held by the provider."""

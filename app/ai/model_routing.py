"""Model alias normalization and per-model timeout policy."""

from __future__ import annotations

import math
import re
from typing import Final

PERPLEXITY_MODELS: Final[frozenset[str]] = frozenset({"sonar", "sonar-pro", "sonar-reasoning", "sonar-reasoning-pro"})

_PERPLEXITY_ALIASES: Final[dict[str, str]] = {
  "sonar-large": "sonar-pro",
  "sonar pro": "sonar-pro",
  "sonar reasoning": "sonar-reasoning",
  "sonar reasoning pro": "sonar-reasoning-pro",
}

_PERPLEXITY_PREFIXES: Final[tuple[tuple[str, str], ...]] = (
  ("llama-3.1-sonar-small", "sonar"),
  ("llama-3.1-sonar-large", "sonar-pro"),
)


def normalize_perplexity_model(requested: str | None) -> str:
  """Map free-form Perplexity model names onto the canonical set, defaulting to ``sonar``."""
  value = (requested or "").strip().lower()
  if value in PERPLEXITY_MODELS:
    return value

  hyphenated = re.sub(r"\s+", "-", value).replace("_", "-")
  if hyphenated in PERPLEXITY_MODELS:
    return hyphenated

  if value in _PERPLEXITY_ALIASES:
    return _PERPLEXITY_ALIASES[value]

  for prefix, canonical in _PERPLEXITY_PREFIXES:
    if value.startswith(prefix):
      return canonical

  return "sonar"


def normalize_model(provider: str, requested: str | None, default: str) -> str:
  """Resolve the model name sent upstream for ``provider``."""
  if provider == "perplexity":
    return normalize_perplexity_model(requested or default)

  value = (requested or "").strip()
  return value or default


def is_reasoning_model(model: str) -> bool:
  return "reasoning" in model.lower()


def effective_timeout_ms(model: str, base_timeout_ms: int, *, factor: float = 1.5, cap_ms: int = 110_000) -> int:
  """Extend the timeout for reasoning models, never beyond ``cap_ms``."""
  if not is_reasoning_model(model):
    return base_timeout_ms
  return min(cap_ms, math.floor(base_timeout_ms * factor))

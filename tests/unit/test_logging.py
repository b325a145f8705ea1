from __future__ import annotations

import logging
import sys
from dataclasses import replace
from pathlib import Path

from app.core.logging import TruncatedFormatter, _backup_namer, _resolve_log_dir


def test_backup_namer() -> None:
  assert _backup_namer("/var/log/polaris_1.log.3") == "/var/log/polaris_1.log-3"
  assert _backup_namer("/var/log/polaris_1.log") == "/var/log/polaris_1.log"


def test_relative_log_dir_is_anchored_at_repo_root(settings) -> None:
  resolved = _resolve_log_dir(replace(settings, log_dir="logs"))
  assert resolved.is_absolute()
  assert resolved.name == "logs"
  assert (resolved.parent / "app").is_dir()
  assert _resolve_log_dir(replace(settings, log_dir="/tmp/polaris")) == Path("/tmp/polaris")


def test_truncated_formatter_keeps_tail_of_deep_traceback() -> None:
  def _recurse(depth: int) -> None:
    if depth == 0:
      raise RuntimeError("deep failure")
    _recurse(depth - 1)

  try:
    _recurse(10)
  except RuntimeError:
    exc_info = sys.exc_info()

  text = TruncatedFormatter().formatException(exc_info)
  assert text.startswith("Traceback (most recent call last):")
  assert "    ...\n" in text
  assert text.rstrip().endswith("RuntimeError: deep failure")
  assert text.count("\n") < 20
  assert logging.Formatter().formatException(exc_info).count("\n") > text.count("\n")

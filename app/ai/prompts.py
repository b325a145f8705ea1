"""Prompt text shared by the job runner and chat routes."""

from __future__ import annotations

from typing import Final

RESEARCH_SYSTEM_PROMPT: Final[str] = "You are a helpful research assistant. Provide comprehensive, accurate information based on current web sources. Focus on facts and cite sources when possible."

"""Shared test configuration."""

from __future__ import annotations

import os

# Settings are read at import time by symbolgen.main.
os.environ.setdefault("SYMBOLGEN_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")

import pytest  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"

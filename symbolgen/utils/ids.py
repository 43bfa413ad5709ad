"""Identifier utilities."""

from __future__ import annotations

import secrets
import string


def generate_job_id() -> str:
  """Return a new job identifier backed by 128 random bits."""
  return secrets.token_hex(16)


def generate_request_id(size: int = 12) -> str:
  """Return a short non-sequential id used to correlate request logs."""
  alphabet = string.ascii_lowercase + string.digits
  return "".join(secrets.choice(alphabet) for _ in range(size))


def generate_bucket_key(prefix: str = "symbol") -> str:
  """Return a transient storage bucket key (lowercase, DNS-safe)."""
  return f"{prefix}-{secrets.token_hex(8)}"

"""Shared FastAPI dependencies for the job routes."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from symbolgen.jobs.registry import JobRegistry
from symbolgen.services.jobs import JobLauncher
from symbolgen.services.ratelimit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


def get_registry(request: Request) -> JobRegistry:
  return request.app.state.registry


def get_launcher(request: Request) -> JobLauncher:
  return request.app.state.launcher


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
  return request.app.state.rate_limiter


def enforce_generate_rate_limit(request: Request, limiter: FixedWindowRateLimiter = Depends(get_rate_limiter)) -> None:  # noqa: B008
  """Reject callers that exceeded the generation rate limit for this window."""
  client_key = request.client.host if request.client else "anonymous"
  result = limiter.check(f"{client_key}:symbols-generate")
  if result.allowed:
    return
  retry_after = result.retry_after(limiter.clock())
  logger.warning("Rate limit exceeded for %s (limit %d)", client_key, result.limit)
  raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded. Please wait a moment and try again.", headers={"Retry-After": str(retry_after)})

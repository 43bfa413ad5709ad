"""In-memory fixed-window rate limiter for expensive endpoints."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
  allowed: bool
  limit: int
  remaining: int
  reset_at: float

  def retry_after(self, now: float) -> int:
    return max(int(self.reset_at - now + 0.999), 1)


@dataclass
class _Window:
  count: int
  reset_at: float


class FixedWindowRateLimiter:
  """Count requests per key in fixed windows.

  Single-process only; expired windows are pruned on access.
  """

  def __init__(self, *, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
    if limit <= 0:
      raise ValueError("limit must be positive.")
    self.limit = limit
    self._window_seconds = window_seconds
    self._clock = clock
    self._lock = threading.Lock()
    self._windows: dict[str, _Window] = {}

  @property
  def clock(self) -> Callable[[], float]:
    return self._clock

  def check(self, key: str) -> RateLimitResult:
    """Record one request for ``key`` and report whether it is allowed."""
    now = self._clock()
    with self._lock:
      self._prune_locked(now)
      window = self._windows.get(key)
      if window is None:
        window = _Window(count=0, reset_at=now + self._window_seconds)
        self._windows[key] = window

      if window.count >= self.limit:
        return RateLimitResult(allowed=False, limit=self.limit, remaining=0, reset_at=window.reset_at)

      window.count += 1
      return RateLimitResult(allowed=True, limit=self.limit, remaining=self.limit - window.count, reset_at=window.reset_at)

  def reset(self) -> None:
    with self._lock:
      self._windows.clear()

  def _prune_locked(self, now: float) -> None:
    expired = [key for key, window in self._windows.items() if window.reset_at <= now]
    for key in expired:
      del self._windows[key]

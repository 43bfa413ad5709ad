from __future__ import annotations

from symbolgen.services.ratelimit import FixedWindowRateLimiter


class FakeClock:
  def __init__(self) -> None:
    self.now = 100.0

  def __call__(self) -> float:
    return self.now


def test_requests_over_limit_are_rejected_until_window_resets() -> None:
  clock = FakeClock()
  limiter = FixedWindowRateLimiter(limit=2, window_seconds=60, clock=clock)

  assert limiter.check("1.2.3.4").remaining == 1
  assert limiter.check("1.2.3.4").remaining == 0
  blocked = limiter.check("1.2.3.4")
  assert not blocked.allowed
  assert blocked.retry_after(clock.now) == 60

  clock.now += 60
  assert limiter.check("1.2.3.4").allowed


def test_keys_are_counted_separately() -> None:
  limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=FakeClock())
  assert limiter.check("a").allowed
  assert limiter.check("b").allowed
  assert not limiter.check("a").allowed


def test_reset_clears_windows() -> None:
  limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=FakeClock())
  limiter.check("a")
  limiter.reset()
  assert limiter.check("a").allowed

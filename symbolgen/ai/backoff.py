"""Retry logic for rate-limited model calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from symbolgen.ai.errors import is_rate_limit_error

logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (2.0, 5.0)


async def retry_with_backoff[T](func: Callable[..., Awaitable[T]], *args: object, delays: Sequence[float] = DEFAULT_DELAYS, **kwargs: object) -> T:
  """
  Execute a coroutine function, retrying only on 429/quota errors.

  One retry per entry in ``delays``; the final attempt propagates whatever it raises.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except Exception as e:
      if not is_rate_limit_error(e):
        # Non-retryable error, raise immediately
        raise
      logger.warning("Rate limited (retry %d/%d): %s. Retrying in %.1fs...", attempt + 1, len(delays), e, delay)
      await asyncio.sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)

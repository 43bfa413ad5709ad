"""Server-sent event rendering for job progress feeds."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import msgspec

from symbolgen.jobs.models import ProgressEvent
from symbolgen.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}
KEEPALIVE_COMMENT = ": keep-alive\n\n"

_encoder = msgspec.json.Encoder()


def format_sse(data: Any, *, event: str | None = None) -> str:
  """Render one SSE message; ``data`` is JSON encoded."""
  payload = _encoder.encode(data).decode("utf-8")
  lines = []
  if event:
    lines.append(f"event: {event}")
  lines.append(f"data: {payload}")
  return "\n".join(lines) + "\n\n"


def format_progress(event: ProgressEvent) -> str:
  return format_sse(event, event="progress")


async def stream_job_events(registry: JobRegistry, job_id: str, *, keepalive_seconds: float | None = 15.0) -> AsyncIterator[str]:
  """Yield SSE messages for a job until its terminal event.

  Unknown ids produce a single ``not_found`` message. After the terminal
  progress event a ``done`` message carries the final status.
  """
  subscription = registry.subscribe(job_id)
  if subscription is None:
    yield format_sse({"job_id": job_id, "status": "not_found"}, event="not_found")
    return

  terminal: ProgressEvent | None = None
  try:
    while True:
      try:
        event = await subscription.next_event(timeout=keepalive_seconds)
      except TimeoutError:
        yield KEEPALIVE_COMMENT
        continue
      if event is None:
        break
      yield format_progress(event)
      if event.terminal:
        terminal = event
        break
  finally:
    # Runs on client disconnect too, so the registry stops fanning out to us.
    subscription.close()

  if terminal is None:
    # Job was evicted while we were attached.
    logger.info("Stream for job %s ended without a terminal event", job_id)
    yield format_sse({"job_id": job_id, "status": "expired"}, event="done")
    return

  snapshot = registry.get(job_id)
  status = snapshot.status if snapshot else ("succeeded" if terminal.phase == "done" else "failed")
  yield format_sse({"job_id": job_id, "status": status}, event="done")

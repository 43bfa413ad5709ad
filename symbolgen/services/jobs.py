"""Job submission and status helpers used by the API routes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from symbolgen.jobs.models import JobSnapshot
from symbolgen.jobs.registry import JobRegistry
from symbolgen.pipeline.contracts import GenerationRequest
from symbolgen.pipeline.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)


class JobLauncher:
  """Create jobs and run them as background tasks.

  Each task receives only the job id and a frozen request. The launcher keeps
  strong references so running tasks are not garbage collected.
  """

  def __init__(self, registry: JobRegistry, orchestrator: GenerationOrchestrator) -> None:
    self._registry = registry
    self._orchestrator = orchestrator
    self._tasks: set[asyncio.Task[Any]] = set()

  @property
  def registry(self) -> JobRegistry:
    return self._registry

  def start(self, request: GenerationRequest) -> str:
    """Register a job and schedule it. Returns without waiting for the job."""
    job_id = self._registry.create(request.display_label)
    task = asyncio.create_task(self._orchestrator.run(job_id, request), name=f"symbol-job-{job_id}")
    self._tasks.add(task)
    task.add_done_callback(self._on_task_done)
    logger.info("Started job %s for product %s", job_id, request.product_id)
    return job_id

  @property
  def active_count(self) -> int:
    return len(self._tasks)

  async def shutdown(self, timeout: float = 5.0) -> None:
    """Cancel running jobs; each one records a terminal failure before exiting."""
    tasks = list(self._tasks)
    if not tasks:
      return
    logger.info("Cancelling %d running job(s)", len(tasks))
    for task in tasks:
      task.cancel()
    await asyncio.wait(tasks, timeout=timeout)

  def _on_task_done(self, task: asyncio.Task[Any]) -> None:
    self._tasks.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Job task %s crashed: %s", task.get_name(), exc, exc_info=exc)


def job_status_payload(snapshot: JobSnapshot) -> dict[str, Any]:
  """Serialize a job snapshot for polling clients. Artifact bytes are never included."""
  payload: dict[str, Any] = {
    "job_id": snapshot.id,
    "label": snapshot.label,
    "status": snapshot.status,
    "events": [
      {
        "sequence": event.sequence,
        "phase": event.phase,
        "message": event.message,
        "detail": event.detail,
        "attempt_label": event.attempt_label,
        "timestamp": event.timestamp,
        "elapsed": event.elapsed,
        "terminal": event.terminal,
      }
      for event in snapshot.events
    ],
    "result": None,
    "failure": None,
  }
  if snapshot.result is not None:
    result = snapshot.result
    payload["result"] = {
      "artifacts": [{"name": key, "filename": artifact.name, "content_type": artifact.content_type, "size": artifact.size} for key, artifact in result.artifacts.items()],
      "total_cost_usd": result.total_cost_usd,
      "model": result.model,
      "tokens_in": result.tokens_in,
      "tokens_out": result.tokens_out,
      "attempts": result.attempts,
      "attempt_log": [summary.as_dict() for summary in result.attempt_log],
      "work_item_id": result.work_item_id,
    }
  if snapshot.failure is not None:
    failure = snapshot.failure
    payload["failure"] = {
      "message": failure.message,
      "reason": failure.reason,
      "error_chain": list(failure.error_chain),
      "attempts": failure.attempts,
      "total_cost_usd": failure.total_cost_usd,
      "attempt_log": [summary.as_dict() for summary in failure.attempt_log],
    }
  return payload

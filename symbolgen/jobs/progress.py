"""Progress reporting helpers bound to one job."""

from __future__ import annotations

from symbolgen.jobs.models import ProgressEvent, ProgressPhase
from symbolgen.jobs.registry import JobRegistry

MAX_DETAIL_CHARS = 200


def truncate_detail(detail: str | None, limit: int = MAX_DETAIL_CHARS) -> str | None:
  """Clamp long detail strings so progress feeds stay readable."""
  if detail is None:
    return None
  if len(detail) <= limit:
    return detail
  return detail[: limit - 3] + "..."


class JobProgressReporter:
  """Publish progress for one job through the registry.

  The reporter only holds the registry and a job id, never a subscriber.
  Publishing is fire-and-forget: a missing job is logged by the registry and
  ignored here.
  """

  def __init__(self, *, job_id: str, registry: JobRegistry, max_attempts: int) -> None:
    self._job_id = job_id
    self._registry = registry
    self._max_attempts = max(max_attempts, 1)
    self._attempt: int | None = None

  @property
  def job_id(self) -> str:
    return self._job_id

  def start_attempt(self, attempt: int) -> None:
    """Tag subsequent events with the given attempt."""
    self._attempt = attempt

  @property
  def attempt_label(self) -> str | None:
    if self._attempt is None:
      return None
    return f"Attempt {self._attempt}/{self._max_attempts}"

  def emit(self, phase: ProgressPhase, message: str, detail: str | None = None) -> ProgressEvent | None:
    return self._registry.append_event(self._job_id, phase, message, truncate_detail(detail), self.attempt_label)

  def init(self, message: str, detail: str | None = None) -> ProgressEvent | None:
    return self.emit("init", message, detail)

  def generate(self, message: str, detail: str | None = None) -> ProgressEvent | None:
    return self.emit("generate", message, detail)

  def execute(self, message: str, detail: str | None = None) -> ProgressEvent | None:
    return self.emit("execute", message, detail)

  def retry_feedback(self, message: str, detail: str | None = None) -> ProgressEvent | None:
    return self.emit("retry-feedback", message, detail)

  def error(self, message: str, detail: str | None = None) -> ProgressEvent | None:
    return self.emit("error", message, detail)

"""In-process job registry with ordered progress fan-out.

The registry is the only owner of job state. The orchestrator writes through
``append_event`` / ``complete`` and stream subscribers read through
``subscribe``; both sides meet under a single lock so a subscriber never
misses or duplicates an event.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

from symbolgen.jobs.models import FailureSummary, Job, JobResult, JobSnapshot, ProgressEvent, ProgressPhase
from symbolgen.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0
DEFAULT_MAX_JOBS = 500


class JobSubscription:
  """Ordered event feed for one job: recorded backlog first, then live events.

  Iteration stops after the terminal event, or when the job is evicted.
  """

  def __init__(self, registry: JobRegistry, job_id: str, backlog: list[ProgressEvent], loop: asyncio.AbstractEventLoop) -> None:
    self.job_id = job_id
    self._registry = registry
    self._backlog = list(backlog)
    self._loop = loop
    self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
    self._finished = False
    self._closed = False

  def _deliver(self, event: ProgressEvent | None) -> bool:
    """Hand an event to the subscriber's loop without waiting on it."""
    try:
      self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
    except RuntimeError:
      # Loop already closed; the registry drops this subscriber.
      return False
    return True

  async def _next(self) -> ProgressEvent | None:
    if self._backlog:
      return self._backlog.pop(0)
    return await self._queue.get()

  async def next_event(self, timeout: float | None = None) -> ProgressEvent | None:
    """Return the next event, or None once the feed is exhausted.

    Raises ``TimeoutError`` when no event arrives within ``timeout`` seconds;
    the feed stays usable afterwards.
    """
    if self._finished:
      return None
    if timeout is None or self._backlog:
      event = await self._next()
    else:
      event = await asyncio.wait_for(self._next(), timeout)

    if event is None or event.terminal:
      self._finished = True
      self.close()
    return event

  def __aiter__(self) -> JobSubscription:
    return self

  async def __anext__(self) -> ProgressEvent:
    event = await self.next_event()
    if event is None:
      raise StopAsyncIteration
    return event

  def close(self) -> None:
    """Detach from the registry. Safe to call more than once."""
    if self._closed:
      return
    self._closed = True
    self._registry._unsubscribe(self)

  @property
  def finished(self) -> bool:
    return self._finished


class JobRegistry:
  """Thread-safe store of job state keyed by job id.

  Construct one per process (the app lifespan does) and inject it where
  needed. Terminal jobs are dropped ``retention_seconds`` after completion and
  the total number of tracked jobs never exceeds ``max_jobs``.
  """

  def __init__(self, *, retention_seconds: float = DEFAULT_RETENTION_SECONDS, max_jobs: int = DEFAULT_MAX_JOBS, clock: Callable[[], float] = time.monotonic, id_factory: Callable[[], str] = generate_job_id) -> None:
    if max_jobs <= 0:
      raise ValueError("max_jobs must be positive.")
    self._retention_seconds = retention_seconds
    self._max_jobs = max_jobs
    self._clock = clock
    self._id_factory = id_factory
    self._lock = threading.Lock()
    # Insertion order doubles as creation order for oldest-first eviction.
    self._jobs: dict[str, Job] = {}
    self._subscribers: dict[str, list[JobSubscription]] = {}

  def create(self, label: str) -> str:
    """Allocate a pending job and return its id."""
    with self._lock:
      self._enforce_capacity_locked(reserve=1)
      job_id = self._id_factory()
      while job_id in self._jobs:
        job_id = self._id_factory()
      self._jobs[job_id] = Job(id=job_id, label=label, created_at=self._clock())
    logger.info("Created job %s (%s)", job_id, label)
    return job_id

  def get(self, job_id: str) -> JobSnapshot | None:
    with self._lock:
      job = self._jobs.get(job_id)
      return JobSnapshot.from_job(job) if job else None

  def mark_running(self, job_id: str) -> bool:
    """Move a pending job to running. Any other transition is ignored."""
    with self._lock:
      job = self._jobs.get(job_id)
      if job is None:
        logger.warning("mark_running for unknown job %s ignored", job_id)
        return False
      if job.status != "pending":
        return False
      job.status = "running"
      return True

  def append_event(self, job_id: str, phase: ProgressPhase, message: str, detail: str | None = None, attempt_label: str | None = None) -> ProgressEvent | None:
    """Append a progress event and notify subscribers.

    Unknown or already-completed jobs are logged and ignored.
    """
    with self._lock:
      job = self._jobs.get(job_id)
      if job is None:
        logger.warning("Dropping progress event for unknown job %s: %s", job_id, message)
        return None
      if job.is_terminal:
        logger.warning("Dropping progress event for completed job %s: %s", job_id, message)
        return None
      event = self._record_locked(job, phase=phase, message=message, detail=detail, attempt_label=attempt_label, terminal=False)
    logger.debug("Job %s [%s] %s%s", job_id, phase, message, f" ({detail})" if detail else "")
    return event

  def complete(self, job_id: str, *, result: JobResult | None = None, failure: FailureSummary | None = None, detail: str | None = None) -> bool:
    """Set the terminal status exactly once.

    Returns False (and changes nothing) for unknown ids and for jobs that are
    already terminal.
    """
    if (result is None) == (failure is None):
      raise ValueError("complete() needs exactly one of result or failure.")

    with self._lock:
      job = self._jobs.get(job_id)
      if job is None:
        logger.warning("complete() for unknown job %s ignored", job_id)
        return False
      if job.is_terminal:
        logger.info("complete() for already completed job %s ignored", job_id)
        return False

      job.completed_at = self._clock()
      if result is not None:
        job.status = "succeeded"
        job.result = result
        self._record_locked(job, phase="done", message="Generation complete", detail=detail or result.describe(), attempt_label=None, terminal=True)
      else:
        job.status = "failed"
        job.failure = failure
        self._record_locked(job, phase="error", message="Generation failed", detail=detail or failure.message, attempt_label=None, terminal=True)
      # Terminal events end every feed, so nobody stays registered.
      self._subscribers.pop(job_id, None)
      status = job.status

    logger.info("Job %s finished with status %s", job_id, status)
    return True

  def subscribe(self, job_id: str, *, loop: asyncio.AbstractEventLoop | None = None) -> JobSubscription | None:
    """Attach to a job's feed. Returns None for unknown ids."""
    target_loop = loop or asyncio.get_running_loop()
    with self._lock:
      job = self._jobs.get(job_id)
      if job is None:
        return None
      subscription = JobSubscription(self, job_id, job.events, target_loop)
      # Completed jobs only replay their backlog.
      if not job.is_terminal:
        self._subscribers.setdefault(job_id, []).append(subscription)
    return subscription

  def evict_expired(self, now: float | None = None) -> int:
    """Drop terminal jobs older than the retention window, then enforce the cap."""
    current = self._clock() if now is None else now
    with self._lock:
      expired = [job_id for job_id, job in self._jobs.items() if job.completed_at is not None and current - job.completed_at >= self._retention_seconds]
      for job_id in expired:
        self._evict_locked(job_id)
      evicted = len(expired) + self._enforce_capacity_locked(reserve=0)
    if evicted:
      logger.info("Evicted %d job(s); %d still tracked", evicted, len(self))
    return evicted

  async def run_eviction_loop(self, interval_seconds: float) -> None:
    """Periodically expire jobs until cancelled."""
    while True:
      await asyncio.sleep(interval_seconds)
      self.evict_expired()

  def __len__(self) -> int:
    with self._lock:
      return len(self._jobs)

  def __contains__(self, job_id: object) -> bool:
    with self._lock:
      return job_id in self._jobs

  def subscriber_count(self, job_id: str) -> int:
    with self._lock:
      return len(self._subscribers.get(job_id, []))

  def _record_locked(self, job: Job, *, phase: ProgressPhase, message: str, detail: str | None, attempt_label: str | None, terminal: bool) -> ProgressEvent:
    event = ProgressEvent(
      sequence=len(job.events),
      phase=phase,
      message=message,
      detail=detail,
      attempt_label=attempt_label,
      timestamp=datetime.now(UTC).isoformat(),
      elapsed=round(self._clock() - job.created_at, 1),
      terminal=terminal,
    )
    job.events.append(event)
    subscribers = self._subscribers.get(job.id)
    if subscribers:
      # Fan out without blocking; subscribers whose loop is gone are dropped.
      self._subscribers[job.id] = [subscription for subscription in subscribers if subscription._deliver(event)]
    return event

  def _evict_locked(self, job_id: str) -> None:
    self._jobs.pop(job_id, None)
    for subscription in self._subscribers.pop(job_id, []):
      subscription._deliver(None)

  def _enforce_capacity_locked(self, *, reserve: int) -> int:
    evicted = 0
    while self._jobs and len(self._jobs) + reserve > self._max_jobs:
      victim = next((job_id for job_id, job in self._jobs.items() if job.is_terminal), None)
      if victim is None:
        victim = next(iter(self._jobs))
        logger.warning("Job registry at capacity (%d); evicting running job %s", self._max_jobs, victim)
      self._evict_locked(victim)
      evicted += 1
    return evicted

  def _unsubscribe(self, subscription: JobSubscription) -> None:
    with self._lock:
      subscribers = self._subscribers.get(subscription.job_id)
      if not subscribers:
        return
      remaining = [item for item in subscribers if item is not subscription]
      if remaining:
        self._subscribers[subscription.job_id] = remaining
      else:
        self._subscribers.pop(subscription.job_id, None)

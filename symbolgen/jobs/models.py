"""Domain models for asynchronous symbol generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import msgspec

JobStatus = Literal["pending", "running", "succeeded", "failed"]
ProgressPhase = Literal["init", "generate", "execute", "retry-feedback", "done", "error"]
FailureReason = Literal["generation", "execution", "timeout", "unexpected"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})


class ProgressEvent(msgspec.Struct, frozen=True, kw_only=True):
  """One observable step in a job's execution.

  ``sequence`` is the event's index in the job log and is the authoritative
  ordering. ``timestamp`` and ``elapsed`` are for display only.
  """

  sequence: int
  phase: ProgressPhase
  message: str
  detail: str | None = None
  attempt_label: str | None = None
  timestamp: str = ""
  elapsed: float = 0.0
  terminal: bool = False


@dataclass(frozen=True)
class Artifact:
  """A binary output produced by the execution service."""

  name: str
  content_type: str
  data: bytes = field(repr=False)

  @property
  def size(self) -> int:
    return len(self.data)


@dataclass(frozen=True)
class AttemptSummary:
  """Compact record of one retry-loop iteration."""

  attempt_number: int
  tier: str
  model: str
  outcome: Literal["succeeded", "generation_failed", "execution_failed", "timed_out"]
  cost: float
  tokens_in: int = 0
  tokens_out: int = 0
  error: str | None = None

  def as_dict(self) -> dict[str, Any]:
    return {
      "attempt": self.attempt_number,
      "tier": self.tier,
      "model": self.model,
      "outcome": self.outcome,
      "cost_usd": round(self.cost, 6),
      "tokens_in": self.tokens_in,
      "tokens_out": self.tokens_out,
      "error": self.error,
    }


@dataclass(frozen=True)
class JobResult:
  """Final output of a succeeded job."""

  artifacts: dict[str, Artifact]
  total_cost_usd: float
  model: str
  tokens_in: int
  tokens_out: int
  attempts: int
  attempt_log: tuple[AttemptSummary, ...] = ()
  script: str | None = None
  work_item_id: str | None = None

  def describe(self) -> str:
    """Human readable completion line (sizes, attempts and cost)."""
    sizes = ", ".join(f"{name.upper()}: {artifact.size / 1024:.1f} KB" for name, artifact in self.artifacts.items())
    return f"{sizes}, {self.attempts} attempt(s), cost: ${self.total_cost_usd:.4f}"


@dataclass(frozen=True)
class FailureSummary:
  """Terminal failure description: a short user-facing message plus diagnostics."""

  message: str
  reason: FailureReason
  error_chain: tuple[str, ...] = ()
  attempts: int = 0
  total_cost_usd: float = 0.0
  attempt_log: tuple[AttemptSummary, ...] = ()


@dataclass
class Job:
  """Registry-owned record of one generation request.

  Only ``JobRegistry`` mutates instances of this class; everything outside the
  registry works with ``JobSnapshot`` copies.
  """

  id: str
  label: str
  created_at: float
  status: JobStatus = "pending"
  events: list[ProgressEvent] = field(default_factory=list)
  result: JobResult | None = None
  failure: FailureSummary | None = None
  completed_at: float | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class JobSnapshot:
  """Immutable point-in-time view of a job for polling consumers."""

  id: str
  label: str
  status: JobStatus
  created_at: float
  completed_at: float | None
  events: tuple[ProgressEvent, ...]
  result: JobResult | None
  failure: FailureSummary | None

  @classmethod
  def from_job(cls, job: Job) -> JobSnapshot:
    return cls(id=job.id, label=job.label, status=job.status, created_at=job.created_at, completed_at=job.completed_at, events=tuple(job.events), result=job.result, failure=job.failure)

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

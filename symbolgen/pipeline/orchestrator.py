"""Retry and escalation loop for one symbol generation job."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol

from symbolgen.ai.codegen import GenerationResult, ModelTier
from symbolgen.ai.errors import GenerationError
from symbolgen.cad.executor import ExecutionResult, ScriptExecutor
from symbolgen.cad.report import DEFAULT_POLICY, ErrorContextPolicy, extract_error_context
from symbolgen.jobs.models import AttemptSummary, FailureSummary, JobResult, JobStatus
from symbolgen.jobs.progress import JobProgressReporter, truncate_detail
from symbolgen.jobs.registry import JobRegistry
from symbolgen.pipeline.contracts import GenerationRequest

logger = logging.getLogger(__name__)

MAX_SUMMARY_ERROR_CHARS = 500
Outcome = Literal["succeeded", "generation_failed", "execution_failed", "timed_out"]


class CodeGenerator(Protocol):
  def model_for(self, tier: ModelTier) -> str: ...

  async def generate(self, specification: str, context_hints: dict[str, object] | None, tier: ModelTier) -> GenerationResult: ...

  async def generate_with_feedback(
    self,
    specification: str,
    previous_script: str,
    previous_error: str,
    tier: ModelTier,
    context_hints: dict[str, object] | None = None,
  ) -> GenerationResult: ...


def select_tier(attempt_number: int, current: ModelTier | None = None) -> ModelTier:
  """Fast tier for the first attempt, escalated afterwards. Never steps back down."""
  if current == "escalated" or attempt_number > 1:
    return "escalated"
  return "fast"


@dataclass
class GenerationAttempt:
  """Working state for one iteration of the retry loop."""

  attempt_number: int
  tier: ModelTier
  model: str
  script: str | None = None
  generation_error: str | None = None
  execution_error: str | None = None
  cost: float = 0.0
  tokens_in: int = 0
  tokens_out: int = 0
  outcome: Outcome | None = None

  def summary(self) -> AttemptSummary:
    return AttemptSummary(
      attempt_number=self.attempt_number,
      tier=self.tier,
      model=self.model,
      # An attempt without an outcome was cut short by the job budget.
      outcome=self.outcome or "timed_out",
      cost=self.cost,
      tokens_in=self.tokens_in,
      tokens_out=self.tokens_out,
      error=self.execution_error or self.generation_error,
    )


@dataclass
class _RunState:
  """Per-job state that must survive the budget timeout."""

  attempts: list[GenerationAttempt] = field(default_factory=list)
  tier: ModelTier | None = None
  last_script: str | None = None
  last_error: str | None = None
  last_failure: tuple[Literal["generation", "execution"], str] | None = None

  @property
  def total_cost(self) -> float:
    return round(sum(attempt.cost for attempt in self.attempts), 6)

  @property
  def tokens_in(self) -> int:
    return sum(attempt.tokens_in for attempt in self.attempts)

  @property
  def tokens_out(self) -> int:
    return sum(attempt.tokens_out for attempt in self.attempts)

  def attempt_log(self) -> tuple[AttemptSummary, ...]:
    return tuple(attempt.summary() for attempt in self.attempts)

  def error_chain(self) -> tuple[str, ...]:
    chain = []
    for attempt in self.attempts:
      error = attempt.execution_error or attempt.generation_error
      if error:
        chain.append(f"Attempt {attempt.attempt_number}: {truncate_detail(error, MAX_SUMMARY_ERROR_CHARS)}")
    return tuple(chain)


class GenerationOrchestrator:
  """Drive generate-then-execute attempts for a job and record the outcome.

  All job mutation goes through the registry. ``run`` never raises for
  generation or execution problems and always completes the job exactly once.
  """

  def __init__(
    self,
    *,
    registry: JobRegistry,
    codegen: CodeGenerator,
    executor: ScriptExecutor,
    max_attempts: int = 3,
    job_timeout: float = 300.0,
    generation_timeout: float = 120.0,
    execution_timeout: float = 240.0,
    error_policy: ErrorContextPolicy = DEFAULT_POLICY,
  ) -> None:
    if max_attempts < 1:
      raise ValueError("max_attempts must be at least 1.")
    self._registry = registry
    self._codegen = codegen
    self._executor = executor
    self._max_attempts = max_attempts
    self._job_timeout = job_timeout
    self._generation_timeout = generation_timeout
    self._execution_timeout = execution_timeout
    self._error_policy = error_policy

  @property
  def max_attempts(self) -> int:
    return self._max_attempts

  async def run(self, job_id: str, request: GenerationRequest) -> JobStatus:
    """Run the job to a terminal state and return that state."""
    self._registry.mark_running(job_id)
    reporter = JobProgressReporter(job_id=job_id, registry=self._registry, max_attempts=self._max_attempts)
    state = _RunState()
    reporter.init("Starting symbol generation", detail=request.display_label)

    result: JobResult | None = None
    failure: FailureSummary | None = None
    budget = asyncio.timeout(self._job_timeout)
    try:
      async with budget:
        outcome = await self._attempt_loop(request, reporter, state)
      if isinstance(outcome, JobResult):
        result = outcome
      else:
        failure = outcome
    except TimeoutError as exc:
      started = len(state.attempts)
      if budget.expired():
        logger.warning("Job %s exceeded its %.0fs budget after %d attempt(s)", job_id, self._job_timeout, started)
        failure = self._failure(state, f"Timed out after {self._job_timeout:g} s ({started} attempts started)", "timeout")
      else:
        logger.exception("Job %s crashed", job_id)
        failure = self._failure(state, f"Unexpected error: {exc}", "unexpected")
    except asyncio.CancelledError:
      self._registry.complete(job_id, failure=self._failure(state, "Job cancelled before completion", "unexpected"))
      raise
    except Exception as exc:
      logger.exception("Job %s crashed", job_id)
      failure = self._failure(state, f"Unexpected error: {exc}", "unexpected")

    if result is not None:
      self._registry.complete(job_id, result=result)
      return "succeeded"
    assert failure is not None
    self._registry.complete(job_id, failure=failure)
    return "failed"

  async def _attempt_loop(self, request: GenerationRequest, reporter: JobProgressReporter, state: _RunState) -> JobResult | FailureSummary:
    hints = request.context_hints()
    for attempt_number in range(1, self._max_attempts + 1):
      state.tier = select_tier(attempt_number, state.tier)
      attempt = GenerationAttempt(attempt_number=attempt_number, tier=state.tier, model=self._codegen.model_for(state.tier))
      state.attempts.append(attempt)
      reporter.start_attempt(attempt_number)
      logger.info("Attempt %d/%d using %s (%s tier)", attempt_number, self._max_attempts, attempt.model, attempt.tier)

      generation = await self._generate(request, hints, state, attempt, reporter)
      if generation is None:
        continue

      execution = await self._execute(generation.script, reporter)
      if execution.success:
        attempt.outcome = "succeeded"
        reporter.execute("Execution succeeded", detail=f"WorkItem {execution.work_item_id}" if execution.work_item_id else None)
        return JobResult(
          artifacts=dict(execution.artifacts),
          total_cost_usd=state.total_cost,
          model=generation.model,
          tokens_in=state.tokens_in,
          tokens_out=state.tokens_out,
          attempts=attempt_number,
          attempt_log=state.attempt_log(),
          script=generation.script,
          work_item_id=execution.work_item_id,
        )

      context = extract_error_context(execution.diagnostic_text, self._error_policy)
      attempt.outcome = "execution_failed"
      attempt.execution_error = context
      state.last_error = context
      state.last_failure = ("execution", context)
      reporter.error("Execution failed", detail=context)
      if attempt_number < self._max_attempts:
        next_model = self._codegen.model_for(select_tier(attempt_number + 1, state.tier))
        reporter.retry_feedback("Feeding error back to AI...", detail=f"Retrying with {next_model}")

    return self._exhausted(state)

  async def _generate(self, request: GenerationRequest, hints: dict[str, object], state: _RunState, attempt: GenerationAttempt, reporter: JobProgressReporter) -> GenerationResult | None:
    use_feedback = attempt.attempt_number > 1 and bool(state.last_script) and bool(state.last_error)
    reporter.generate(f"Generating script with {attempt.model}...", detail="with error feedback" if use_feedback else None)
    try:
      if use_feedback:
        call = self._codegen.generate_with_feedback(request.spec, state.last_script or "", state.last_error or "", attempt.tier, hints)
      else:
        call = self._codegen.generate(request.spec, hints, attempt.tier)
      generation = await asyncio.wait_for(call, self._generation_timeout)
    except GenerationError as exc:
      attempt.cost, attempt.tokens_in, attempt.tokens_out = exc.cost, exc.tokens_in, exc.tokens_out
      message = str(exc)
      if exc.kind == "extraction" and exc.raw_output:
        # Show the model its unusable answer next time.
        state.last_script = exc.raw_output
        state.last_error = f"{message}. Return the complete script inside a ```lisp code block."
      self._generation_failed(attempt, state, reporter, message, exc.kind)
      return None
    except TimeoutError:
      self._generation_failed(attempt, state, reporter, f"AI service did not respond within {self._generation_timeout:g} s", "transport")
      return None

    attempt.cost, attempt.tokens_in, attempt.tokens_out = generation.cost, generation.tokens_in, generation.tokens_out
    attempt.script = generation.script
    state.last_script = generation.script
    reporter.generate("Script generated", detail=f"{len(generation.script)} chars, cost: ${generation.cost:.4f}")
    return generation

  def _generation_failed(self, attempt: GenerationAttempt, state: _RunState, reporter: JobProgressReporter, message: str, kind: str) -> None:
    attempt.outcome = "generation_failed"
    attempt.generation_error = message
    state.last_failure = ("generation", message)
    logger.warning("Attempt %d generation failed (%s): %s", attempt.attempt_number, kind, message)
    reporter.error("Script generation failed", detail=message)

  async def _execute(self, script: str, reporter: JobProgressReporter) -> ExecutionResult:
    reporter.execute("Executing script in AutoCAD...")
    try:
      return await asyncio.wait_for(self._executor.execute(script, on_step=reporter.execute), self._execution_timeout)
    except TimeoutError:
      return ExecutionResult(success=False, errors=(f"Execution timed out after {self._execution_timeout:g} s",))

  def _exhausted(self, state: _RunState) -> FailureSummary:
    attempts = len(state.attempts)
    kind, error = state.last_failure or ("execution", "no attempt completed")
    excerpt = truncate_detail(error, MAX_SUMMARY_ERROR_CHARS)
    if kind == "generation":
      return self._failure(state, f"Script generation failed after {attempts} attempts: {excerpt}", "generation")
    return self._failure(state, f"Execution failed after {attempts} attempts: {excerpt}", "execution")

  @staticmethod
  def _failure(state: _RunState, message: str, reason: Literal["generation", "execution", "timeout", "unexpected"]) -> FailureSummary:
    return FailureSummary(
      message=message,
      reason=reason,
      error_chain=state.error_chain(),
      attempts=len(state.attempts),
      total_cost_usd=state.total_cost,
      attempt_log=state.attempt_log(),
    )

from __future__ import annotations

import asyncio

import pytest

from symbolgen.ai.codegen import GenerationResult, ModelTier
from symbolgen.ai.errors import ExtractionError, GenerationError
from symbolgen.cad.executor import ExecutionResult
from symbolgen.jobs.models import Artifact
from symbolgen.jobs.registry import JobRegistry
from symbolgen.pipeline.contracts import GenerationRequest
from symbolgen.pipeline.orchestrator import GenerationOrchestrator, select_tier

MODELS: dict[ModelTier, str] = {"fast": "fast-model", "escalated": "strong-model"}


class ScriptedCodegen:
  """Returns (script, cost) pairs or raises queued errors, recording every call."""

  def __init__(self, outcomes: list[tuple[str, float] | BaseException], delay: float = 0.0) -> None:
    self._outcomes = outcomes
    self._delay = delay
    self.calls: list[tuple[str, ModelTier, str | None, str | None]] = []

  def model_for(self, tier: ModelTier) -> str:
    return MODELS[tier]

  async def generate(self, specification: str, context_hints: dict[str, object] | None, tier: ModelTier) -> GenerationResult:
    self.calls.append(("generate", tier, None, None))
    return await self._next(tier)

  async def generate_with_feedback(self, specification: str, previous_script: str, previous_error: str, tier: ModelTier, context_hints: dict[str, object] | None = None) -> GenerationResult:
    self.calls.append(("feedback", tier, previous_script, previous_error))
    return await self._next(tier)

  async def _next(self, tier: ModelTier) -> GenerationResult:
    if self._delay:
      await asyncio.sleep(self._delay)
    item = self._outcomes.pop(0)
    if isinstance(item, BaseException):
      raise item
    script, cost = item
    return GenerationResult(script=script, raw_output=f"```lisp\n{script}\n```", cost=cost, tokens_in=100, tokens_out=200, model=MODELS[tier], tier=tier)


class ScriptedExecutor:
  def __init__(self, results: list[ExecutionResult | BaseException], delays: list[float] | None = None) -> None:
    self._results = results
    self._delays = delays or []
    self.scripts: list[str] = []

  async def execute(self, script, on_step=None) -> ExecutionResult:
    self.scripts.append(script)
    if on_step is not None:
      on_step("Uploading script...", f"{len(script)} bytes")
    delay = self._delays.pop(0) if self._delays else 0.0
    if delay:
      await asyncio.sleep(delay)
    item = self._results.pop(0)
    if isinstance(item, BaseException):
      raise item
    return item


def _success() -> ExecutionResult:
  artifacts = {"dwg": Artifact(name="Symbol.dwg", content_type="application/acad", data=b"DWG"), "png": Artifact(name="Symbol.png", content_type="image/png", data=b"PNG")}
  return ExecutionResult(success=True, artifacts=artifacts, report="ok", work_item_id="wi-ok")


def _failure(report: str) -> ExecutionResult:
  return ExecutionResult(success=False, report=report, errors=("WorkItem failed: failedInstructions",), work_item_id="wi-bad")


def _orchestrator(registry: JobRegistry, codegen: ScriptedCodegen, executor: ScriptedExecutor, **kwargs: float) -> GenerationOrchestrator:
  return GenerationOrchestrator(registry=registry, codegen=codegen, executor=executor, max_attempts=3, **kwargs)


REQUEST = GenerationRequest(spec="draw 100x50 rectangle", product_id="P-1")


def test_tier_selection_is_monotonic() -> None:
  assert select_tier(1) == "fast"
  assert select_tier(2, "fast") == "escalated"
  assert select_tier(3, "escalated") == "escalated"
  assert select_tier(1, "escalated") == "escalated"


@pytest.mark.anyio
async def test_execution_error_is_fed_back_to_escalated_model() -> None:
  report = "\n".join("; error: invalid argument" if number == 842 else f"Processing entity {number}" for number in range(1, 1001))
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([("(first)", 0.01), ("(second)", 0.05)])
  executor = ScriptedExecutor([_failure(report), _success()])

  status = await _orchestrator(registry, codegen, executor).run(job_id, REQUEST)

  assert status == "succeeded"
  assert codegen.calls[0] == ("generate", "fast", None, None)
  method, tier, previous_script, previous_error = codegen.calls[1]
  assert (method, tier, previous_script) == ("feedback", "escalated", "(first)")
  assert previous_error is not None and "; error: invalid argument" in previous_error

  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.result is not None
  assert snapshot.result.total_cost_usd == pytest.approx(0.06)
  assert snapshot.result.attempts == 2
  assert snapshot.result.model == "strong-model"
  assert set(snapshot.result.artifacts) == {"dwg", "png"}
  assert [summary.tier for summary in snapshot.result.attempt_log] == ["fast", "escalated"]
  phases = [event.phase for event in snapshot.events]
  assert "retry-feedback" in phases
  assert sum(1 for event in snapshot.events if event.terminal) == 1
  assert snapshot.events[-1].phase == "done"


@pytest.mark.anyio
async def test_exhausted_attempts_fail_with_summed_cost() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([("(a)", 0.01), ("(b)", 0.02), ("(c)", 0.03)])
  executor = ScriptedExecutor([_failure("; error: bad argument type") for _ in range(3)])

  status = await _orchestrator(registry, codegen, executor).run(job_id, REQUEST)

  assert status == "failed"
  assert len(codegen.calls) == 3
  assert len(executor.scripts) == 3
  assert [call[1] for call in codegen.calls] == ["fast", "escalated", "escalated"]
  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.failure is not None
  assert snapshot.failure.reason == "execution"
  assert "3 attempts" in snapshot.failure.message
  assert "bad argument type" in snapshot.failure.message
  assert snapshot.failure.total_cost_usd == pytest.approx(0.06)
  assert len(snapshot.failure.error_chain) == 3
  assert [event.attempt_label for event in snapshot.events if event.phase == "retry-feedback"] == ["Attempt 1/3", "Attempt 2/3"]
  assert snapshot.events[-1].phase == "error" and snapshot.events[-1].terminal


@pytest.mark.anyio
async def test_transport_error_consumes_attempt_without_execution() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([GenerationError("AI service unreachable. Please try again later.", kind="transport"), ("(ok)", 0.05)])
  executor = ScriptedExecutor([_success()])

  status = await _orchestrator(registry, codegen, executor).run(job_id, REQUEST)

  assert status == "succeeded"
  assert codegen.calls[1] == ("generate", "escalated", None, None)
  assert executor.scripts == ["(ok)"]
  snapshot = registry.get(job_id)
  assert snapshot is not None
  error_events = [event for event in snapshot.events if event.phase == "error" and not event.terminal]
  assert error_events[0].attempt_label == "Attempt 1/3"
  assert "unreachable" in (error_events[0].detail or "")
  assert snapshot.result is not None and snapshot.result.attempt_log[0].outcome == "generation_failed"


@pytest.mark.anyio
async def test_job_budget_stops_remaining_attempts() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([("(a)", 0.01), ("(b)", 0.02), ("(c)", 0.03)])
  executor = ScriptedExecutor([_failure("; error: nil"), _success()], delays=[0.0, 5.0])

  status = await _orchestrator(registry, codegen, executor, job_timeout=0.3).run(job_id, REQUEST)

  assert status == "failed"
  assert len(codegen.calls) == 2
  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.failure is not None
  assert snapshot.failure.reason == "timeout"
  assert snapshot.failure.message.startswith("Timed out after 0.3 s")
  assert "2 attempts started" in snapshot.failure.message
  assert snapshot.failure.total_cost_usd == pytest.approx(0.03)
  assert [summary.outcome for summary in snapshot.failure.attempt_log] == ["execution_failed", "timed_out"]


@pytest.mark.anyio
async def test_extraction_failure_feeds_raw_output_back_and_keeps_cost() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([ExtractionError("Could not extract script from model response", cost=0.004, raw_output="Here is a description."), ("(ok)", 0.05)])
  executor = ScriptedExecutor([_success()])

  await _orchestrator(registry, codegen, executor).run(job_id, REQUEST)

  method, tier, previous_script, previous_error = codegen.calls[1]
  assert (method, tier, previous_script) == ("feedback", "escalated", "Here is a description.")
  assert previous_error is not None and "Could not extract script" in previous_error
  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.result is not None
  assert snapshot.result.total_cost_usd == pytest.approx(0.054)


@pytest.mark.anyio
async def test_generation_failures_on_every_attempt_name_the_generation_error() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([GenerationError("AI service temporarily unavailable.", kind="transport") for _ in range(3)])
  executor = ScriptedExecutor([])

  await _orchestrator(registry, codegen, executor).run(job_id, REQUEST)

  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.failure is not None
  assert snapshot.failure.reason == "generation"
  assert snapshot.failure.message == "Script generation failed after 3 attempts: AI service temporarily unavailable."
  assert executor.scripts == []


@pytest.mark.anyio
async def test_slow_generation_call_counts_as_failed_attempt() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([("(a)", 0.01), ("(b)", 0.01), ("(c)", 0.01)], delay=0.2)
  executor = ScriptedExecutor([])

  await _orchestrator(registry, codegen, executor, generation_timeout=0.05, job_timeout=5.0).run(job_id, REQUEST)

  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.failure is not None
  assert snapshot.failure.reason == "generation"
  assert "did not respond" in snapshot.failure.message
  assert len(codegen.calls) == 3


@pytest.mark.anyio
async def test_unexpected_exception_still_completes_job() -> None:
  registry = JobRegistry()
  job_id = registry.create("P-1")
  codegen = ScriptedCodegen([("(a)", 0.02)])
  executor = ScriptedExecutor([RuntimeError("adapter exploded")])

  status = await _orchestrator(registry, codegen, executor).run(job_id, REQUEST)

  assert status == "failed"
  snapshot = registry.get(job_id)
  assert snapshot is not None and snapshot.failure is not None
  assert snapshot.failure.reason == "unexpected"
  assert snapshot.failure.message == "Unexpected error: adapter exploded"
  assert snapshot.failure.total_cost_usd == pytest.approx(0.02)

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from symbolgen.ai.codegen import GenerationResult, ModelTier
from symbolgen.api.deps import get_launcher, get_rate_limiter, get_registry
from symbolgen.cad.executor import ExecutionResult
from symbolgen.jobs.models import Artifact
from symbolgen.jobs.registry import JobRegistry
from symbolgen.main import app
from symbolgen.pipeline.orchestrator import GenerationOrchestrator
from symbolgen.services.jobs import JobLauncher
from symbolgen.services.ratelimit import FixedWindowRateLimiter


class StaticCodegen:
  """Always returns the same script."""

  def model_for(self, tier: ModelTier) -> str:
    return f"{tier}-model"

  async def generate(self, specification: str, context_hints: dict[str, object] | None, tier: ModelTier) -> GenerationResult:
    return GenerationResult(script='(command "RECTANG" "0,0" "100,50")', raw_output="", cost=0.01, tokens_in=10, tokens_out=20, model=self.model_for(tier), tier=tier)

  async def generate_with_feedback(self, specification: str, previous_script: str, previous_error: str, tier: ModelTier, context_hints: dict[str, object] | None = None) -> GenerationResult:
    return await self.generate(specification, context_hints, tier)


class StaticExecutor:
  def __init__(self, *, succeed: bool = True) -> None:
    self.succeed = succeed

  async def execute(self, script: str, on_step=None) -> ExecutionResult:
    if on_step is not None:
      on_step("Submitting WorkItem...", None)
    if not self.succeed:
      return ExecutionResult(success=False, report="; error: bad argument type: numberp: nil", errors=("WorkItem failed: failedInstructions",))
    return ExecutionResult(success=True, artifacts={"dwg": Artifact(name="Symbol.dwg", content_type="application/acad", data=b"DWG")}, work_item_id="wi-1")


@pytest.fixture
def registry() -> JobRegistry:
  return JobRegistry()


@pytest.fixture
def rate_limiter() -> FixedWindowRateLimiter:
  return FixedWindowRateLimiter(limit=100, window_seconds=60)


def _install(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter, executor: StaticExecutor) -> None:
  orchestrator = GenerationOrchestrator(registry=registry, codegen=StaticCodegen(), executor=executor, max_attempts=2)
  launcher = JobLauncher(registry, orchestrator)
  app.dependency_overrides[get_registry] = lambda: registry
  app.dependency_overrides[get_launcher] = lambda: launcher
  app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter


@pytest.fixture(autouse=True)
def _clear_overrides():
  yield
  app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
  return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def _wait_terminal(client: httpx.AsyncClient, job_id: str) -> dict:
  for _ in range(200):
    response = await client.get(f"/v1/jobs/{job_id}")
    body = response.json()
    if body["status"] in {"succeeded", "failed"}:
      return body
    await asyncio.sleep(0.01)
  raise AssertionError(f"job {job_id} did not finish")


def _sse_messages(text: str) -> list[tuple[str, dict]]:
  messages = []
  for block in text.split("\n\n"):
    if not block.strip() or block.startswith(":"):
      continue
    fields = dict(line.split(": ", 1) for line in block.splitlines())
    messages.append((fields["event"], json.loads(fields["data"])))
  return messages


@pytest.mark.anyio
async def test_generate_returns_job_id_and_job_succeeds(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    response = await client.post("/v1/symbols/generate", json={"spec": "100x50 rectangle", "product_id": "P-1", "dimensions": {"length": 100, "width": 50}})
    assert response.status_code == 202
    assert response.headers["x-request-id"]
    job_id = response.json()["job_id"]
    assert response.json()["status"] == "pending"

    body = await _wait_terminal(client, job_id)

  assert body["status"] == "succeeded"
  assert body["label"] == "P-1_Symbol.dwg"
  assert body["result"]["attempts"] == 1
  assert body["result"]["artifacts"] == [{"name": "dwg", "filename": "Symbol.dwg", "content_type": "application/acad", "size": 3}]
  assert body["events"][0]["phase"] == "init"
  assert body["events"][-1]["terminal"] is True
  assert [event["sequence"] for event in body["events"]] == list(range(len(body["events"])))


@pytest.mark.anyio
async def test_failed_job_reports_failure_summary(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor(succeed=False))
  async with _client() as client:
    job_id = (await client.post("/v1/symbols/generate", json={"spec": "circle", "product_id": "P-2"})).json()["job_id"]
    body = await _wait_terminal(client, job_id)

  assert body["status"] == "failed"
  assert body["result"] is None
  assert body["failure"]["reason"] == "execution"
  assert body["failure"]["message"].startswith("Execution failed after 2 attempts")
  assert body["failure"]["total_cost_usd"] == pytest.approx(0.02)


@pytest.mark.anyio
async def test_blank_spec_is_rejected(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    response = await client.post("/v1/symbols/generate", json={"spec": "   ", "product_id": "P-1"})

  assert response.status_code == 400
  assert response.json()["detail"] == "Symbol specification is required."
  assert len(registry) == 0


@pytest.mark.anyio
async def test_blank_product_id_is_rejected(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    response = await client.post("/v1/symbols/generate", json={"spec": "rectangle", "product_id": "   "})

  assert response.status_code == 400
  assert response.json()["detail"] == "Product ID is required."
  assert len(registry) == 0


@pytest.mark.anyio
async def test_missing_product_id_is_a_validation_error(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    response = await client.post("/v1/symbols/generate", json={"spec": "rectangle"})

  assert response.status_code == 422
  assert "input" not in response.json()["detail"][0]


@pytest.mark.anyio
async def test_rate_limit_returns_retry_after(registry: JobRegistry) -> None:
  _install(registry, FixedWindowRateLimiter(limit=1, window_seconds=30), StaticExecutor())
  async with _client() as client:
    first = await client.post("/v1/symbols/generate", json={"spec": "rectangle", "product_id": "P-1"})
    second = await client.post("/v1/symbols/generate", json={"spec": "rectangle", "product_id": "P-1"})
    await _wait_terminal(client, first.json()["job_id"])

  assert first.status_code == 202
  assert second.status_code == 429
  assert int(second.headers["retry-after"]) >= 1


@pytest.mark.anyio
async def test_stream_replays_progress_then_done(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    job_id = (await client.post("/v1/symbols/generate", json={"spec": "rectangle", "product_id": "P-1"})).json()["job_id"]
    await _wait_terminal(client, job_id)
    response = await client.get(f"/v1/jobs/{job_id}/stream")

  assert response.headers["content-type"].startswith("text/event-stream")
  messages = _sse_messages(response.text)
  kinds = [kind for kind, _ in messages]
  assert kinds[-1] == "done"
  assert set(kinds[:-1]) == {"progress"}
  assert messages[-1][1] == {"job_id": job_id, "status": "succeeded"}
  assert messages[-2][1]["terminal"] is True
  sequences = [data["sequence"] for kind, data in messages if kind == "progress"]
  assert sequences == sorted(sequences)


@pytest.mark.anyio
async def test_stream_for_unknown_job_reports_not_found(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    response = await client.get("/v1/jobs/missing/stream")

  assert _sse_messages(response.text) == [("not_found", {"job_id": "missing", "status": "not_found"})]


@pytest.mark.anyio
async def test_artifact_download_uses_product_file_name(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    job_id = (await client.post("/v1/symbols/generate", json={"spec": "rectangle", "product_id": "P-1"})).json()["job_id"]
    await _wait_terminal(client, job_id)
    response = await client.get(f"/v1/jobs/{job_id}/artifacts/dwg")
    missing = await client.get(f"/v1/jobs/{job_id}/artifacts/png")

  assert response.status_code == 200
  assert response.content == b"DWG"
  assert response.headers["content-disposition"] == 'attachment; filename="P-1_Symbol.dwg"'
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_unknown_job_returns_404(registry: JobRegistry, rate_limiter: FixedWindowRateLimiter) -> None:
  _install(registry, rate_limiter, StaticExecutor())
  async with _client() as client:
    status_response = await client.get("/v1/jobs/nope")
    artifact_response = await client.get("/v1/jobs/nope/artifacts/dwg")

  assert status_response.status_code == 404
  assert status_response.json()["detail"] == "Job not found"
  assert artifact_response.status_code == 404


@pytest.mark.anyio
async def test_health_reports_version() -> None:
  async with _client() as client:
    response = await client.get("/health")

  assert response.status_code == 200
  assert response.json()["status"] == "ok"

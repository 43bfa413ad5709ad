from __future__ import annotations

import json

import pytest

from symbolgen.jobs.models import FailureSummary, ProgressEvent
from symbolgen.jobs.progress import JobProgressReporter, truncate_detail
from symbolgen.jobs.registry import JobRegistry
from symbolgen.jobs.stream import KEEPALIVE_COMMENT, format_progress, format_sse, stream_job_events


def _data(message: str) -> dict:
  line = next(line for line in message.splitlines() if line.startswith("data: "))
  return json.loads(line.removeprefix("data: "))


def test_format_sse_renders_event_and_json_data() -> None:
  message = format_sse({"job_id": "abc", "status": "failed"}, event="done")
  assert message.startswith("event: done\n")
  assert message.endswith("\n\n")
  assert _data(message) == {"job_id": "abc", "status": "failed"}


def test_format_progress_serializes_event_fields() -> None:
  event = ProgressEvent(sequence=3, phase="retry-feedback", message="Feeding error back to AI...", attempt_label="Attempt 1/3")
  payload = _data(format_progress(event))
  assert payload["sequence"] == 3
  assert payload["phase"] == "retry-feedback"
  assert payload["attempt_label"] == "Attempt 1/3"
  assert payload["terminal"] is False


def test_reporter_labels_attempts_and_truncates_detail() -> None:
  registry = JobRegistry()
  job_id = registry.create("x")
  reporter = JobProgressReporter(job_id=job_id, registry=registry, max_attempts=3)
  reporter.init("Starting")
  reporter.start_attempt(2)
  reporter.error("Execution failed", detail="e" * 500)

  snapshot = registry.get(job_id)
  assert snapshot is not None
  first, second = snapshot.events
  assert first.attempt_label is None
  assert second.attempt_label == "Attempt 2/3"
  assert second.detail is not None and len(second.detail) == 200
  assert truncate_detail(None) is None


@pytest.mark.anyio
async def test_stream_for_unknown_job_reports_not_found() -> None:
  chunks = [chunk async for chunk in stream_job_events(JobRegistry(), "nope")]
  assert len(chunks) == 1
  assert chunks[0].startswith("event: not_found")


@pytest.mark.anyio
async def test_stream_replays_events_and_ends_with_done() -> None:
  registry = JobRegistry()
  job_id = registry.create("x")
  registry.append_event(job_id, "init", "Starting")
  registry.append_event(job_id, "generate", "Generating")
  registry.complete(job_id, failure=FailureSummary(message="Execution failed after 3 attempts: bad", reason="execution"))

  chunks = [chunk async for chunk in stream_job_events(registry, job_id, keepalive_seconds=None)]
  assert [chunk.split("\n", 1)[0] for chunk in chunks] == ["event: progress"] * 3 + ["event: done"]
  assert [_data(chunk)["message"] for chunk in chunks[:3]] == ["Starting", "Generating", "Generation failed"]
  assert _data(chunks[-1]) == {"job_id": job_id, "status": "failed"}


@pytest.mark.anyio
async def test_stream_sends_keepalive_while_idle() -> None:
  registry = JobRegistry()
  job_id = registry.create("x")
  stream = stream_job_events(registry, job_id, keepalive_seconds=0.01)

  assert await stream.__anext__() == KEEPALIVE_COMMENT

  registry.append_event(job_id, "execute", "Executing")
  chunk = await stream.__anext__()
  while chunk == KEEPALIVE_COMMENT:
    chunk = await stream.__anext__()
  assert _data(chunk)["message"] == "Executing"
  await stream.aclose()
  assert registry.subscriber_count(job_id) == 0

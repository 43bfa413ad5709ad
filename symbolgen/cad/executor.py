"""Execution adapter: run a script remotely and collect its outputs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from symbolgen.cad.design_automation import DWG_NAME, PNG_NAME, SCRIPT_NAME, DesignAutomationClient
from symbolgen.cad.errors import ExecutionServiceError
from symbolgen.jobs.models import Artifact
from symbolgen.utils.ids import generate_bucket_key

logger = logging.getLogger(__name__)

StepCallback = Callable[[str, str | None], None]


@dataclass(frozen=True)
class ExecutionResult:
  """Outcome of one remote run. Failures are values, not exceptions."""

  success: bool
  artifacts: dict[str, Artifact] = field(default_factory=dict)
  report: str | None = None
  errors: tuple[str, ...] = ()
  work_item_id: str | None = None

  @property
  def diagnostic_text(self) -> str:
    """Raw text used to build retry feedback: the report when present."""
    if self.report and self.report.strip():
      return self.report
    return "\n".join(self.errors)


class ScriptExecutor(Protocol):
  async def execute(self, script: str, on_step: StepCallback | None = None) -> ExecutionResult: ...


def _notify(on_step: StepCallback | None, message: str, detail: str | None = None) -> None:
  if on_step is not None:
    on_step(message, detail)


class DesignAutomationExecutor:
  """Runs scripts on AutoCAD through APS Design Automation."""

  def __init__(self, client: DesignAutomationClient, *, bucket_key_factory: Callable[[], str] = generate_bucket_key) -> None:
    self._client = client
    self._bucket_key_factory = bucket_key_factory

  async def execute(self, script: str, on_step: StepCallback | None = None) -> ExecutionResult:
    bucket_key: str | None = None
    work_item_id: str | None = None
    try:
      _notify(on_step, "Creating activity...")
      await self._client.ensure_activity()

      _notify(on_step, "Creating temporary bucket...")
      bucket_key = await self._client.create_bucket(self._bucket_key_factory())

      _notify(on_step, "Uploading script...", f"{len(script.encode('utf-8'))} bytes")
      await self._client.upload(bucket_key, SCRIPT_NAME, script.encode("utf-8"))
      script_url = await self._client.signed_url(bucket_key, SCRIPT_NAME)
      dwg_url = await self._client.signed_url(bucket_key, DWG_NAME, writable=True)
      png_url = await self._client.signed_url(bucket_key, PNG_NAME, writable=True)

      _notify(on_step, "Submitting WorkItem...")
      work_item_id = await self._client.submit_work_item(
        {
          "script": {"url": script_url, "verb": "get"},
          "dwgOutput": {"url": dwg_url, "verb": "put", "localName": DWG_NAME},
          "pngOutput": {"url": png_url, "verb": "put", "localName": PNG_NAME},
        }
      )

      _notify(on_step, "Waiting for AutoCAD processing...", "this may take 15-30s")
      outcome = await self._client.wait_for_work_item(work_item_id, lambda status, elapsed: _notify(on_step, "AutoCAD processing...", f"{elapsed:.0f}s elapsed"))
      if not outcome.succeeded:
        logger.warning("WorkItem %s finished with status %s", work_item_id, outcome.status)
        logger.debug("WorkItem %s report:\n%s", work_item_id, outcome.report)
        return ExecutionResult(success=False, report=outcome.report, errors=(f"WorkItem failed: {outcome.status}",), work_item_id=work_item_id)

      artifacts: dict[str, Artifact] = {}
      _notify(on_step, "Downloading DWG file...")
      dwg = await self._client.download(dwg_url)
      if not dwg:
        return ExecutionResult(success=False, report=outcome.report, errors=("DWG generation failed - no output file",), work_item_id=work_item_id)
      artifacts["dwg"] = Artifact(name=DWG_NAME, content_type="application/acad", data=dwg)
      _notify(on_step, "DWG downloaded", f"{len(dwg) / 1024:.0f} KB")

      _notify(on_step, "Downloading PNG file...")
      png = await self._client.download(png_url)
      if png:
        artifacts["png"] = Artifact(name=PNG_NAME, content_type="image/png", data=png)
        _notify(on_step, "PNG downloaded", f"{len(png) / 1024:.0f} KB")

      return ExecutionResult(success=True, artifacts=artifacts, report=outcome.report, work_item_id=work_item_id)
    except (ExecutionServiceError, httpx.HTTPError) as exc:
      logger.error("Design Automation run failed: %s", exc)
      report = exc.report if isinstance(exc, ExecutionServiceError) else None
      return ExecutionResult(success=False, report=report, errors=(str(exc),), work_item_id=work_item_id)
    finally:
      await self._cleanup(bucket_key)

  async def _cleanup(self, bucket_key: str | None) -> None:
    # The activity is shared by concurrent runs; only the per-run bucket goes.
    if not bucket_key:
      return
    try:
      await self._client.delete_bucket(bucket_key)
    except (ExecutionServiceError, httpx.HTTPError) as exc:
      logger.warning("Design Automation cleanup failed: %s", exc)

"""Errors raised inside the execution adapter."""

from __future__ import annotations


class ExecutionServiceError(RuntimeError):
  """A Design Automation call failed.

  ``report`` holds the work item report when the remote run itself failed.
  The executor turns these into failed ``ExecutionResult`` objects; they never
  reach the orchestrator.
  """

  def __init__(self, message: str, *, status_code: int | None = None, report: str | None = None, work_item_id: str | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.report = report
    self.work_item_id = work_item_id

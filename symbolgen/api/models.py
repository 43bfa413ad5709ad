from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from symbolgen.jobs.models import FailureReason, JobStatus, ProgressPhase
from symbolgen.pipeline.contracts import GenerationRequest, SymbolDimensions


class GenerateSymbolRequest(BaseModel):
  """Request payload for symbol generation."""

  spec: StrictStr = Field(max_length=20_000, description="Symbol specification (free text or structured markdown).")
  product_id: StrictStr = Field(min_length=1, max_length=128, description="Product identifier used in prompts and file names.", examples=["DT285029"])
  label: StrictStr | None = Field(default=None, max_length=200, description="Optional display label for the job.")
  dimensions: SymbolDimensions | None = Field(default=None, description="Optional physical dimensions in millimetres.")
  hints: dict[StrictStr, StrictStr] = Field(default_factory=dict, description="Optional extra context passed to the prompt.")
  model_config = ConfigDict(extra="forbid")

  def to_generation_request(self) -> GenerationRequest:
    return GenerationRequest(spec=self.spec.strip(), product_id=self.product_id.strip(), label=self.label, dimensions=self.dimensions, hints=self.hints)


class JobCreateResponse(BaseModel):
  job_id: str
  status: JobStatus


class ProgressEventResponse(BaseModel):
  sequence: int
  phase: ProgressPhase
  message: str
  detail: str | None = None
  attempt_label: str | None = None
  timestamp: str
  elapsed: float
  terminal: bool = False


class ArtifactInfo(BaseModel):
  name: str
  filename: str
  content_type: str
  size: int


class JobResultResponse(BaseModel):
  artifacts: list[ArtifactInfo]
  total_cost_usd: float
  model: str
  tokens_in: int
  tokens_out: int
  attempts: int
  attempt_log: list[dict[str, Any]]
  work_item_id: str | None = None


class JobFailureResponse(BaseModel):
  message: str
  reason: FailureReason
  error_chain: list[str] = Field(default_factory=list)
  attempts: int
  total_cost_usd: float
  attempt_log: list[dict[str, Any]]


class JobStatusResponse(BaseModel):
  """Polling view of a job. Artifact bytes are served by the download route."""

  job_id: str
  label: str
  status: JobStatus
  events: list[ProgressEventResponse]
  result: JobResultResponse | None = None
  failure: JobFailureResponse | None = None


class HealthResponse(BaseModel):
  status: Literal["ok"]
  version: str

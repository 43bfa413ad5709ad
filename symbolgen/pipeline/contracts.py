"""Shared data contracts for the generation pipeline."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SymbolDimensions(BaseModel):
  """Physical product dimensions in millimetres."""

  model_config = ConfigDict(frozen=True)

  length: float | None = Field(default=None, gt=0)
  width: float | None = Field(default=None, gt=0)
  height: float | None = Field(default=None, gt=0)
  diameter: float | None = Field(default=None, gt=0)


class GenerationRequest(BaseModel):
  """Inputs for one symbol generation job.

  Frozen so the background task owns an immutable copy, independent of the
  request that created it.
  """

  model_config = ConfigDict(frozen=True)

  spec: str = Field(min_length=1, max_length=20_000)
  product_id: str = Field(min_length=1, max_length=128)
  label: str | None = Field(default=None, max_length=200)
  dimensions: SymbolDimensions | None = None
  hints: dict[str, str] = Field(default_factory=dict)

  @property
  def display_label(self) -> str:
    return self.label or f"{self.product_id}_Symbol.dwg"

  def context_hints(self) -> dict[str, Any]:
    """Flatten metadata into prompt hints; empty values are dropped by the prompt builder."""
    hints: dict[str, Any] = {"Product ID": self.product_id}
    if self.dimensions is not None:
      for name, value in self.dimensions.model_dump(exclude_none=True).items():
        hints[f"{name.capitalize()} (mm)"] = value
    hints.update(self.hints)
    return hints

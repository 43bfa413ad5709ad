"""Error types and classification helpers for code generation calls."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Literal

GenerationErrorKind = Literal["transport", "refused", "empty", "extraction"]

_RATE_LIMIT_HINTS: tuple[str, ...] = ("429", "too many requests", "rate limit", "resource exhausted", "quota exceeded")


class GenerationError(RuntimeError):
  """Raised when the code generation step yields no usable script.

  Carries whatever was consumed before the failure so callers can still
  account for the spend.
  """

  kind: GenerationErrorKind

  def __init__(self, message: str, *, kind: GenerationErrorKind = "transport", model: str | None = None, cost: float = 0.0, tokens_in: int = 0, tokens_out: int = 0, raw_output: str | None = None) -> None:
    super().__init__(message)
    self.kind = kind
    self.model = model
    self.cost = cost
    self.tokens_in = tokens_in
    self.tokens_out = tokens_out
    self.raw_output = raw_output


class ExtractionError(GenerationError):
  """The model answered but no script could be extracted from the output."""

  def __init__(self, message: str = "Could not extract script from model response", **kwargs: object) -> None:
    kwargs.pop("kind", None)
    super().__init__(message, kind="extraction", **kwargs)  # type: ignore[arg-type]


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True when an exception looks like a 429/quota response."""
  status_code = getattr(exc, "status_code", None)
  if status_code == 429:
    return True
  return _match_hint(str(exc).lower(), _RATE_LIMIT_HINTS)


def describe_status_error(status_code: int, body: str | None) -> str:
  """Turn a failed HTTP response from the model service into a user-facing message."""
  text = (body or "").strip()
  if status_code in {502, 503}:
    return "AI service temporarily unavailable. Please try again in a few minutes."
  if status_code == 429:
    return "AI service rate limit exceeded. Please wait a moment and try again."
  if status_code in {401, 403}:
    return "AI service authentication error. Please contact support."
  # HTML error pages carry nothing useful for users.
  if text.startswith("<!DOCTYPE") or text.startswith("<html"):
    return f"AI service error ({status_code}). Please try again later."
  try:
    payload = json.loads(text)
  except (json.JSONDecodeError, ValueError):
    return f"AI service error ({status_code}). Please try again."
  if isinstance(payload, dict):
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
      return str(error["message"])
    if payload.get("message"):
      return str(payload["message"])
  return f"AI service error ({status_code})"

"""Bounded error-context extraction from execution reports."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_INDICATORS: tuple[str, ...] = (
  "error",
  "invalid",
  "unknown",
  "nil",
  "bad argument",
  "exception",
  "expected",
  "requires",
  "failed",
  # AutoCAD echoes every command it runs; the last echo locates the failure.
  "command:",
)
DEFAULT_EXCLUSIONS: tuple[str, ...] = ("command: new",)

NO_REPORT = "No report"


@dataclass(frozen=True)
class ErrorContextPolicy:
  """Tunable heuristic for picking relevant report lines.

  Lines containing any indicator (case-insensitive) and no exclusion are
  candidates; the last ``max_lines`` of them win. Without candidates the last
  ``fallback_chars`` characters are used. The result never exceeds
  ``max_chars``.
  """

  indicators: tuple[str, ...] = DEFAULT_INDICATORS
  exclusions: tuple[str, ...] = DEFAULT_EXCLUSIONS
  max_lines: int = 10
  fallback_chars: int = 1000
  max_chars: int = 2000

  def matches(self, line: str) -> bool:
    lowered = line.lower()
    if any(exclusion in lowered for exclusion in self.exclusions):
      return False
    return any(indicator in lowered for indicator in self.indicators)


DEFAULT_POLICY = ErrorContextPolicy()


def _clip_tail(text: str, limit: int) -> str:
  if len(text) <= limit:
    return text
  return text[-limit:]


def extract_error_context(report: str | None, policy: ErrorContextPolicy = DEFAULT_POLICY) -> str:
  """Return a compact, non-empty excerpt of ``report`` for retry feedback."""
  if not report or not report.strip():
    return NO_REPORT

  lines = [line.rstrip() for line in report.splitlines()]
  matching = [line for line in lines if line.strip() and policy.matches(line)]
  if matching:
    excerpt = "\n".join(matching[-policy.max_lines :])
  else:
    excerpt = report.rstrip()[-policy.fallback_chars :]

  excerpt = _clip_tail(excerpt.strip(), policy.max_chars)
  return excerpt or NO_REPORT

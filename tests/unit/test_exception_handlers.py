"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from symbolgen.core.exceptions import _sanitize_http_detail, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "dimensions"), "msg": "Value error, length must be positive.", "input": {"length": -5}, "ctx": {"error": ValueError("length must be positive."), "input": {"length": -5}}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["loc"] == ["body", "dimensions"]
  assert sanitized[0]["ctx"]["error"] == "ValueError: length must be positive."
  assert "input" not in sanitized[0]["ctx"]


def test_sanitize_http_detail_drops_spec_text() -> None:
  detail = {"message": "bad request", "spec": "secret product sheet", "nested": [{"body": "x", "field": "product_id"}]}
  assert _sanitize_http_detail(detail) == {"message": "bad request", "nested": [{"field": "product_id"}]}

"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from symbolgen.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_FAST_MODEL = "anthropic/claude-sonnet-4"
DEFAULT_ESCALATED_MODEL = "anthropic/claude-opus-4"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the symbol generation service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  openrouter_api_key: str | None
  openrouter_base_url: str
  openrouter_referer: str | None
  openrouter_title: str | None
  fast_model: str
  escalated_model: str
  model_pricing: dict[str, Any] = field(hash=False)
  max_output_tokens: int
  rate_limit_backoff_seconds: tuple[float, ...]
  max_attempts: int
  job_timeout_seconds: float
  generation_timeout_seconds: float
  execution_timeout_seconds: float
  error_context_max_lines: int
  error_context_fallback_chars: int
  error_context_max_chars: int
  append_output_footer: bool
  aps_client_id: str | None
  aps_client_secret: str | None
  aps_nickname: str
  aps_activity_name: str
  aps_engine_version: str
  aps_region: str
  aps_da_base_url: str
  aps_oss_base_url: str
  aps_auth_url: str
  aps_poll_interval_seconds: float
  aps_max_polls: int
  aps_http_timeout_seconds: float
  job_retention_seconds: float
  max_tracked_jobs: int
  eviction_interval_seconds: float
  generate_rate_limit: int
  generate_rate_window_seconds: float
  stream_keepalive_seconds: float


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("SYMBOLGEN_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("SYMBOLGEN_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("SYMBOLGEN_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_json_dict(raw: str | None, default: dict[str, Any]) -> dict[str, Any]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return parsed


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_delays(raw: str | None, default: tuple[float, ...]) -> tuple[float, ...]:
  """Parse a comma separated list of backoff delays in seconds."""
  if raw is None or raw.strip() == "":
    return default
  delays = tuple(float(part) for part in raw.split(",") if part.strip())
  if any(delay < 0 for delay in delays):
    raise ValueError("SYMBOLGEN_RATE_LIMIT_BACKOFF must not contain negative delays.")
  return delays


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("SYMBOLGEN_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("SYMBOLGEN_DEBUG"))

  log_max_bytes = _positive_int("SYMBOLGEN_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("SYMBOLGEN_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("SYMBOLGEN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Attempt budget and wall-clock limits for one generation job.
  max_attempts = _positive_int("SYMBOLGEN_MAX_ATTEMPTS", "3")
  job_timeout_seconds = _positive_float("SYMBOLGEN_JOB_TIMEOUT_SECONDS", "300")
  generation_timeout_seconds = _positive_float("SYMBOLGEN_GENERATION_TIMEOUT_SECONDS", "120")
  execution_timeout_seconds = _positive_float("SYMBOLGEN_EXECUTION_TIMEOUT_SECONDS", "240")

  error_context_max_lines = _positive_int("SYMBOLGEN_ERROR_CONTEXT_MAX_LINES", "10")
  error_context_fallback_chars = _positive_int("SYMBOLGEN_ERROR_CONTEXT_FALLBACK_CHARS", "1000")
  error_context_max_chars = _positive_int("SYMBOLGEN_ERROR_CONTEXT_MAX_CHARS", "2000")
  if error_context_fallback_chars > error_context_max_chars:
    raise ValueError("SYMBOLGEN_ERROR_CONTEXT_FALLBACK_CHARS must not exceed SYMBOLGEN_ERROR_CONTEXT_MAX_CHARS.")

  max_tracked_jobs = _positive_int("SYMBOLGEN_MAX_TRACKED_JOBS", "500")
  generate_rate_limit = _positive_int("SYMBOLGEN_GENERATE_RATE_LIMIT", "10")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("SYMBOLGEN_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("SYMBOLGEN_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("SYMBOLGEN_LOG_HTTP_4XX")),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    openrouter_base_url=(os.getenv("OPENROUTER_BASE_URL") or "https://openrouter.ai/api/v1").strip(),
    openrouter_referer=_optional_str(os.getenv("OPENROUTER_HTTP_REFERER")),
    openrouter_title=_optional_str(os.getenv("OPENROUTER_TITLE")) or "Symbol Generator",
    fast_model=(os.getenv("SYMBOLGEN_FAST_MODEL") or DEFAULT_FAST_MODEL).strip(),
    escalated_model=(os.getenv("SYMBOLGEN_ESCALATED_MODEL") or DEFAULT_ESCALATED_MODEL).strip(),
    model_pricing=_parse_json_dict(os.getenv("SYMBOLGEN_MODEL_PRICING"), {}),
    max_output_tokens=_positive_int("SYMBOLGEN_MAX_OUTPUT_TOKENS", "4096"),
    rate_limit_backoff_seconds=_parse_delays(os.getenv("SYMBOLGEN_RATE_LIMIT_BACKOFF"), (2.0, 5.0)),
    max_attempts=max_attempts,
    job_timeout_seconds=job_timeout_seconds,
    generation_timeout_seconds=generation_timeout_seconds,
    execution_timeout_seconds=execution_timeout_seconds,
    error_context_max_lines=error_context_max_lines,
    error_context_fallback_chars=error_context_fallback_chars,
    error_context_max_chars=error_context_max_chars,
    append_output_footer=_parse_bool(os.getenv("SYMBOLGEN_APPEND_OUTPUT_FOOTER"), default=True),
    aps_client_id=_optional_str(os.getenv("APS_CLIENT_ID")),
    aps_client_secret=_optional_str(os.getenv("APS_CLIENT_SECRET")),
    aps_nickname=(os.getenv("APS_NICKNAME") or "symbolgen").strip(),
    aps_activity_name=(os.getenv("APS_ACTIVITY_NAME") or "symbolGenAct").strip(),
    aps_engine_version=(os.getenv("APS_ENGINE_VERSION") or "Autodesk.AutoCAD+25_1").strip(),
    aps_region=(os.getenv("APS_REGION") or "EMEA").strip(),
    aps_da_base_url=(os.getenv("APS_DA_BASE_URL") or "https://developer.api.autodesk.com/da/us-east/v3").strip(),
    aps_oss_base_url=(os.getenv("APS_OSS_BASE_URL") or "https://developer.api.autodesk.com/oss/v2").strip(),
    aps_auth_url=(os.getenv("APS_AUTH_URL") or "https://developer.api.autodesk.com/authentication/v2/token").strip(),
    aps_poll_interval_seconds=_positive_float("APS_POLL_INTERVAL_SECONDS", "2"),
    aps_max_polls=_positive_int("APS_MAX_POLLS", "150"),
    aps_http_timeout_seconds=_positive_float("APS_HTTP_TIMEOUT_SECONDS", "30"),
    job_retention_seconds=_positive_float("SYMBOLGEN_JOB_RETENTION_SECONDS", "300"),
    max_tracked_jobs=max_tracked_jobs,
    eviction_interval_seconds=_positive_float("SYMBOLGEN_EVICTION_INTERVAL_SECONDS", "60"),
    generate_rate_limit=generate_rate_limit,
    generate_rate_window_seconds=_positive_float("SYMBOLGEN_GENERATE_RATE_WINDOW_SECONDS", "60"),
    stream_keepalive_seconds=_positive_float("SYMBOLGEN_STREAM_KEEPALIVE_SECONDS", "15"),
  )

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from symbolgen.ai.codegen import CodeGenerationClient
from symbolgen.ai.extraction import OUTPUT_FOOTER
from symbolgen.ai.providers import OpenRouterProvider
from symbolgen.ai.utils.cost import build_pricing_table
from symbolgen.cad.auth import APSTokenProvider
from symbolgen.cad.design_automation import DesignAutomationClient
from symbolgen.cad.executor import DesignAutomationExecutor
from symbolgen.cad.report import ErrorContextPolicy
from symbolgen.config import Settings
from symbolgen.core.logging import initialize_logging
from symbolgen.jobs.registry import JobRegistry
from symbolgen.pipeline.orchestrator import GenerationOrchestrator
from symbolgen.services.jobs import JobLauncher
from symbolgen.services.ratelimit import FixedWindowRateLimiter


def build_orchestrator(settings: Settings, registry: JobRegistry, provider: OpenRouterProvider, http: httpx.AsyncClient) -> GenerationOrchestrator:
  """Wire the generation client and execution adapter from settings."""
  codegen = CodeGenerationClient(
    provider,
    fast_model=settings.fast_model,
    escalated_model=settings.escalated_model,
    pricing=build_pricing_table(settings.model_pricing),
    max_output_tokens=settings.max_output_tokens,
    output_footer=OUTPUT_FOOTER if settings.append_output_footer else None,
  )
  tokens = APSTokenProvider(http, client_id=settings.aps_client_id, client_secret=settings.aps_client_secret, auth_url=settings.aps_auth_url)
  da_client = DesignAutomationClient(
    http,
    tokens,
    nickname=settings.aps_nickname,
    activity_name=settings.aps_activity_name,
    engine_version=settings.aps_engine_version,
    region=settings.aps_region,
    da_base_url=settings.aps_da_base_url,
    oss_base_url=settings.aps_oss_base_url,
    poll_interval=settings.aps_poll_interval_seconds,
    max_polls=settings.aps_max_polls,
  )
  policy = ErrorContextPolicy(
    max_lines=settings.error_context_max_lines,
    fallback_chars=settings.error_context_fallback_chars,
    max_chars=settings.error_context_max_chars,
  )
  return GenerationOrchestrator(
    registry=registry,
    codegen=codegen,
    executor=DesignAutomationExecutor(da_client),
    max_attempts=settings.max_attempts,
    job_timeout=settings.job_timeout_seconds,
    generation_timeout=settings.generation_timeout_seconds,
    execution_timeout=settings.execution_timeout_seconds,
    error_policy=policy,
  )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Build the job registry and pipeline clients; tear them down on shutdown."""
  from symbolgen.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("symbolgen.core.lifespan")
  try:
    initialize_logging(settings)
  except RuntimeError:
    logger.warning("File logging setup failed; continuing with default handlers.", exc_info=True)

  registry = JobRegistry(retention_seconds=settings.job_retention_seconds, max_jobs=settings.max_tracked_jobs)
  provider = OpenRouterProvider(
    settings.openrouter_api_key,
    base_url=settings.openrouter_base_url,
    referer=settings.openrouter_referer,
    title=settings.openrouter_title,
    timeout=settings.generation_timeout_seconds,
    backoff_delays=settings.rate_limit_backoff_seconds,
  )
  http = httpx.AsyncClient(timeout=settings.aps_http_timeout_seconds, trust_env=False)
  launcher = JobLauncher(registry, build_orchestrator(settings, registry, provider, http))

  app.state.registry = registry
  app.state.launcher = launcher
  app.state.rate_limiter = FixedWindowRateLimiter(limit=settings.generate_rate_limit, window_seconds=settings.generate_rate_window_seconds)
  eviction = asyncio.create_task(registry.run_eviction_loop(settings.eviction_interval_seconds), name="job-eviction")
  logger.info("Startup complete - fast=%s escalated=%s max_attempts=%d", settings.fast_model, settings.escalated_model, settings.max_attempts)

  try:
    yield
  finally:
    eviction.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await eviction
    await launcher.shutdown()
    await http.aclose()
    await provider.aclose()
    logger.info("Shutdown complete")

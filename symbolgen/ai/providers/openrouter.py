"""OpenRouter provider implementation using openai SDK."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from symbolgen.ai.backoff import DEFAULT_DELAYS, retry_with_backoff
from symbolgen.ai.errors import GenerationError, describe_status_error
from symbolgen.ai.providers.base import AIModel, ChatMessage, ModelResponse, Provider

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterModel(AIModel):
  """OpenRouter chat model client."""

  def __init__(self, name: str, client: AsyncOpenAI, *, backoff_delays: Sequence[float] = DEFAULT_DELAYS) -> None:
    self.name: str = name
    self._client = client
    self._backoff_delays = tuple(backoff_delays)

  async def _create(self, messages: list[ChatMessage], max_tokens: int | None) -> Any:
    kwargs: dict[str, Any] = {"model": self.name, "messages": messages}
    if max_tokens:
      kwargs["max_tokens"] = max_tokens
    return await self._client.chat.completions.create(**kwargs)

  async def complete(self, messages: list[ChatMessage], *, max_tokens: int | None = None) -> ModelResponse:
    """Run a chat completion, retrying 429s before giving up."""
    try:
      response = await retry_with_backoff(self._create, messages, max_tokens, delays=self._backoff_delays)
    except openai.APIStatusError as exc:
      body = exc.response.text if exc.response is not None else None
      logger.error("OpenRouter API error (%s) for model %s: %s", exc.status_code, self.name, body)
      raise GenerationError(describe_status_error(exc.status_code, body), kind="transport", model=self.name) from exc
    except openai.APITimeoutError as exc:
      logger.error("OpenRouter request timed out for model %s", self.name)
      raise GenerationError("AI service request timed out.", kind="transport", model=self.name) from exc
    except openai.APIConnectionError as exc:
      logger.error("OpenRouter connection failed for model %s: %s", self.name, exc)
      raise GenerationError("AI service unreachable. Please try again later.", kind="transport", model=self.name) from exc
    except openai.APIError as exc:
      logger.error("OpenRouter returned an unusable response for model %s: %s", self.name, exc)
      raise GenerationError(f"AI service error: {exc.message}", kind="transport", model=self.name) from exc

    if not response.choices:
      raise GenerationError("AI service returned no choices.", kind="empty", model=self.name)

    choice = response.choices[0]
    content = choice.message.content or ""
    refusal = getattr(choice.message, "refusal", None)
    usage = response.usage
    prompt_tokens = int(usage.prompt_tokens or 0) if usage else 0
    completion_tokens = int(usage.completion_tokens or 0) if usage else 0
    logger.info("OpenRouter %s responded (%d chars, %d in / %d out tokens)", self.name, len(content), prompt_tokens, completion_tokens)
    logger.debug("OpenRouter response:\n%s", content)

    return ModelResponse(content=content, model=self.name, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, finish_reason=choice.finish_reason, refusal=refusal)


class OpenRouterProvider(Provider):
  """OpenRouter provider sharing one HTTP client across models."""

  def __init__(self, api_key: str | None, *, base_url: str | None = None, referer: str | None = None, title: str | None = None, timeout: float = 120.0, backoff_delays: Sequence[float] = DEFAULT_DELAYS) -> None:
    if not api_key:
      raise ValueError("OPENROUTER_API_KEY environment variable is required")
    self.name: str = "openrouter"
    self._backoff_delays = tuple(backoff_delays)

    # OpenRouter uses the OpenAI-compatible API; we add optional attribution headers.
    default_headers = {}
    if referer:
      default_headers["HTTP-Referer"] = referer
    if title:
      default_headers["X-Title"] = title

    # SDK-level retries are disabled; retries are owned by the attempt loop and the 429 backoff.
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or OPENROUTER_BASE_URL, default_headers=default_headers or None, timeout=timeout, max_retries=0)

  def get_model(self, model: str) -> AIModel:
    """Return an OpenRouter model client."""
    if not model:
      raise ValueError("A model name is required.")
    return OpenRouterModel(model, self._client, backoff_delays=self._backoff_delays)

  async def aclose(self) -> None:
    await self._client.close()

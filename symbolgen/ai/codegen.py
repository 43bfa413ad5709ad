"""Code generation client: chat completion in, extracted script out."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from symbolgen.ai.errors import ExtractionError, GenerationError
from symbolgen.ai.extraction import OUTPUT_FOOTER, ensure_output_footer, extract_script
from symbolgen.ai.prompts import build_feedback_messages, build_initial_messages
from symbolgen.ai.providers.base import ChatMessage, ModelResponse, Provider
from symbolgen.ai.utils.cost import PricingTable, calculate_call_cost

logger = logging.getLogger(__name__)

ModelTier = Literal["fast", "escalated"]


@dataclass(frozen=True)
class GenerationResult:
  """One successful generation call."""

  script: str
  raw_output: str
  cost: float
  tokens_in: int
  tokens_out: int
  model: str
  tier: ModelTier


class CodeGenerationClient:
  """Generate scripts with a fast model and an escalated model."""

  def __init__(
    self,
    provider: Provider,
    *,
    fast_model: str,
    escalated_model: str,
    pricing: PricingTable | None = None,
    max_output_tokens: int | None = 4096,
    output_footer: str | None = OUTPUT_FOOTER,
  ) -> None:
    self._provider = provider
    self._models: dict[ModelTier, str] = {"fast": fast_model, "escalated": escalated_model}
    self._pricing = pricing
    self._max_output_tokens = max_output_tokens
    self._output_footer = output_footer

  def model_for(self, tier: ModelTier) -> str:
    return self._models[tier]

  async def generate(self, specification: str, context_hints: Mapping[str, object] | None, tier: ModelTier) -> GenerationResult:
    """Generate a script from scratch."""
    messages = build_initial_messages(specification, context_hints)
    return await self._run(messages, tier)

  async def generate_with_feedback(
    self,
    specification: str,
    previous_script: str,
    previous_error: str,
    tier: ModelTier,
    context_hints: Mapping[str, object] | None = None,
  ) -> GenerationResult:
    """Generate a corrected script given the failing one and its error."""
    messages = build_feedback_messages(specification, previous_script, previous_error, context_hints)
    return await self._run(messages, tier)

  async def _run(self, messages: list[ChatMessage], tier: ModelTier) -> GenerationResult:
    model_name = self.model_for(tier)
    model = self._provider.get_model(model_name)
    logger.info("Generating script with %s (%s tier)", model_name, tier)

    response = await model.complete(messages, max_tokens=self._max_output_tokens)
    # Tokens are spent even if nothing usable comes back.
    cost = calculate_call_cost(model_name, response.prompt_tokens, response.completion_tokens, self._pricing)
    spent = {"model": model_name, "cost": cost, "tokens_in": response.prompt_tokens, "tokens_out": response.completion_tokens}

    self._check_response(response, spent)

    try:
      script = extract_script(response.content)
    except ExtractionError as exc:
      logger.warning("Script extraction failed for %s: %s", model_name, exc)
      raise ExtractionError(str(exc), raw_output=response.content, **spent) from exc

    if self._output_footer:
      script = ensure_output_footer(script, self._output_footer)

    return GenerationResult(
      script=script,
      raw_output=response.content,
      cost=cost,
      tokens_in=response.prompt_tokens,
      tokens_out=response.completion_tokens,
      model=model_name,
      tier=tier,
    )

  @staticmethod
  def _check_response(response: ModelResponse, spent: dict[str, object]) -> None:
    if response.refusal or response.finish_reason == "content_filter":
      reason = response.refusal or "content filtered"
      raise GenerationError(f"Model refused to generate a script: {reason}", kind="refused", raw_output=response.content, **spent)  # type: ignore[arg-type]
    if not response.content.strip():
      raise GenerationError("Model returned an empty response", kind="empty", raw_output=response.content, **spent)  # type: ignore[arg-type]

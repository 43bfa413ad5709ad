"""Base interfaces for chat-completion model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, TypedDict


class ChatMessage(TypedDict):
  """One chat turn sent to the model."""

  role: Literal["system", "user", "assistant"]
  content: str


@dataclass(frozen=True)
class ModelResponse:
  """Text completion plus the usage counters needed for cost accounting."""

  content: str
  model: str
  prompt_tokens: int = 0
  completion_tokens: int = 0
  finish_reason: str | None = None
  refusal: str | None = None


class AIModel(ABC):
  """Abstract chat model bound to one model name."""

  name: str

  @abstractmethod
  async def complete(self, messages: list[ChatMessage], *, max_tokens: int | None = None) -> ModelResponse:
    """Run one chat completion.

    Transport and service failures raise ``GenerationError`` with
    ``kind="transport"``.
    """


class Provider(ABC):
  """Abstract factory for model clients."""

  name: str

  @abstractmethod
  def get_model(self, model: str) -> AIModel:
    """Return the model client for the provider."""

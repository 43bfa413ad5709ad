"""Model provider implementations."""

from symbolgen.ai.providers.base import AIModel, ChatMessage, ModelResponse, Provider
from symbolgen.ai.providers.openrouter import OpenRouterModel, OpenRouterProvider

__all__ = ["AIModel", "ChatMessage", "ModelResponse", "Provider", "OpenRouterModel", "OpenRouterProvider"]

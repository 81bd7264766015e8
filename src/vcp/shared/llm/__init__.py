"""LLM provider abstraction."""
from .base import get_provider, LLMProvider
from .http_provider import HttpProvider
from .anthropic_provider import AnthropicProvider
from .gemini_provider import GeminiProvider

__all__ = ["get_provider", "LLMProvider", "HttpProvider", "AnthropicProvider", "GeminiProvider"]

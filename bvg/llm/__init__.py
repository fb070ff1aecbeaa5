"""LLM adapters: OpenAI and Anthropic behind one protocol."""

from bvg.llm.anthropic_provider import AnthropicProvider
from bvg.llm.base import LLMProvider
from bvg.llm.openai_provider import OpenAIProvider


def get_provider(provider_name: str, **kwargs: object) -> LLMProvider:
    """Return the configured LLM provider. provider_name: 'openai' | 'anthropic'."""
    if provider_name.lower() == "anthropic":
        return AnthropicProvider(**kwargs)
    return OpenAIProvider(**kwargs)


__all__ = ["LLMProvider", "OpenAIProvider", "AnthropicProvider", "get_provider"]

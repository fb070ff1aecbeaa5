"""Protocol the scene planner uses to talk to a chat model."""

from typing import Any, Protocol

from pydantic import BaseModel


class LLMProvider(Protocol):
    """Chat model backend (OpenAI, Anthropic).

    Both accept an optional ``image_url`` keyword; when given, the image is
    attached to the user message so the model can describe the spokesperson.
    """

    def complete(self, prompt: str, **kwargs: Any) -> str:
        ...

    def complete_structured(self, prompt: str, schema: type[BaseModel], **kwargs: Any) -> BaseModel:
        """Completion parsed into ``schema``; raises on non-JSON output."""
        ...

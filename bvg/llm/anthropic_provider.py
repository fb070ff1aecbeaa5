"""Anthropic LLM implementation with structured output via JSON parse."""

import json
import re
from typing import Any

from anthropic import Anthropic
from pydantic import BaseModel


class AnthropicProvider:
    """Anthropic chat completion with optional structured (JSON) output and image input."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        system_prompt: str | None = None,
    ):
        self._client = Anthropic(api_key=api_key)
        self._model = model
        self._system_prompt = system_prompt

    def complete(self, prompt: str, **kwargs: Any) -> str:
        image_url = kwargs.get("image_url")
        if image_url:
            content: Any = [
                {"type": "image", "source": {"type": "url", "url": image_url}},
                {"type": "text", "text": prompt},
            ]
        else:
            content = prompt
        request: dict[str, Any] = {
            "model": kwargs.get("model") or self._model,
            "max_tokens": kwargs.get("max_tokens", 4096),
            "messages": [{"role": "user", "content": content}],
        }
        if self._system_prompt:
            request["system"] = self._system_prompt
        response = self._client.messages.create(**request)
        return response.content[0].text if response.content else ""

    def complete_structured(self, prompt: str, schema: type[BaseModel], **kwargs: Any) -> BaseModel:
        instruction = (
            "Respond with a single JSON object that conforms to the schema. "
            "No markdown, no code fence, only raw JSON."
        )
        full_prompt = f"{prompt}\n\n{instruction}"
        raw = self.complete(full_prompt, **kwargs)
        # Strip possible markdown code block
        text = raw.strip()
        if text.startswith("```"):
            text = re.sub(r"^```\w*\n?", "", text)
            text = re.sub(r"\n?```\s*$", "", text)
        data = json.loads(text)
        return schema.model_validate(data)

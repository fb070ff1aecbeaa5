"""OpenAI LLM implementation with structured output via JSON in prompt."""

import json
import re
from typing import Any

from openai import OpenAI
from pydantic import BaseModel


class OpenAIProvider:
    """OpenAI chat completion with optional structured (JSON) output and image input."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        system_prompt: str | None = None,
    ):
        self._client = OpenAI(api_key=api_key)
        self._model = model
        self._system_prompt = system_prompt

    def _messages(self, prompt: str, image_url: str | None) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        if image_url:
            content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        else:
            content = prompt
        messages.append({"role": "user", "content": content})
        return messages

    def complete(self, prompt: str, **kwargs: Any) -> str:
        # OpenAI exceptions propagate; callers classify them
        image_url = kwargs.pop("image_url", None)
        response = self._client.chat.completions.create(
            model=kwargs.pop("model", None) or self._model,
            messages=self._messages(prompt, image_url),
            **kwargs,
        )
        msg = response.choices[0].message
        return msg.content or ""

    def complete_structured(self, prompt: str, schema: type[BaseModel], **kwargs: Any) -> BaseModel:
        instruction = (
            "Respond with a single JSON object only. No markdown, no code fence, no explanation."
        )
        full_prompt = f"{prompt}\n\n{instruction}"
        raw = self.complete(full_prompt, **kwargs)
        text = raw.strip()
        if text.startswith("```"):
            text = re.sub(r"^```\w*\n?", "", text)
            text = re.sub(r"\n?```\s*$", "", text)
        data = json.loads(text)
        return schema.model_validate(data)

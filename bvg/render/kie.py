"""Kie.ai Veo client: submit, extend, record-info polling and callback parsing."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from bvg.errors import ProviderError, ProviderErrorType, parse_provider_error
from bvg.render.base import RenderRequest, RenderState, RenderUpdate
from bvg.schemas.models import GenerationMode

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _first(*values: Any) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


def _result_urls(value: Any) -> list[str]:
    """resultUrls arrives as a list or as a JSON-encoded string."""
    if not value:
        return []
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return [value]
        return [u for u in decoded if u] if isinstance(decoded, list) else [str(decoded)]
    return [u for u in value if u]


def _extract(payload: dict[str, Any]) -> tuple[dict, dict]:
    data = payload.get("data") or payload
    info = data.get("info") or data.get("response") or {}
    return data, info


def parse_callback(payload: dict[str, Any]) -> RenderUpdate:
    """Normalize a completion callback. A missing success flag counts as success."""
    data, info = _extract(payload)
    task_id = _first(data.get("taskId"), data.get("task_id"), payload.get("taskId"))
    if not task_id:
        raise ValueError("No taskId in callback payload")
    success_flag = _first(info.get("successFlag"), data.get("successFlag"), payload.get("successFlag"), 1)
    urls = _result_urls(
        _first(
            info.get("resultUrls"),
            info.get("result_urls"),
            (data.get("response") or {}).get("resultUrls"),
            data.get("resultUrls"),
        )
    )
    error = _first(info.get("errorMessage"), data.get("errorMessage"), payload.get("errorMessage"))
    if success_flag == 1 and not error:
        state = RenderState.SUCCEEDED
    else:
        state = RenderState.FAILED
        error = error or "Unknown generation failure"
    return RenderUpdate(
        task_id=task_id,
        state=state,
        video_url=urls[0] if urls else None,
        error_message=error,
        raw=payload,
    )


def parse_record_info(task_id: str, payload: dict[str, Any]) -> RenderUpdate:
    """Normalize a record-info poll. A zero success flag alone means still running."""
    data, info = _extract(payload)
    success_flag = _first(info.get("successFlag"), data.get("successFlag"), payload.get("successFlag"))
    urls = _result_urls(
        _first(
            info.get("resultUrls"),
            (data.get("response") or {}).get("resultUrls"),
            data.get("resultUrls"),
        )
    )
    error = _first(info.get("errorMessage"), data.get("errorMessage"), payload.get("errorMessage"))
    complete_time = _first(info.get("completeTime"), data.get("completeTime"), payload.get("completeTime"))
    raw_state = _first(info.get("state"), data.get("state"), info.get("status"), data.get("status"))
    state_text = raw_state.lower() if isinstance(raw_state, str) else None

    if success_flag == 1 and urls:
        state = RenderState.SUCCEEDED
    elif error or state_text in ("failed", "error") or (complete_time and success_flag == 0):
        state = RenderState.FAILED
        error = error or "Video generation failed"
    else:
        state = RenderState.RUNNING
    return RenderUpdate(
        task_id=task_id,
        state=state,
        video_url=urls[0] if urls else None,
        error_message=error if state == RenderState.FAILED else None,
        raw=payload,
    )


class KieRenderProvider:
    """HTTP client for the Kie.ai Veo endpoints."""

    name = "kie"

    def __init__(
        self,
        api_key: str,
        callback_url: str,
        base_url: str = "https://api.kie.ai",
        client: httpx.Client | None = None,
    ):
        self._callback_url = callback_url
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=DEFAULT_TIMEOUT,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(
                ProviderErrorType.API_ERROR,
                "Could not reach the video provider.",
                "Please try again in a few minutes.",
                detail=str(e),
            ) from e
        return self._handle(response)

    def _handle(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise parse_provider_error(response.status_code, response.text)
        try:
            body = response.json()
        except ValueError:
            raise parse_provider_error(response.status_code, response.text)
        # Kie reports some failures as HTTP 200 with an error code in the body
        code = body.get("code")
        if code is not None and code != 200:
            raise parse_provider_error(int(code), body.get("msg") or response.text)
        return body

    @staticmethod
    def _task_id(body: dict[str, Any]) -> str:
        data = body.get("data") or {}
        task_id = _first(body.get("taskId"), body.get("task_id"), data.get("taskId"), data.get("task_id"))
        if not task_id:
            raise ProviderError(
                ProviderErrorType.API_ERROR,
                "No task ID returned from the video provider.",
                "Please try again.",
                detail=json.dumps(body)[:2000],
            )
        return task_id

    def submit_render(self, request: RenderRequest) -> str:
        payload: dict[str, Any] = {
            "prompt": request.prompt,
            "model": request.model,
            "callBackUrl": self._callback_url,
            "aspectRatio": request.aspect_ratio,
            "enableFallback": False,
            "enableTranslation": True,
            "generationType": request.generation_mode.value,
        }
        if request.seed is not None:
            payload["seeds"] = request.seed
        if request.generation_mode == GenerationMode.REFERENCE_2_VIDEO and request.image_url:
            payload["imageUrls"] = [request.image_url]
        logger.info(
            "Submitting render (model=%s, mode=%s, aspect=%s)",
            request.model, request.generation_mode.value, request.aspect_ratio,
        )
        task_id = self._task_id(self._post("/api/v1/veo/generate", payload))
        logger.info("Render task created: %s", task_id)
        return task_id

    def extend_render(self, previous_task_id: str, prompt: str, duration_seconds: int, seed: int | None = None) -> str:
        payload: dict[str, Any] = {
            "taskId": previous_task_id,
            "prompt": prompt,
            "duration": duration_seconds,
            "callBackUrl": self._callback_url,
        }
        if seed is not None:
            payload["seeds"] = seed
        logger.info("Submitting extension of %s (%ds)", previous_task_id, duration_seconds)
        task_id = self._task_id(self._post("/api/v1/veo/extend", payload))
        logger.info("Extension task created: %s", task_id)
        return task_id

    def get_task_status(self, task_id: str) -> RenderUpdate:
        try:
            response = self._client.get("/api/v1/veo/record-info", params={"taskId": task_id})
        except httpx.HTTPError as e:
            raise ProviderError(
                ProviderErrorType.API_ERROR,
                "Could not reach the video provider.",
                "Please try again in a few minutes.",
                detail=str(e),
            ) from e
        return parse_record_info(task_id, self._handle(response))

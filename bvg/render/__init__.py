"""Video render provider: protocol, Kie.ai client, prompt builders."""

from bvg.render.base import RenderProvider, RenderRequest, RenderState, RenderUpdate
from bvg.render.kie import KieRenderProvider, parse_callback, parse_record_info
from bvg.render.prompts import (
    build_extension_prompt,
    build_initial_prompt,
    normalize_aspect_ratio,
    seed_for,
)


def get_render_provider() -> RenderProvider:
    """Kie.ai provider from settings."""
    from bvg.config import get_settings

    settings = get_settings()
    return KieRenderProvider(
        api_key=settings.kie_api_key or "",
        callback_url=settings.callback_url,
        base_url=settings.kie_base_url,
    )


__all__ = [
    "KieRenderProvider",
    "RenderProvider",
    "RenderRequest",
    "RenderState",
    "RenderUpdate",
    "build_extension_prompt",
    "build_initial_prompt",
    "get_render_provider",
    "normalize_aspect_ratio",
    "parse_callback",
    "parse_record_info",
    "seed_for",
]

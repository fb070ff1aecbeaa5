"""Media host protocol for stitching, and the splice transform it composes."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel

MIN_TRIM_SECONDS = 0.1
MAX_TRIM_SECONDS = 5.0


class SpliceLayer(BaseModel):
    """A segment spliced after the base asset, optionally skipping its first seconds."""

    asset_id: str
    trim_seconds: float | None = None


class MediaHost(Protocol):
    def upload_for_transform(self, source_url: str, public_id: str) -> str:
        """Fetch ``source_url`` and store it under ``public_id``; returns the asset id.

        Raises StitchError with step ``download`` or ``upload``.
        """
        ...

    def compose(self, base_asset_id: str, layers: list[SpliceLayer]) -> str:
        """Final playable URL for base + layers."""
        ...


def segment_public_id(generation_id: str, index: int) -> str:
    """Per-segment asset id; re-stitching overwrites instead of duplicating."""
    return f"{generation_id}_segment_{index}"


def _format_seconds(value: float) -> str:
    return f"{value:g}"


def build_splice_transform(layers: list[SpliceLayer]) -> str:
    """Transform path that appends each layer to the base video in order.

    Each layer contributes ``fl_splice,l_video:<id>[,so_<trim>]`` followed by
    ``fl_layer_apply``.
    """
    parts: list[str] = []
    for layer in layers:
        # nested public ids use ':' in layer references
        flags = ["fl_splice", f"l_video:{layer.asset_id.replace('/', ':')}"]
        if layer.trim_seconds:
            flags.append(f"so_{_format_seconds(layer.trim_seconds)}")
        parts.append(",".join(flags))
        parts.append("fl_layer_apply")
    return "/".join(parts)

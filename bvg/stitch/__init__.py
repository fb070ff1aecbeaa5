"""Segment stitching via a transformation-capable media host."""

from bvg.stitch.base import MediaHost, SpliceLayer, build_splice_transform, segment_public_id
from bvg.stitch.cloudinary import CloudinaryHost, sign_params
from bvg.stitch.pipeline import StitchPipeline, check_segments, validate_trim


def get_media_host() -> MediaHost:
    """Cloudinary host from settings. Raises StitchError when credentials are missing."""
    from bvg.config import get_settings

    settings = get_settings()
    return CloudinaryHost(
        cloud_name=settings.cloudinary_cloud_name or "",
        api_key=settings.cloudinary_api_key or "",
        api_secret=settings.cloudinary_api_secret or "",
    )


__all__ = [
    "CloudinaryHost",
    "MediaHost",
    "SpliceLayer",
    "StitchPipeline",
    "build_splice_transform",
    "check_segments",
    "get_media_host",
    "segment_public_id",
    "sign_params",
    "validate_trim",
]

"""Cloudinary media host: signed video uploads and splice-transform delivery URLs."""

from __future__ import annotations

import hashlib
import logging
import time

import httpx

from bvg.errors import StitchError
from bvg.stitch.base import SpliceLayer, build_splice_transform

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 120.0
UPLOAD_TIMEOUT = 300.0


def sign_params(params: dict[str, str], api_secret: str) -> str:
    """SHA-1 signature over the sorted ``key=value`` pairs followed by the secret."""
    payload = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hashlib.sha1(f"{payload}{api_secret}".encode()).hexdigest()


class CloudinaryHost:
    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        client: httpx.Client | None = None,
    ):
        if not (cloud_name and api_key and api_secret):
            raise StitchError("Cloudinary credentials not configured", step="configure")
        self._cloud = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._client = client or httpx.Client(follow_redirects=True)

    @property
    def upload_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self._cloud}/video/upload"

    def _download(self, source_url: str) -> bytes:
        if not source_url or not source_url.startswith("http"):
            raise StitchError(f"Invalid segment URL: {source_url or 'missing'}", step="download")
        try:
            response = self._client.get(
                source_url, headers={"Accept": "video/*"}, timeout=DOWNLOAD_TIMEOUT
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StitchError(f"Failed to download {source_url}: {e}", step="download") from e
        if not response.content:
            raise StitchError(f"Downloaded video is empty: {source_url}", step="download")
        return response.content

    def upload_for_transform(self, source_url: str, public_id: str) -> str:
        data = self._download(source_url)
        logger.info("Uploading %s (%d bytes) as %s", source_url, len(data), public_id)
        params = {"public_id": public_id, "timestamp": str(int(time.time()))}
        form = {**params, "api_key": self._api_key, "signature": sign_params(params, self._api_secret)}
        try:
            response = self._client.post(
                self.upload_url,
                data=form,
                files={"file": (f"{public_id}.mp4", data, "video/mp4")},
                timeout=UPLOAD_TIMEOUT,
            )
        except httpx.HTTPError as e:
            raise StitchError(f"Upload of {public_id} failed: {e}", step="upload") from e
        if response.status_code >= 400:
            raise StitchError(
                f"Upload of {public_id} failed ({response.status_code}): {response.text[:300]}",
                step="upload",
            )
        try:
            body = response.json()
        except ValueError as e:
            raise StitchError(
                f"Upload of {public_id} returned a non-JSON response: {response.text[:300]}",
                step="upload",
            ) from e
        if not isinstance(body, dict):
            raise StitchError(f"Upload of {public_id} returned an unexpected response", step="upload")
        return body.get("public_id", public_id)

    def compose(self, base_asset_id: str, layers: list[SpliceLayer]) -> str:
        transform = build_splice_transform(layers)
        prefix = f"https://res.cloudinary.com/{self._cloud}/video/upload"
        if transform:
            return f"{prefix}/{transform}/{base_asset_id}.mp4"
        return f"{prefix}/{base_asset_id}.mp4"

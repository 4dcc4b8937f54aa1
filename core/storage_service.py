"""
Blob storage client: asset bytes are served from the asset's canonical media
URL. Upload and transformation live outside this service.
"""

from typing import NamedTuple

import requests

from core.config import cfg
from core.errors import UpstreamFailure
from core.log import get_logger

logger = get_logger(__name__)


class FetchedBlob(NamedTuple):
    content: bytes
    content_type: str


class AssetStorage:
    def __init__(self, timeout_seconds: float = 15.0, session: requests.Session = None):
        self.timeout_seconds = float(timeout_seconds)
        self.http = session or requests.Session()

    @classmethod
    def from_config(cls) -> "AssetStorage":
        return cls(timeout_seconds=float(cfg.get("storage.timeout_seconds", 15) or 15))

    def fetch(self, url: str, fallback_content_type: str = "application/octet-stream") -> FetchedBlob:
        if not url:
            raise UpstreamFailure("asset has no media url")
        try:
            resp = self.http.get(url, timeout=self.timeout_seconds)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("asset fetch failed: url=%s error=%s", url[:120], e)
            raise UpstreamFailure("failed to fetch asset from storage") from e
        content_type = str(resp.headers.get("Content-Type", "") or "").split(";")[0].strip()
        return FetchedBlob(content=resp.content, content_type=content_type or fallback_content_type)

"""
HTTP clients for the collaboration server's REST surface.

Used by editor sessions that run outside the server process: the blob
upload endpoint and the per-document state endpoint.
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from .errors import PlacementError, UploadFailed
from .storage import PDF_TYPE

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15
IMAGE_LOAD_TIMEOUT = 5


class HttpUploader:
    """Blob upload capability that posts to ``/api/files/upload``."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = session or requests.Session()

    def upload(self, data: bytes, filename: str = 'edited.pdf',
               content_type: str = PDF_TYPE) -> str:
        try:
            response = self.http.post(
                f"{self.base_url}/api/files/upload",
                files={'file': (filename, data, content_type)},
                timeout=self.timeout,
            )
            response.raise_for_status()
            url = response.json().get('url')
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise UploadFailed(f"Upload failed: {exc}") from exc
        if not url:
            raise UploadFailed('Upload response carried no url')
        # Cache-busting suffix so viewers reload the new revision.
        return f"{self.base_url}{url}?v={int(time.time() * 1000)}"


class DocumentApi:
    """Client for ``GET/POST /doc/<id>``."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = session or requests.Session()

    def _url(self, doc_id: str) -> str:
        return f"{self.base_url}/doc/{quote(doc_id, safe='')}"

    def load_doc(self, doc_id: str) -> Dict[str, Any]:
        response = self.http.get(self._url(doc_id), timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def save_doc(self, doc_id: str, state: Dict[str, Any]) -> Dict[str, Any]:
        response = self.http.post(self._url(doc_id), json=state or {}, timeout=self.timeout)
        response.raise_for_status()
        return response.json()


def fetch_bytes(url: str, timeout: float = IMAGE_LOAD_TIMEOUT,
                session: Optional[requests.Session] = None) -> bytes:
    """Download ``url`` within ``timeout`` seconds or raise PlacementError."""
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise PlacementError(f"Could not load {url}: {exc}") from exc
    return response.content

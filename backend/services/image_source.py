"""
Image sources: resolve a background/field image reference to bytes.

The renderer only ever calls ``fetch(reference) -> bytes``; it never guesses
paths. Network fetches are timeout-bounded and size-capped so a stuck or
oversized download cannot hold a render indefinitely.
"""
import base64
import binascii
import logging
import time
from pathlib import Path
from typing import Optional, Protocol, Union

import requests

from domain.errors import ImageFetchError
from settings import settings

logger = logging.getLogger(__name__)

Reference = Union[bytes, str, Path]


class ImageSource(Protocol):
    def fetch(self, reference: Reference) -> bytes:
        ...


def register_heif_opener() -> bool:
    """
    Register HEIF/HEIC opener with Pillow if pillow-heif is available.

    Safe to call multiple times or if pillow-heif is not installed.
    """
    try:
        from pillow_heif import register_heif_opener as _register
    except ImportError:
        logger.debug("[image] pillow-heif not installed; HEIC templates unsupported")
        return False
    _register()
    return True


class LocalFileImageSource:
    """Reads references as file paths, optionally relative to ``base_dir``."""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir) if base_dir else None

    def fetch(self, reference: Reference) -> bytes:
        if isinstance(reference, bytes):
            return reference
        path = Path(reference)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ImageFetchError(str(reference), f"cannot read {path}: {exc}") from exc


class HttpImageSource:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.IMAGE_FETCH_TIMEOUT
        self.max_bytes = max_bytes if max_bytes is not None else settings.IMAGE_FETCH_MAX_BYTES

    def fetch(self, reference: Reference) -> bytes:
        url = str(reference)
        # requests applies timeout per read; the deadline bounds the whole download
        deadline = time.monotonic() + self.timeout
        try:
            resp = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise ImageFetchError(url, f"request failed: {exc}") from exc
        try:
            if resp.status_code != 200:
                raise ImageFetchError(url, f"HTTP {resp.status_code}", status_code=resp.status_code)
            chunks = []
            total = 0
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                total += len(chunk)
                if total > self.max_bytes:
                    raise ImageFetchError(url, f"response exceeds {self.max_bytes} bytes")
                if time.monotonic() > deadline:
                    raise ImageFetchError(url, f"download exceeded {self.timeout}s")
                chunks.append(chunk)
            return b"".join(chunks)
        except requests.RequestException as exc:
            raise ImageFetchError(url, f"download failed: {exc}") from exc
        finally:
            resp.close()


def decode_data_uri(reference: str) -> bytes:
    header, sep, payload = reference.partition(",")
    if not sep:
        raise ImageFetchError(reference[:32], "malformed data URI")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(payload, validate=True)
        return payload.encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise ImageFetchError(reference[:32], f"invalid base64 payload: {exc}") from exc


class CompositeImageSource:
    """Dispatches raw bytes, ``data:`` URIs, http(s) URLs and local paths."""

    def __init__(
        self,
        local: Optional[LocalFileImageSource] = None,
        http: Optional[HttpImageSource] = None,
    ):
        self.local = local or LocalFileImageSource()
        self._http = http

    @property
    def http(self) -> HttpImageSource:
        if self._http is None:
            self._http = HttpImageSource()
        return self._http

    def fetch(self, reference: Reference) -> bytes:
        if isinstance(reference, bytes):
            return reference
        text = str(reference)
        if not text:
            raise ImageFetchError(text, "empty image reference")
        if text.startswith("data:"):
            return decode_data_uri(text)
        if text.startswith(("http://", "https://")):
            return self.http.fetch(text)
        return self.local.fetch(reference)

"""
Image re-hosting: download a third-party image and write it to owned storage.

Three stages, any of which can fail on its own:
  init      source URL / storage sanity
  download  bounded fetch, content-type + size checks
  upload    write to `pin_images/<cache_key>/<tag>/<sha256[:16]>.<ext>`

`ingest` never raises; the result says which stage failed and why.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, Tuple

import httpx

from pinintel.core.contracts import IngestStage
from pinintel.core.errors import ProviderError
from pinintel.core.keying import sha256_hex
from pinintel.core.urls import is_public_http_url
from pinintel.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

# Returns (bytes, content_type); used for sources that need credentials
Downloader = Callable[[], Awaitable[Tuple[bytes, str]]]

ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


class IngestFailure(Exception):
    def __init__(self, stage: IngestStage, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message


@dataclass(frozen=True)
class IngestResult:
    source_url: str
    hosted_url: Optional[str] = None
    stage: Optional[IngestStage] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.hosted_url is not None


def normalize_content_type(raw: str | None) -> str:
    return (raw or "").split(";", 1)[0].strip().lower()


def storage_path(cache_key: str, tag: str, data: bytes, content_type: str) -> str:
    ext = ALLOWED_TYPES.get(content_type, "jpg")
    return f"pin_images/{cache_key}/{tag}/{sha256_hex(data, 16)}.{ext}"


class ImageIngestor:
    def __init__(
        self,
        client: httpx.AsyncClient,
        store: Optional[BlobStore],
        *,
        max_bytes: int = 5 * 1024 * 1024,
        user_agent: str = "PINITPreviewBot/1.0",
    ) -> None:
        self.client = client
        self.store = store
        self.max_bytes = int(max_bytes)
        self.headers = {"User-Agent": user_agent, "Accept": "image/webp,image/jpeg,image/png;q=0.9,*/*;q=0.5"}

    def _check_payload(self, data: bytes, content_type: str) -> str:
        ct = normalize_content_type(content_type)
        if ct not in ALLOWED_TYPES:
            raise IngestFailure("download", f"unsupported content type: {ct or 'missing'}")
        if len(data) > self.max_bytes:
            raise IngestFailure("download", f"image too large: {len(data)} bytes")
        if not data:
            raise IngestFailure("download", "empty body")
        return "image/jpeg" if ct == "image/jpg" else ct

    async def _download(self, url: str, timeout_s: float) -> Tuple[bytes, str]:
        try:
            async with self.client.stream(
                "GET", url, headers=self.headers, timeout=timeout_s, follow_redirects=True
            ) as resp:
                if resp.status_code != 200:
                    raise IngestFailure("download", f"HTTP {resp.status_code}")
                ct = normalize_content_type(resp.headers.get("content-type"))
                if ct not in ALLOWED_TYPES:
                    raise IngestFailure("download", f"unsupported content type: {ct or 'missing'}")
                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise IngestFailure("download", f"image too large: {declared} bytes")
                chunks = []
                total = 0
                async for chunk in resp.aiter_bytes():
                    total += len(chunk)
                    if total > self.max_bytes:
                        raise IngestFailure("download", f"image too large: >{self.max_bytes} bytes")
                    chunks.append(chunk)
                return b"".join(chunks), ct
        except httpx.TimeoutException as e:
            raise IngestFailure("download", "image download timeout") from e
        except httpx.HTTPError as e:
            raise IngestFailure("download", f"download failed: {e!r}") from e

    async def _run(
        self,
        source_url: str,
        cache_key: str,
        tag: str,
        timeout_s: float,
        download: Optional[Downloader],
    ) -> str:
        if self.store is None or not self.store.configured:
            raise IngestFailure("init", "image storage not configured")
        if download is None and not is_public_http_url(source_url):
            raise IngestFailure("init", f"refusing non-public or non-http url: {source_url[:120]}")

        if download is not None:
            try:
                data, ct = await asyncio.wait_for(download(), timeout=timeout_s)
            except asyncio.TimeoutError as e:
                raise IngestFailure("download", "image download timeout") from e
            except (ProviderError, httpx.HTTPError) as e:
                raise IngestFailure("download", str(e)) from e
        else:
            data, ct = await self._download(source_url, timeout_s)

        ct = self._check_payload(data, ct)
        path = storage_path(cache_key, tag, data, ct)
        try:
            return await self.store.put(path, data, ct)
        except ProviderError as e:
            raise IngestFailure("upload", str(e)) from e

    async def ingest(
        self,
        source_url: str,
        cache_key: str,
        tag: str,
        *,
        timeout_s: float,
        download: Optional[Downloader] = None,
    ) -> IngestResult:
        try:
            hosted = await self._run(source_url, cache_key, tag, timeout_s, download)
        except IngestFailure as f:
            logger.warning("ingest_failed tag=%s stage=%s url=%s msg=%s", tag, f.stage, source_url[:200], f.message)
            return IngestResult(source_url=source_url, stage=f.stage, message=f.message)
        logger.info("ingest_ok tag=%s url=%s", tag, source_url[:200])
        return IngestResult(source_url=source_url, hosted_url=hosted)

    async def ingest_many(
        self,
        sources: Sequence[Tuple[str, Optional[Downloader]]],
        cache_key: str,
        tag: str,
        *,
        timeout_s: float,
    ) -> list[IngestResult]:
        """Concurrent ingest of one tier's candidates; results keep input order."""
        return list(
            await asyncio.gather(
                *(self.ingest(url, cache_key, tag, timeout_s=timeout_s, download=dl) for url, dl in sources)
            )
        )

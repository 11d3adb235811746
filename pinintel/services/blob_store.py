from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

import httpx

from pinintel.core.errors import ProviderError
from pinintel.core.settings import Settings

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    @property
    def configured(self) -> bool: ...

    async def put(self, path: str, data: bytes, content_type: str) -> str: ...


class SupabaseBlobStore:
    """
    Supabase Storage REST:
      - upload (upsert) an object into a public bucket
      - hand back its public URL

    Uses the service role key (bypasses RLS).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        supa_url: str,
        service_role_key: str,
        bucket: str,
        timeout_s: float = 10.0,
    ) -> None:
        self.client = client
        self.base = supa_url.rstrip("/")
        self.key = service_role_key
        self.bucket = bucket
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.base and self.key and self.bucket)

    def _headers(self, content_type: str) -> dict[str, str]:
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": content_type,
            "x-upsert": "true",
            "Cache-Control": "max-age=31536000",
        }

    def public_url(self, path: str) -> str:
        return f"{self.base}/storage/v1/object/public/{self.bucket}/{path}"

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        url = f"{self.base}/storage/v1/object/{self.bucket}/{path}"
        try:
            resp = await self.client.post(url, headers=self._headers(content_type), content=data, timeout=self.timeout_s)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = (e.response.text or "")[:300]
            raise ProviderError("supabase_storage", f"upload failed status={e.response.status_code} body={body}") from e
        except httpx.HTTPError as e:
            raise ProviderError("supabase_storage", f"upload failed err={e!r}") from e
        return self.public_url(path)


class LocalBlobStore:
    """Files under `root`, served by this app at `<public_base_url><route>/...`."""

    def __init__(self, root: str | Path, *, public_base_url: str, route: str = "/hosted") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.route = "/" + route.strip("/")

    @property
    def configured(self) -> bool:
        return bool(self.public_base_url)

    def _write(self, path: str, data: bytes) -> None:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ProviderError("local_storage", f"path escapes storage root: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise ProviderError("local_storage", f"write failed: {e}") from e
        return f"{self.public_base_url}{self.route}/{path}"


def create_blob_store(settings: Settings, client: httpx.AsyncClient) -> Optional[BlobStore]:
    """
    Supabase when enabled and configured, else local files under
    `<data_dir>/hosted`.
    """
    if settings.supa_enabled:
        if settings.supa_url and settings.supa_service_role_key:
            return SupabaseBlobStore(
                client,
                supa_url=settings.supa_url,
                service_role_key=settings.supa_service_role_key,
                bucket=settings.supa_bucket,
                timeout_s=settings.supa_upload_timeout_s,
            )
        logger.warning("SUPA_ENABLED is set but SUPA_URL / SUPA_SERVICE_ROLE_KEY are missing; image re-hosting disabled")
        return None
    return LocalBlobStore(
        Path(settings.data_dir) / "hosted",
        public_base_url=settings.public_base_url,
        route=settings.local_images_route,
    )

from __future__ import annotations

import asyncio
import re

import httpx
import pytest

from pinintel.core.errors import ProviderError
from pinintel.services.blob_store import LocalBlobStore
from pinintel.services.ingest import ImageIngestor

from fakes import JPEG, MemoryBlobStore, image_transport


def _run(coro_fn):
    return asyncio.run(coro_fn())


def test_rehosts_under_content_addressed_path():
    store = MemoryBlobStore()

    async def main():
        async with httpx.AsyncClient(transport=image_transport()) as client:
            return await ImageIngestor(client, store).ingest(
                "https://example.com/photo.jpg", "pinintel_m33_90680_18_42010", "website", timeout_s=5
            )

    res = _run(main)
    assert res.ok
    assert re.fullmatch(r"https://cdn\.test/pin_images/pinintel_m33_90680_18_42010/website/[0-9a-f]{16}\.jpg", res.hosted_url)
    (data, ct), = store.objects.values()
    assert data == JPEG and ct == "image/jpeg"


def test_rejects_private_and_non_http_sources_at_init():
    async def main():
        async with httpx.AsyncClient(transport=image_transport()) as client:
            ing = ImageIngestor(client, MemoryBlobStore())
            return [
                await ing.ingest(u, "k", "t", timeout_s=1)
                for u in ("http://127.0.0.1/a.jpg", "http://localhost/a.jpg", "ftp://example.com/a.jpg", "")
            ]

    assert [r.stage for r in _run(main)] == ["init"] * 4


def test_unconfigured_store_fails_at_init():
    async def main():
        async with httpx.AsyncClient(transport=image_transport()) as client:
            return await ImageIngestor(client, None).ingest("https://example.com/a.jpg", "k", "t", timeout_s=1)

    res = _run(main)
    assert not res.ok and res.stage == "init"


def test_content_type_and_size_are_checked_at_download():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith(".svg"):
            return httpx.Response(200, headers={"content-type": "image/svg+xml"}, content=b"<svg/>")
        return httpx.Response(200, headers={"content-type": "image/png"}, content=b"\x89PNG" + b"\x00" * 4096)

    async def main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ing = ImageIngestor(client, MemoryBlobStore(), max_bytes=1024)
            return (
                await ing.ingest("https://example.com/a.svg", "k", "t", timeout_s=1),
                await ing.ingest("https://example.com/big.png", "k", "t", timeout_s=1),
            )

    svg, big = _run(main)
    assert svg.stage == "download" and "content type" in svg.message
    assert big.stage == "download" and "too large" in big.message


def test_upload_failure_is_reported_with_stage():
    class BrokenStore:
        configured = True

        async def put(self, path, data, content_type):
            raise ProviderError("supabase_storage", "upload failed status=500")

    async def main():
        async with httpx.AsyncClient(transport=image_transport()) as client:
            return await ImageIngestor(client, BrokenStore()).ingest("https://example.com/a.jpg", "k", "t", timeout_s=1)

    res = _run(main)
    assert res.stage == "upload"
    assert "status=500" in res.message


def test_downloader_timeout_is_a_download_failure():
    async def slow():
        await asyncio.sleep(1)
        return JPEG, "image/jpeg"

    async def main():
        async with httpx.AsyncClient(transport=image_transport()) as client:
            return await ImageIngestor(client, MemoryBlobStore()).ingest(
                "google-photo:ref", "k", "google", timeout_s=0.01, download=slow
            )

    res = _run(main)
    assert res.stage == "download" and "timeout" in res.message


def test_one_failed_download_does_not_stop_the_others():
    bad = "https://example.com/1.jpg"

    async def main():
        async with httpx.AsyncClient(transport=image_transport(fail={bad})) as client:
            return await ImageIngestor(client, MemoryBlobStore()).ingest_many(
                [(bad, None), ("https://example.com/2.jpg", None), ("https://example.com/3.jpg", None)],
                "k",
                "website",
                timeout_s=5,
            )

    results = _run(main)
    assert [r.source_url for r in results] == [bad, "https://example.com/2.jpg", "https://example.com/3.jpg"]
    assert results[0].stage == "download"
    assert results[1].ok and results[2].ok


def test_local_blob_store_writes_inside_root(tmp_path):
    store = LocalBlobStore(tmp_path, public_base_url="http://localhost:8000/")

    url = asyncio.run(store.put("pin_images/k/t/abc.jpg", JPEG, "image/jpeg"))
    assert url == "http://localhost:8000/hosted/pin_images/k/t/abc.jpg"
    assert (tmp_path / "pin_images" / "k" / "t" / "abc.jpg").read_bytes() == JPEG

    with pytest.raises(ProviderError, match="escapes"):
        asyncio.run(store.put("../escape.jpg", JPEG, "image/jpeg"))

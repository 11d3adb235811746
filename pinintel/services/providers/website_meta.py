"""
Single-page website metadata scrape.

One HTML fetch per site (manual redirects, at most three hops), capped at
1.5 MB. Extracts page titles, descriptions and a few candidate images. No
crawling, and raw HTML is never stored.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

import httpx
from bs4 import BeautifulSoup

from pinintel.core.errors import ProviderError
from pinintel.core.urls import is_public_http_url, normalize_website_url, resolve_url

logger = logging.getLogger(__name__)

PROVIDER = "website_meta"

MAX_HTML_BYTES = 1_500_000
MAX_REDIRECTS = 3

_JUNK_URL_RE = re.compile(r"favicon|sprite|placeholder|blank|default|logo|icon|avatar|badge|pixel|spinner")
_JUNK_EXTENSIONS = frozenset({".svg", ".ico", ".gif"})
_META_IMAGE_KEYS = ("og:image", "og:image:secure_url", "twitter:image", "twitter:image:src")


@dataclass(frozen=True)
class WebsiteMeta:
    final_url: str
    og_title: Optional[str] = None
    og_description: Optional[str] = None
    site_title: Optional[str] = None
    meta_description: Optional[str] = None
    images: List[str] = field(default_factory=list)

    @property
    def best_title(self) -> Optional[str]:
        return self.og_title or self.site_title


def is_junk_image(url: str) -> bool:
    if not url or url.startswith("data:"):
        return True
    if _JUNK_URL_RE.search(url.lower()):
        return True
    return PurePosixPath(urlsplit(url).path).suffix.lower() in _JUNK_EXTENSIONS


def robots_disallows_all(robots_txt: str) -> bool:
    """True when the `User-agent: *` group carries `Disallow: /`."""
    applies = False
    for raw in robots_txt.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = (p.strip() for p in line.split(":", 1))
        key = key.lower()
        if key == "user-agent":
            applies = value == "*"
        elif applies and key == "disallow" and value == "/":
            return True
    return False


def parse_meta(html: str, final_url: str, max_images: int) -> WebsiteMeta:
    soup = BeautifulSoup(html, "html.parser")

    metas: dict[str, List[str]] = {}
    for tag in soup.find_all("meta"):
        key = (tag.get("property") or tag.get("name") or "").strip().lower()
        content = (tag.get("content") or "").strip()
        if key and content:
            metas.setdefault(key, []).append(content)

    def first(key: str) -> Optional[str]:
        values = metas.get(key)
        return " ".join(values[0].split()) if values else None

    site_title = None
    if soup.title and soup.title.string:
        site_title = " ".join(soup.title.string.split()) or None

    candidates: List[str] = []
    for key in _META_IMAGE_KEYS:
        for v in metas.get(key, []):
            abs_url = resolve_url(v, final_url)
            if abs_url:
                candidates.append(abs_url)

    # First content images, only when the card images are not enough
    if len(candidates) < max_images:
        for img in soup.find_all("img"):
            abs_url = resolve_url(img.get("src"), final_url)
            if abs_url:
                candidates.append(abs_url)
            if len(candidates) >= max_images * 4:
                break

    images: List[str] = []
    for u in dict.fromkeys(candidates):
        if is_public_http_url(u) and not is_junk_image(u):
            images.append(u)
        if len(images) >= max_images:
            break

    return WebsiteMeta(
        final_url=final_url,
        og_title=first("og:title"),
        og_description=first("og:description"),
        site_title=site_title,
        meta_description=first("description"),
        images=images,
    )


class WebsiteMetaScraper:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout_s: float = 3.5,
        max_images: int = 3,
        user_agent: str = "PINITPreviewBot/1.0",
        enabled: bool = True,
    ) -> None:
        self.client = client
        self.timeout_s = timeout_s
        self.max_images = max(1, min(3, int(max_images)))
        self.enabled = enabled
        self.headers = {
            "User-Agent": f"Mozilla/5.0 (compatible; {user_agent})",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def _robots_allows(self, url: str) -> bool:
        parts = urlsplit(url)
        robots_url = urlunsplit((parts.scheme, parts.netloc, "/robots.txt", "", ""))
        try:
            resp = await self.client.get(robots_url, headers=self.headers, timeout=self.timeout_s)
        except httpx.HTTPError:
            # Unreachable robots.txt is treated as "no rules"
            return True
        if resp.status_code != 200:
            return True
        return not robots_disallows_all(resp.text[:50_000])

    async def _fetch_html(self, url: str) -> tuple[str, str]:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            if not is_public_http_url(current):
                raise ProviderError(PROVIDER, f"blocked url {current}")
            try:
                async with self.client.stream(
                    "GET", current, headers=self.headers, timeout=self.timeout_s, follow_redirects=False
                ) as resp:
                    if resp.is_redirect:
                        nxt = resolve_url(resp.headers.get("location"), current)
                        if not nxt:
                            raise ProviderError(PROVIDER, "redirect without location")
                        current = nxt
                        continue
                    if resp.status_code != 200:
                        raise ProviderError(PROVIDER, f"HTTP {resp.status_code}")
                    chunks: List[bytes] = []
                    total = 0
                    async for chunk in resp.aiter_bytes():
                        total += len(chunk)
                        if total > MAX_HTML_BYTES:
                            break
                        chunks.append(chunk)
                    encoding = resp.encoding or "utf-8"
            except httpx.HTTPError as exc:
                raise ProviderError(PROVIDER, f"fetch failed: {exc!r}") from exc
            return b"".join(chunks).decode(encoding, errors="replace"), current
        raise ProviderError(PROVIDER, "too many redirects")

    async def fetch(self, url: str) -> Optional[WebsiteMeta]:
        """
        Metadata for `url`, or None when scraping is disabled, the URL is not
        a public http(s) address, or robots.txt disallows everything.

        Raises ProviderError on fetch failures.
        """
        if not self.enabled:
            return None
        normalized = normalize_website_url(url)
        if not normalized or not is_public_http_url(normalized):
            return None
        if not await self._robots_allows(normalized):
            logger.info("website_meta_robots_disallow url=%s", normalized)
            return None

        html, final_url = await self._fetch_html(normalized)
        meta = parse_meta(html, final_url, self.max_images)
        logger.info("website_meta url=%s title=%r images=%d", final_url, meta.best_title, len(meta.images))
        return meta

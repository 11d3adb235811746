"""
Unsplash stock photo search, used only as a late fallback.

Per the Unsplash API guidelines every image carries attribution and UTM
parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from pinintel.services.providers import fetch_json, obj, parsing, records

logger = logging.getLogger(__name__)

PROVIDER = "unsplash"

UTM_SOURCE = "pinit"


@dataclass(frozen=True)
class StockPhoto:
    image_url: str
    page_url: str
    attribution: str


def with_utm(url: str) -> str:
    parts = urlsplit(url)
    q = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in ("utm_source", "utm_medium")]
    q += [("utm_source", UTM_SOURCE), ("utm_medium", "referral")]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(q), parts.fragment))


def _text(v: Any) -> str:
    return v.strip() if isinstance(v, str) else ""


def attribution_for(name: Any) -> str:
    n = _text(name)
    return f"Photo by {n} on Unsplash" if n else "Photo on Unsplash"


class Unsplash:
    SEARCH_URL = "https://api.unsplash.com/search/photos"

    def __init__(self, client: httpx.AsyncClient, *, access_key: str, timeout_s: float = 4.0) -> None:
        self.client = client
        self.access_key = access_key
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.access_key)

    async def search(self, query: str, max_results: int = 3) -> List[StockPhoto]:
        q = (query or "").strip()
        if not q:
            return []
        params = {
            "query": q,
            "per_page": str(min(10, max(1, max_results * 3))),
            "orientation": "landscape",
            "content_filter": "high",
        }
        headers = {"Authorization": f"Client-ID {self.access_key}", "Accept-Version": "v1"}
        data = await fetch_json(self.client, PROVIDER, "GET", self.SEARCH_URL, params=params, headers=headers, timeout_s=self.timeout_s)

        out: List[StockPhoto] = []
        with parsing(PROVIDER):
            for r in records(obj(data).get("results")):
                urls = obj(r.get("urls"))
                image = _text(urls.get("regular")) or _text(urls.get("small")) or _text(urls.get("raw"))
                page = _text(obj(r.get("links")).get("html"))
                if not image or not page:
                    continue
                out.append(
                    StockPhoto(
                        image_url=with_utm(image),
                        page_url=with_utm(page),
                        attribution=attribution_for(obj(r.get("user")).get("name")),
                    )
                )
                if len(out) >= max_results:
                    break

        logger.info("unsplash_search q=%r results=%d", q, len(out))
        return out

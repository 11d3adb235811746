"""
Official-website discovery through Serper (Google Search API).

Docs: https://serper.dev
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from pinintel.core.urls import host_of, normalize_website_url
from pinintel.services.heuristics import similarity_score
from pinintel.services.providers import fetch_json, obj, records

logger = logging.getLogger(__name__)

PROVIDER = "serper"

MIN_SCORE = 0.55

# Social, booking, review, short-link and knowledge-base hosts are never
# a venue's own site. Entries with a dot match as substrings.
_BLOCKED_HOSTS = (
    "facebook.com",
    "instagram.com",
    "tiktok.com",
    "twitter.com",
    "x.com",
    "youtube.com",
    "youtu.be",
    "tripadvisor.",
    "booking.com",
    "airbnb.",
    "expedia.",
    "agoda.",
    "yelp.",
    "zomato.",
    "ubereats.",
    "doordash.",
    "deliveroo.",
    "goo.gl",
    "bit.ly",
    "linktr.ee",
    "spotify.com",
    "soundcloud.com",
    "music.apple.com",
    "podcasts.apple.com",
    "apps.apple.com",
    "play.google.com",
    "wikipedia.org",
    "wikidata.org",
    "datacommons.org",
    "openstreetmap.org",
    "osm.org",
    "foursquare.com",
)


def is_blocked_host(host: str) -> bool:
    h = (host or "").lower()
    if h in ("x.com", "www.x.com"):
        return True
    return any(b in h for b in _BLOCKED_HOSTS if b != "x.com")


@dataclass(frozen=True)
class ScoredLink:
    url: str
    score: float


def score_result(name: str, *, title: str, snippet: str, host: str, position: int) -> float:
    sim = max(
        similarity_score(name, title),
        similarity_score(name, snippet) * 0.9,
        similarity_score(name, host.removeprefix("www.")) * 0.8,
    )
    return sim + max(0.0, 1.0 - position / 15.0) * 0.1


class Serper:
    SEARCH_URL = "https://google.serper.dev/search"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        gl: str = "za",
        hl: str = "en",
        timeout_s: float = 5.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.gl = gl
        self.hl = hl
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def discover(
        self,
        name: str,
        *,
        locality: str | None = None,
        region: str | None = None,
        country: str | None = None,
    ) -> Optional[str]:
        name = (name or "").strip()
        if not name:
            return None
        query = " ".join(p.strip() for p in (name, locality, region, country) if p and p.strip())

        data = await fetch_json(
            self.client,
            PROVIDER,
            "POST",
            self.SEARCH_URL,
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            json={"q": query, "gl": self.gl, "hl": self.hl, "num": 10},
            timeout_s=self.timeout_s,
        )

        best: Optional[ScoredLink] = None
        for r in records(obj(data).get("organic")):
            link = normalize_website_url(str(r.get("link") or ""))
            if not link:
                continue
            host = host_of(link)
            if not host or is_blocked_host(host):
                continue
            pos = r.get("position") if isinstance(r.get("position"), int) else 10
            s = score_result(
                name,
                title=str(r.get("title") or ""),
                snippet=str(r.get("snippet") or ""),
                host=host,
                position=pos,
            )
            if best is None or s > best.score:
                best = ScoredLink(url=link, score=s)

        logger.info("serper_discover q=%r best=%s", query, best)
        if best is None or best.score < MIN_SCORE:
            return None
        return best.url

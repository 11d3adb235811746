"""
Strict Wikidata cross-match.

Only a strong label match is ever returned (never "the first search hit").
From the matched entity we take the English description, the official
website (P856) and up to three Commons images (P18).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from pinintel.core.urls import normalize_website_url
from pinintel.services.heuristics import is_road_like_name, normalize_text
from pinintel.services.providers import fetch_json, obj, parsing, records

logger = logging.getLogger(__name__)

PROVIDER = "wikidata"

MIN_LABEL_SIMILARITY = 0.75

_SIMILARITY_STOP = frozenset({"the", "and", "farm", "restaurant", "hotel", "inn"})

_REJECT_DESCRIPTIONS = ("helicopter", "aircraft", "person", "band", "song", "album", "company", "model")

_PREFERRED_DESCRIPTIONS = (
    "farm",
    "restaurant",
    "winery",
    "market",
    "museum",
    "park",
    "nature reserve",
    "mountain",
    "beach",
    "tourist attraction",
    "building",
    "hotel",
    "inn",
    "lodge",
    "resort",
    "vineyard",
    "shop",
    "store",
)


@dataclass(frozen=True)
class KnowledgeMatch:
    wikidata_id: str
    description: Optional[str] = None
    official_website: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)


def label_similarity(a: str, b: str) -> float:
    s1, s2 = normalize_text(a), normalize_text(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return 0.9
    t1 = [t for t in s1.split() if len(t) > 2 and t not in _SIMILARITY_STOP]
    t2 = [t for t in s2.split() if len(t) > 2 and t not in _SIMILARITY_STOP]
    if not t1 or not t2:
        return 0.0
    matches = [x for x in t1 if any(x == y or x in y or y in x for y in t2)]
    return len(matches) / max(len(t1), len(t2))


def _claim_values(entity: dict[str, Any], prop: str) -> list[Any]:
    out = []
    for claim in records(obj(entity.get("claims")).get(prop)):
        value = obj(obj(claim.get("mainsnak")).get("datavalue")).get("value")
        if value:
            out.append(value)
    return out


def commons_file_url(file_name: str) -> str:
    return "https://commons.wikimedia.org/wiki/Special:FilePath/" + quote(file_name.replace(" ", "_"), safe="")


class Wikidata:
    API_URL = "https://www.wikidata.org/w/api.php"

    def __init__(self, client: httpx.AsyncClient, *, timeout_s: float = 5.0, user_agent: str = "PINITPreviewBot/1.0") -> None:
        self.client = client
        self.timeout_s = timeout_s
        self.headers = {"User-Agent": user_agent}

    async def match(self, name: str, locality: str | None = None) -> Optional[KnowledgeMatch]:
        name = (name or "").strip()
        if len(name) < 3:
            return None

        query = f"{name} {locality}" if locality and not is_road_like_name(name) else name
        params = {
            "action": "wbsearchentities",
            "search": query,
            "language": "en",
            "limit": "10",
            "format": "json",
        }
        data = await fetch_json(
            self.client, PROVIDER, "GET", self.API_URL, params=params, headers=self.headers, timeout_s=self.timeout_s
        )

        best_id: Optional[str] = None
        best_score = 0.0
        with parsing(PROVIDER):
            for ent in records(obj(data).get("search")):
                desc = str(ent.get("description") or "").lower()
                if any(k in desc for k in _REJECT_DESCRIPTIONS):
                    continue
                sim = label_similarity(name, str(ent.get("label") or ""))
                if sim < MIN_LABEL_SIMILARITY:
                    continue
                score = sim + (0.1 if any(k in desc for k in _PREFERRED_DESCRIPTIONS) else 0.0)
                if score > best_score and ent.get("id"):
                    best_id, best_score = str(ent["id"]), score

        if not best_id:
            return None

        params = {
            "action": "wbgetentities",
            "ids": best_id,
            "props": "descriptions|claims",
            "languages": "en",
            "format": "json",
        }
        data = await fetch_json(
            self.client, PROVIDER, "GET", self.API_URL, params=params, headers=self.headers, timeout_s=self.timeout_s
        )
        entity = obj(obj(obj(data).get("entities")).get(best_id))
        if not entity:
            return KnowledgeMatch(wikidata_id=best_id)

        with parsing(PROVIDER):
            description = obj(obj(entity.get("descriptions")).get("en")).get("value")
            images = [commons_file_url(v) for v in _claim_values(entity, "P18") if isinstance(v, str)][:3]

            website = None
            for v in _claim_values(entity, "P856"):
                if isinstance(v, str):
                    website = normalize_website_url(v)
                    if website:
                        break

        logger.info("wikidata_match id=%s score=%.2f website=%s images=%d", best_id, best_score, website, len(images))
        return KnowledgeMatch(
            wikidata_id=best_id,
            description=description if isinstance(description, str) else None,
            official_website=website,
            image_urls=images,
        )

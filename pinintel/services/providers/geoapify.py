"""
Geoapify as the secondary (non-paid) identity source.

Docs: https://apidocs.geoapify.com/docs/places/

Nearby POIs in travel-ish categories are scored and the best one within
`max_distance_m` wins. With no POI close enough we reverse-geocode the exact
point instead of borrowing a venue a block away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Optional

import httpx

from pinintel.core.contracts import Place
from pinintel.core.errors import ProviderError
from pinintel.core.geo import haversine_m
from pinintel.core.urls import normalize_website_url
from pinintel.services.heuristics import (
    UNKNOWN_PLACE,
    is_unknown_sentinel,
    looks_like_street_address,
    similarity_score,
)
from pinintel.services.providers import fetch_json, obj, parsing, records

logger = logging.getLogger(__name__)

PROVIDER = "geoapify"

_SEARCH_CATEGORIES = (
    "tourism",
    "accommodation",
    "catering",
    "entertainment.museum",
    "entertainment.culture.gallery",
    "leisure.park",
    "natural",
    "beach",
    "production.winery",
    "commercial.shopping_mall",
    "commercial.marketplace",
    "commercial.gift_and_souvenir",
    "commercial.art",
    "man_made.lighthouse",
    "man_made.tower",
    "man_made.bridge",
    "man_made.pier",
    "heritage",
    "religion.place_of_worship",
)

_TRAVEL_PREFIXES = (
    "tourism.",
    "accommodation.",
    "catering.",
    "entertainment.",
    "leisure.",
    "natural.",
    "beach",
    "heritage",
    "production.winery",
    "commercial.shopping_mall",
    "commercial.marketplace",
    "man_made.",
    "religion.place_of_worship",
)


@dataclass(frozen=True)
class Candidate:
    place_id: str
    name: str
    categories: tuple[str, ...]
    address: Optional[str]
    city: Optional[str]
    region: Optional[str]
    country: Optional[str]
    website: Optional[str]
    phone: Optional[str]
    lat: float
    lon: float


def _s(v: Any) -> str:
    return v.strip() if isinstance(v, str) else ""


def _extract_website(props: dict[str, Any]) -> Optional[str]:
    raw = obj(obj(props.get("datasource")).get("raw"))
    direct = (
        _s(props.get("website"))
        or _s(obj(props.get("contact")).get("website"))
        or _s(raw.get("website"))
        or _s(raw.get("contact:website"))
    )
    return normalize_website_url(direct) if direct else None


def _extract_phone(props: dict[str, Any]) -> Optional[str]:
    raw = obj(obj(props.get("datasource")).get("raw"))
    p = (
        _s(props.get("phone"))
        or _s(obj(props.get("contact")).get("phone"))
        or _s(raw.get("phone"))
        or _s(raw.get("contact:phone"))
    )
    return p or None


def _city(props: dict[str, Any]) -> Optional[str]:
    for k in ("city", "town", "village", "municipality", "suburb", "district"):
        v = _s(props.get(k))
        if v:
            return v
    return None


def candidate_from_props(props: dict[str, Any], *, fallback_lat: float, fallback_lon: float) -> Optional[Candidate]:
    if not props:
        return None
    lat = props.get("lat", fallback_lat)
    lon = props.get("lon", fallback_lon)
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return None

    cats = props.get("categories")
    if not isinstance(cats, list):
        cats = [props.get("category")] if props.get("category") else []

    return Candidate(
        place_id=_s(props.get("place_id")) or f"{float(lon):.6f},{float(lat):.6f}",
        name=_s(props.get("name")) or _s(props.get("address_line1")) or UNKNOWN_PLACE,
        categories=tuple(_s(c) for c in cats if _s(c)),
        address=_s(props.get("formatted")) or None,
        city=_city(props),
        region=_s(props.get("state")) or _s(props.get("county")) or None,
        country=_s(props.get("country")) or _s(props.get("country_code")) or None,
        website=_extract_website(props),
        phone=_extract_phone(props),
        lat=float(lat),
        lon=float(lon),
    )


def score_candidate(c: Candidate, hint: str | None) -> float:
    score = 0.0
    if not is_unknown_sentinel(c.name):
        score += 0.5 if looks_like_street_address(c.name) else 2.0
    if c.city:
        score += 1.0
    if c.website:
        score += 2.0
    if any(cat.lower().startswith(_TRAVEL_PREFIXES) for cat in c.categories):
        score += 1.5
    if hint and similarity_score(c.name, hint) >= 0.85:
        score += 1.0
    return score


def _looks_like_place_id(place_id: str) -> bool:
    # Coordinate fallback ids are "lon,lat"
    return bool(place_id) and "," not in place_id and len(place_id) > 20


def _to_place(c: Candidate, *, confidence: float) -> Place:
    return Place(
        lat=c.lat,
        lon=c.lon,
        name=c.name,
        category=c.categories[0] if c.categories else None,
        address=c.address,
        locality=c.city,
        region=c.region,
        country=c.country,
        website=c.website,
        website_provenance="provider" if c.website else None,
        phone=c.phone,
        source="geoapify",
        source_id=c.place_id,
        confidence=round(max(0.0, min(1.0, confidence)), 3),
    )


class Geoapify:
    PLACES_URL = "https://api.geoapify.com/v2/places"
    REVERSE_URL = "https://api.geoapify.com/v1/geocode/reverse"
    DETAILS_URL = "https://api.geoapify.com/v2/place-details"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        search_radius_m: int = 300,
        max_distance_m: float = 150.0,
        timeout_s: float = 6.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.search_radius_m = max(10, min(2000, int(search_radius_m)))
        self.max_distance_m = float(max_distance_m)
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def _nearby(self, lat: float, lon: float) -> list[Candidate]:
        params = {
            "apiKey": self.api_key,
            "categories": ",".join(_SEARCH_CATEGORIES),
            "filter": f"circle:{lon},{lat},{self.search_radius_m}",
            "bias": f"proximity:{lon},{lat}",
            "limit": "20",
            "lang": "en",
        }
        data = await fetch_json(self.client, PROVIDER, "GET", self.PLACES_URL, params=params, timeout_s=self.timeout_s)
        out: list[Candidate] = []
        for feat in records(obj(data).get("features")):
            c = candidate_from_props(obj(feat.get("properties")), fallback_lat=lat, fallback_lon=lon)
            if c is not None:
                out.append(c)
        return out

    async def _reverse(self, lat: float, lon: float) -> Optional[Candidate]:
        params = {"apiKey": self.api_key, "lat": str(lat), "lon": str(lon), "format": "json", "lang": "en"}
        data = await fetch_json(self.client, PROVIDER, "GET", self.REVERSE_URL, params=params, timeout_s=self.timeout_s)
        results = records(obj(data).get("results"))
        if not results:
            return None
        return candidate_from_props(results[0], fallback_lat=lat, fallback_lon=lon)

    async def _details(self, c: Candidate) -> Candidate:
        """Website/phone from Place Details; failures keep the candidate as-is."""
        if not _looks_like_place_id(c.place_id):
            return c
        params = {"apiKey": self.api_key, "id": c.place_id, "features": "details", "lang": "en"}
        try:
            data = await fetch_json(self.client, PROVIDER, "GET", self.DETAILS_URL, params=params, timeout_s=self.timeout_s)
        except ProviderError as e:
            logger.info("geoapify_details_skipped id=%s err=%s", c.place_id, e)
            return c
        feats = records(obj(data).get("features"))
        details = next(
            (f for f in feats if obj(f.get("properties")).get("feature_type") == "details"),
            feats[0] if feats else {},
        )
        props = obj(details.get("properties"))
        website = c.website or _extract_website(props)
        phone = c.phone or _extract_phone(props)
        if website == c.website and phone == c.phone:
            return c
        return replace(c, website=website, phone=phone)

    async def resolve(self, lat: float, lon: float, hint: str | None = None) -> Optional[Place]:
        """
        Best nearby venue, else the reverse-geocoded point, else None.

        Raises ProviderError if the nearby search itself fails.
        """
        candidates = [
            c for c in await self._nearby(lat, lon) if haversine_m(lat, lon, c.lat, c.lon) <= self.max_distance_m
        ]

        best: Optional[Candidate] = None
        best_score = float("-inf")
        for c in candidates:
            dist = haversine_m(lat, lon, c.lat, c.lon)
            s = score_candidate(c, hint) + max(0.0, 1.0 - dist / max(1.0, self.max_distance_m)) * 2.0
            if s > best_score:
                best, best_score = c, s

        if best is not None:
            best = await self._details(best)
            logger.info("geoapify_pick name=%r score=%.2f candidates=%d", best.name, best_score, len(candidates))
            # 8.5 is the ceiling of score_candidate + distance bonus
            return _to_place(best, confidence=best_score / 8.5)

        rev = await self._reverse(lat, lon)
        if rev is None:
            return None
        logger.info("geoapify_reverse name=%r", rev.name)
        # The reverse result describes the pin itself, not a venue near it
        return _to_place(replace(rev, lat=lat, lon=lon), confidence=0.3)

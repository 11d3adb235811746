"""
Google Places (legacy web service) for the paid identity path.

Docs: https://developers.google.com/maps/documentation/places/web-service

Three calls, each billed: Nearby Search -> Place Details -> Place Photo.
Callers gate the first two behind the daily quota; photos are only fetched
for a place that passed the distance check.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import httpx

from pinintel.core.errors import ProviderError
from pinintel.services.heuristics import is_generic_text
from pinintel.services.providers import fetch_json, obj, parsing, records

logger = logging.getLogger(__name__)

PROVIDER = "google_places"

# Candidates carrying only these types are an address, not a venue
_ADDRESS_ONLY_TYPES = frozenset({"route", "street_address", "intersection"})

_COORD_PREFIX = re.compile(r"^[-+]?\d+\.\d+")


@dataclass(frozen=True)
class NearbyCandidate:
    place_id: str
    name: Optional[str]
    types: Tuple[str, ...]
    lat: float
    lon: float


@dataclass(frozen=True)
class PlaceDetails:
    place_id: str
    name: Optional[str] = None
    formatted_address: Optional[str] = None
    website: Optional[str] = None
    types: Tuple[str, ...] = ()
    phone: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    photo_refs: List[str] = field(default_factory=list)


def _types(value: Any) -> Tuple[str, ...]:
    return tuple(t for t in value if isinstance(t, str)) if isinstance(value, list) else ()


def _looks_address_only(types: Tuple[str, ...]) -> bool:
    return any(t.lower() in _ADDRESS_ONLY_TYPES for t in types)


def pick_best_candidate(results: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """First non-address candidate, else the first result."""
    if not results:
        return None
    for r in results:
        if not _looks_address_only(_types(r.get("types"))):
            return r
    return results[0]


def keyword_for_hint(hint: str | None) -> Optional[str]:
    term = (hint or "").strip()
    if len(term) < 3 or len(term) > 80:
        return None
    if _COORD_PREFIX.match(term) or is_generic_text(term):
        return None
    return term


def _float_or_none(v: Any) -> Optional[float]:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


class GooglePlaces:
    NEARBY_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"
    DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"
    PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"

    DETAIL_FIELDS = (
        "place_id",
        "name",
        "formatted_address",
        "website",
        "types",
        "photos",
        "formatted_phone_number",
        "geometry/location",
    )

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        region: str = "za",
        timeout_s: float = 3.5,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.region = region
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _status(self, data: Any) -> str:
        status = str(obj(data).get("status") or "")
        if status in ("OK", "ZERO_RESULTS", "NOT_FOUND"):
            return status
        # REQUEST_DENIED / OVER_QUERY_LIMIT / INVALID_REQUEST are failures, not "no result"
        msg = str(obj(data).get("error_message") or status or "missing status")
        raise ProviderError(PROVIDER, msg)

    async def nearby_search(
        self,
        lat: float,
        lon: float,
        *,
        radius_m: int,
        keyword: str | None = None,
    ) -> Optional[NearbyCandidate]:
        radius = max(10, min(250, int(radius_m)))
        params = {
            "key": self.api_key,
            "location": f"{lat},{lon}",
            "radius": str(radius),
            "language": "en",
            "region": self.region,
        }
        if keyword:
            params["keyword"] = keyword

        logger.info("google_nearby lat=%.5f lon=%.5f radius=%d keyword=%r", lat, lon, radius, keyword)
        data = await fetch_json(self.client, PROVIDER, "GET", self.NEARBY_URL, params=params, timeout_s=self.timeout_s)
        if self._status(data) != "OK":
            return None

        with parsing(PROVIDER):
            best = pick_best_candidate(records(data.get("results")))
            if not best or not best.get("place_id"):
                return None
            loc = obj(obj(best.get("geometry")).get("location"))
            c_lat, c_lon = _float_or_none(loc.get("lat")), _float_or_none(loc.get("lng"))
            if c_lat is None or c_lon is None:
                return None

            return NearbyCandidate(
                place_id=str(best["place_id"]),
                name=best.get("name") if isinstance(best.get("name"), str) else None,
                types=_types(best.get("types")),
                lat=c_lat,
                lon=c_lon,
            )

    async def place_details(self, place_id: str) -> Optional[PlaceDetails]:
        params = {
            "key": self.api_key,
            "place_id": place_id,
            "fields": ",".join(self.DETAIL_FIELDS),
            "language": "en",
            "region": self.region,
        }
        data = await fetch_json(self.client, PROVIDER, "GET", self.DETAILS_URL, params=params, timeout_s=self.timeout_s)
        if self._status(data) != "OK":
            return None

        r = obj(data.get("result"))
        if not r.get("place_id"):
            return None

        loc = obj(obj(r.get("geometry")).get("location"))
        refs = [
            p["photo_reference"]
            for p in records(r.get("photos"))
            if isinstance(p.get("photo_reference"), str) and p["photo_reference"]
        ]

        def _s(key: str) -> Optional[str]:
            v = r.get(key)
            return (v.strip() or None) if isinstance(v, str) else None

        return PlaceDetails(
            place_id=str(r["place_id"]),
            name=_s("name"),
            formatted_address=_s("formatted_address"),
            website=_s("website"),
            types=_types(r.get("types")),
            phone=_s("formatted_phone_number"),
            lat=_float_or_none(loc.get("lat")),
            lon=_float_or_none(loc.get("lng")),
            photo_refs=refs,
        )

    async def fetch_photo(self, photo_ref: str, *, max_width: int = 1200, timeout_s: float | None = None) -> tuple[bytes, str]:
        max_w = max(400, min(1600, int(max_width or 1200)))
        params = {"key": self.api_key, "maxwidth": str(max_w), "photoreference": photo_ref}
        try:
            resp = await self.client.get(
                self.PHOTO_URL,
                params=params,
                timeout=timeout_s or self.timeout_s,
                follow_redirects=True,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(PROVIDER, f"photo HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(PROVIDER, f"photo fetch failed: {exc!r}") from exc
        return resp.content, resp.headers.get("content-type") or "image/jpeg"

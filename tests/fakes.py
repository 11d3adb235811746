"""In-process stand-ins for the external capabilities."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from pinintel.core.contracts import Place
from pinintel.core.errors import ProviderError
from pinintel.services.ingest import ImageIngestor
from pinintel.services.pin_intel import PinIntelService
from pinintel.services.place_cache import PlaceCache
from pinintel.services.providers.google_places import NearbyCandidate, PlaceDetails
from pinintel.services.providers.unsplash import StockPhoto
from pinintel.services.providers.website_meta import WebsiteMeta
from pinintel.services.providers.wikidata import KnowledgeMatch
from pinintel.services.quota import QuotaGuard
from pinintel.services.resolver import IdentityResolver
from pinintel.services.waterfall import WaterfallLimits

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 256


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def image_transport(fail: Optional[set] = None) -> httpx.MockTransport:
    """Serves a small JPEG for every URL except those in `fail` (-> 404)."""
    fail = fail or set()

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) in fail:
            return httpx.Response(404, text="missing")
        return httpx.Response(200, headers={"content-type": "image/jpeg"}, content=JPEG)

    return httpx.MockTransport(handler)


# ──────────────────────────────────────────────────────────────
# In-process provider fakes
# ──────────────────────────────────────────────────────────────

class MemoryBlobStore:
    configured = True

    def __init__(self) -> None:
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = (data, content_type)
        return f"https://cdn.test/{path}"


class FakeGoogle:
    configured = True

    def __init__(
        self,
        *,
        candidate: Optional[NearbyCandidate] = None,
        details: Optional[PlaceDetails] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.candidate = candidate
        self.details = details
        self.error = error
        self.nearby_calls = 0
        self.details_calls = 0
        self.photo_calls: List[str] = []

    async def nearby_search(self, lat, lon, *, radius_m, keyword=None):
        self.nearby_calls += 1
        if self.error is not None:
            raise self.error
        return self.candidate

    async def place_details(self, place_id):
        self.details_calls += 1
        return self.details

    async def fetch_photo(self, photo_ref, *, max_width=1200, timeout_s=None):
        self.photo_calls.append(photo_ref)
        return JPEG + photo_ref.encode(), "image/jpeg"


class FakeGeoapify:
    configured = True

    def __init__(self, place: Optional[Place] = None, error: Optional[Exception] = None) -> None:
        self.place = place
        self.error = error
        self.calls = 0

    async def resolve(self, lat, lon, hint=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.place is None:
            return None
        return self.place.model_copy(update={"lat": lat, "lon": lon})


class FakeWikidata:
    def __init__(self, match: Optional[KnowledgeMatch] = None) -> None:
        self.result = match
        self.calls = 0

    async def match(self, name, locality=None):
        self.calls += 1
        return self.result


class FakeSerper:
    configured = True

    def __init__(self, url: Optional[str] = None, error: bool = False) -> None:
        self.url = url
        self.error = error
        self.queries: List[str] = []

    async def discover(self, name, *, locality=None, region=None, country=None):
        self.queries.append(name)
        if self.error:
            raise ProviderError("serper", "boom")
        return self.url


class FakeScraper:
    def __init__(self, meta: Optional[WebsiteMeta] = None) -> None:
        self.meta = meta
        self.calls: List[str] = []

    async def fetch(self, url):
        self.calls.append(url)
        return self.meta


class FakeUnsplash:
    configured = True

    def __init__(self, photos_by_query: Optional[Dict[str, List[StockPhoto]]] = None) -> None:
        self.photos_by_query = photos_by_query or {}
        self.queries: List[str] = []

    async def search(self, query, max_results=3):
        self.queries.append(query)
        return list(self.photos_by_query.get(query, []))[:max_results]


def google_details(place_id: str = "ChIJ-test", lat: float = -33.9068, lon: float = 18.4201, **kw: Any) -> PlaceDetails:
    fields = dict(
        place_id=place_id,
        name="V&A Waterfront",
        formatted_address="19 Dock Rd, Victoria & Alfred Waterfront, Cape Town, 8001, South Africa",
        website="https://www.waterfront.co.za/",
        types=("tourist_attraction", "point_of_interest"),
        lat=lat,
        lon=lon,
        photo_refs=["ref-a", "ref-b", "ref-c", "ref-d"],
    )
    fields.update(kw)
    return PlaceDetails(**fields)


def google_candidate(place_id: str = "ChIJ-test", lat: float = -33.9068, lon: float = 18.4201) -> NearbyCandidate:
    return NearbyCandidate(place_id=place_id, name="V&A Waterfront", types=("tourist_attraction",), lat=lat, lon=lon)


def build_service(
    conn,
    clock,
    *,
    google=None,
    geoapify=None,
    wikidata=None,
    serper=None,
    scraper=None,
    unsplash=None,
    paid_enabled=False,
    daily_limit=50,
    failing_urls=None,
    store=None,
    quota=None,
):
    """A PinIntelService wired to fakes; image downloads hit a MockTransport."""
    client = httpx.AsyncClient(transport=image_transport(failing_urls))
    cache = PlaceCache(conn, clock=clock)
    resolver = IdentityResolver(
        cache=cache,
        quota=quota if quota is not None else QuotaGuard(conn, daily_limit=daily_limit, clock=clock),
        google=google,
        geoapify=geoapify,
        wikidata=wikidata,
        serper=serper,
        scraper=scraper,
        paid_enabled=paid_enabled,
    )
    return PinIntelService(
        resolver=resolver,
        cache=cache,
        ingestor=ImageIngestor(client, store if store is not None else MemoryBlobStore()),
        limits=WaterfallLimits(),
        google=google,
        scraper=scraper,
        wikidata=wikidata,
        unsplash=unsplash,
    )

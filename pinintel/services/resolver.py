"""
Identity resolution for one pin.

    cache lookup ─hit─────────────────────────────────────────► done
        │miss
    quota ─allowed─► Google nearby ─► details ─► distance check
        │denied            │none/error       │far
        ▼                  ▼                 ▼
    Geoapify (nearby POI / reverse) ─► coordinate fallback
        │
    website backfill: Wikidata P856 ─► web search + title validation

Each decision is recorded by name in the diagnostics' fallbacks_used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import httpx

from pinintel.core.contracts import Place, QuotaDecision
from pinintel.core.errors import ProviderError
from pinintel.core.geo import coordinate_label, haversine_m
from pinintel.core.urls import host_of, normalize_website_url
from pinintel.services.diagnostics import DiagnosticsCollector
from pinintel.services.heuristics import (
    build_query_context,
    has_word,
    is_knowledge_graph_eligible,
    name_token,
    normalize_text,
)
from pinintel.services.place_cache import PlaceCache
from pinintel.services.providers.geoapify import Geoapify
from pinintel.services.providers.google_places import GooglePlaces, PlaceDetails, keyword_for_hint
from pinintel.services.providers.serper import Serper
from pinintel.services.providers.website_meta import WebsiteMeta, WebsiteMetaScraper
from pinintel.services.providers.wikidata import KnowledgeMatch, Wikidata
from pinintel.services.quota import QuotaGuard, QuotaStorageError

logger = logging.getLogger(__name__)

# Directory / municipal / listing sites that show up for almost any venue query
DENYLISTED_DOMAINS = (
    ".gov.za",
    ".gov.uk",
    ".gov.au",
    ".gov",
    "yellowpages.",
    "brabys.com",
    "cylex",
    "hotfrog.",
    "sa-venues.com",
    "snupit.co.za",
    "infoisinfo",
    "showme.co.za",
    "localista",
    "mapcarta.com",
    "wanderlog.com",
    "near-place.com",
    "restaurantguru.com",
)

# Google types that say nothing about what a place is
_UNINFORMATIVE_TYPES = frozenset({"point_of_interest", "establishment", "premise", "political", "geocode"})


def is_denylisted_domain(host: str) -> bool:
    h = (host or "").lower()
    return any(h.endswith(d) if d.startswith(".") else d in h for d in DENYLISTED_DOMAINS)


def split_formatted_address(address: str | None) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    (locality, region, country) from a comma-separated formatted address.

    Postal codes are dropped; a short all-caps segment before the country is
    read as a state code ("Springfield, IL 62701, USA").
    """
    parts = []
    for raw in (address or "").split(","):
        words = [w for w in raw.split() if not any(ch.isdigit() for ch in w)]
        seg = " ".join(words).strip()
        if seg:
            parts.append(seg)
    if len(parts) < 2:
        return None, None, None
    country = parts[-1]
    rest = parts[:-1]
    region = None
    if len(rest) >= 2 and len(rest[-1]) <= 3 and rest[-1].isupper():
        region = rest.pop()
    locality = rest[-1] if len(rest) >= 2 else None
    return locality, region, country


def google_category(types: Tuple[str, ...]) -> Optional[str]:
    for t in types:
        if t and t not in _UNINFORMATIVE_TYPES:
            return t
    return None


@dataclass
class Resolution:
    place: Place
    cache_hit: bool = False
    paid_path_ran: bool = False
    cached_photo_urls: List[str] = field(default_factory=list)
    photo_refs: List[str] = field(default_factory=list)
    knowledge: Optional[KnowledgeMatch] = None
    knowledge_fetched: bool = False
    # Scraped while validating a searched website; reused for images + text
    website_meta: Optional[WebsiteMeta] = None


async def fetch_knowledge(
    wikidata: Optional[Wikidata],
    place: Place,
    diag: DiagnosticsCollector,
    *,
    timing: str = "wikidata_lookup_ms",
) -> Optional[KnowledgeMatch]:
    if wikidata is None:
        return None
    diag.call("knowledge_graph")
    try:
        with diag.timer(timing):
            return await wikidata.match(place.name, place.locality)
    except ProviderError as e:
        logger.warning("wikidata_failed name=%r err=%s", place.name, e)
        diag.fallback("wikidata_error")
        return None


class IdentityResolver:
    def __init__(
        self,
        *,
        cache: PlaceCache,
        quota: QuotaGuard,
        google: Optional[GooglePlaces],
        geoapify: Optional[Geoapify],
        wikidata: Optional[Wikidata],
        serper: Optional[Serper],
        scraper: Optional[WebsiteMetaScraper],
        paid_enabled: bool,
        cache_ttl_days: int = 30,
        paid_radius_m: int = 80,
        paid_max_distance_m: float = 150.0,
        paid_max_photos: int = 3,
    ) -> None:
        self.cache = cache
        self.quota = quota
        self.google = google
        self.geoapify = geoapify
        self.wikidata = wikidata
        self.serper = serper
        self.scraper = scraper
        self.paid_enabled = paid_enabled and google is not None and google.configured
        self.cache_ttl_days = cache_ttl_days
        self.paid_radius_m = paid_radius_m
        self.paid_max_distance_m = paid_max_distance_m
        self.paid_max_photos = max(0, int(paid_max_photos))

    # ──────────────────────────────────────────────────────────────
    # Paid path
    # ──────────────────────────────────────────────────────────────

    def _check_quota(self, client_key: str, diag: DiagnosticsCollector) -> bool:
        try:
            decision = self.quota.check_and_increment(client_key)
        except QuotaStorageError:
            diag.quota = QuotaDecision(allowed=False, remaining=0)
            diag.fallback("quota_storage_error")
            return False
        diag.quota = decision
        if not decision.allowed:
            diag.fallback("quota_exhausted")
        return decision.allowed

    async def _paid_lookup(
        self, lat: float, lon: float, hint: str | None, diag: DiagnosticsCollector
    ) -> Tuple[Optional[Place], List[str]]:
        assert self.google is not None
        details: Optional[PlaceDetails] = None
        try:
            with diag.timer("paid_lookup_ms"):
                diag.call("nearby_search")
                cand = await self.google.nearby_search(
                    lat, lon, radius_m=self.paid_radius_m, keyword=keyword_for_hint(hint)
                )
                if cand is not None:
                    diag.call("place_details")
                    details = await self.google.place_details(cand.place_id)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning("paid_provider_error lat=%.5f lon=%.5f err=%s", lat, lon, e)
            diag.fallback("paid_provider_error")
            return None, []

        if cand is None or details is None:
            diag.fallback("paid_no_candidate")
            return None, []

        d_lat = details.lat if details.lat is not None else cand.lat
        d_lon = details.lon if details.lon is not None else cand.lon
        dist = haversine_m(lat, lon, d_lat, d_lon)
        if dist > self.paid_max_distance_m:
            logger.info("reject_far_candidate id=%s dist=%.0fm", details.place_id, dist)
            diag.fallback("reject_far_candidate")
            return None, []

        locality, region, country = split_formatted_address(details.formatted_address)
        website = normalize_website_url(details.website)
        place = Place(
            lat=d_lat,
            lon=d_lon,
            name=details.name or cand.name or coordinate_label(lat, lon),
            category=google_category(details.types or cand.types),
            address=details.formatted_address,
            locality=locality,
            region=region,
            country=country,
            website=website,
            website_provenance="provider" if website else None,
            phone=details.phone,
            source="google",
            source_id=details.place_id,
            confidence=round(max(0.5, 1.0 - dist / (2 * max(1.0, self.paid_max_distance_m))), 3),
        )
        diag.fallback("google_place")
        return place, details.photo_refs[: self.paid_max_photos]

    # ──────────────────────────────────────────────────────────────
    # Secondary path
    # ──────────────────────────────────────────────────────────────

    async def _secondary_lookup(self, lat: float, lon: float, hint: str | None, diag: DiagnosticsCollector) -> Place:
        if self.geoapify is not None and self.geoapify.configured:
            diag.call("secondary_lookup")
            try:
                with diag.timer("secondary_lookup_ms"):
                    place = await self.geoapify.resolve(lat, lon, hint)
            except ProviderError as e:
                logger.warning("geoapify_error lat=%.5f lon=%.5f err=%s", lat, lon, e)
                diag.fallback("geoapify_error")
                place = None
            else:
                diag.fallback("geoapify_place" if place is not None else "geoapify_no_candidate")
            if place is not None:
                return place
        else:
            diag.fallback("no_geoapify_key")

        diag.fallback("coordinate_fallback")
        return Place(lat=lat, lon=lon, name=coordinate_label(lat, lon), source="unknown", confidence=0.1)

    # ──────────────────────────────────────────────────────────────
    # Website backfill
    # ──────────────────────────────────────────────────────────────

    async def _search_website(
        self, place: Place, hint: str | None, diag: DiagnosticsCollector
    ) -> Tuple[Place, Optional[WebsiteMeta]]:
        ctx = build_query_context(place, hint)

        if self.serper is None or not self.serper.configured:
            diag.fallback("no_search_key")
            return place, None
        if ctx.search_name_is_generic:
            diag.fallback("skip_search_generic_hint")
            return place, None
        if ctx.search_name_looks_like_address:
            diag.fallback("skip_search_street_address")
            return place, None

        diag.call("web_search")
        try:
            with diag.timer("website_discovery_ms"):
                found = await self.serper.discover(
                    ctx.search_name, locality=place.locality, region=place.region, country=place.country
                )
        except ProviderError as e:
            logger.warning("search_error q=%r err=%s", ctx.search_name, e)
            diag.fallback("search_error")
            return place, None

        if not found:
            diag.fallback("no_search_match")
            return place, None
        if is_denylisted_domain(host_of(found)):
            diag.fallback("reject_denylisted_domain")
            return place, None

        # The site's own title must carry the place's primary name token
        token = name_token(ctx.search_name)
        meta: Optional[WebsiteMeta] = None
        if token and self.scraper is not None:
            diag.call("website_scrape")
            try:
                with diag.timer("website_validate_ms"):
                    meta = await self.scraper.fetch(found)
            except ProviderError as e:
                logger.info("website_validate_failed url=%s err=%s", found, e)

        title = normalize_text(meta.best_title if meta else "")
        if not has_word(title, token):
            logger.info("reject_unofficial_website url=%s token=%r title=%r", found, token, title)
            diag.fallback("reject_unofficial_website")
            return place, None

        diag.fallback("search_official_website")
        return place.model_copy(update={"website": found, "website_provenance": "search"}), meta

    # ──────────────────────────────────────────────────────────────
    # Entry point
    # ──────────────────────────────────────────────────────────────

    async def resolve(
        self,
        lat: float,
        lon: float,
        hint: str | None,
        client_key: str,
        diag: DiagnosticsCollector,
    ) -> Resolution:
        if self.paid_enabled:
            with diag.timer("cache_lookup_ms"):
                entry = self.cache.get(lat, lon, self.cache_ttl_days)
            if entry is not None:
                logger.info("place_cache_hit bucket=%s source_id=%s", entry.bucket, entry.place.source_id)
                diag.cache_hit = True
                diag.provider = entry.place.source
                return Resolution(place=entry.place, cache_hit=True, cached_photo_urls=list(entry.photo_urls))

        place: Optional[Place] = None
        photo_refs: List[str] = []
        paid_ran = False

        if not self.paid_enabled:
            diag.fallback("paid_disabled")
        elif self._check_quota(client_key, diag):
            paid_ran = True
            place, photo_refs = await self._paid_lookup(lat, lon, hint, diag)

        if place is None:
            place = await self._secondary_lookup(lat, lon, hint, diag)
        diag.provider = place.source

        res = Resolution(place=place, paid_path_ran=paid_ran, photo_refs=photo_refs)

        if paid_ran and place.source == "google" and place.source_id:
            shared = self.cache.photos_for_source(place.source_id, self.cache_ttl_days)
            if shared:
                logger.info("place_cache_source_hit source_id=%s photos=%d", place.source_id, len(shared))
                diag.fallback("source_id_cache_hit")
                res.cached_photo_urls = shared

        if not res.place.website and is_knowledge_graph_eligible(res.place) and self.wikidata is not None:
            res.knowledge = await fetch_knowledge(self.wikidata, res.place, diag)
            res.knowledge_fetched = True
            if res.knowledge is not None:
                res.place = res.place.model_copy(update={"wikidata_id": res.knowledge.wikidata_id})
                if res.knowledge.official_website:
                    res.place = res.place.model_copy(
                        update={"website": res.knowledge.official_website, "website_provenance": "knowledge_graph"}
                    )
                    diag.fallback("wikidata_official_website")

        if not res.place.website:
            res.place, res.website_meta = await self._search_website(res.place, hint, diag)

        logger.info(
            "resolved lat=%.5f lon=%.5f source=%s name=%r website=%s paid=%s",
            lat,
            lon,
            res.place.source,
            res.place.name,
            res.place.website,
            paid_ran,
        )
        return res

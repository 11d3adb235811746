"""
Image waterfall: ordered tiers, each `async (TierContext) -> TierResult`.

A tier either satisfies the request (`advance=False`) or hands over to the
next one; `run_waterfall` stops at the first tier that does not advance and
records every tier's reason. Downloads inside one tier run concurrently,
tiers themselves run strictly in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from pinintel.core.contracts import ImageSource, PlaceImage, UploadFailure
from pinintel.core.errors import ProviderError
from pinintel.core.settings import Settings
from pinintel.services.diagnostics import DiagnosticsCollector
from pinintel.services.heuristics import PlaceQueryContext, is_knowledge_graph_eligible
from pinintel.services.ingest import Downloader, ImageIngestor, IngestResult
from pinintel.services.providers.google_places import GooglePlaces
from pinintel.services.providers.mapbox_static import static_map_url
from pinintel.services.providers.unsplash import StockPhoto, Unsplash
from pinintel.services.providers.website_meta import WebsiteMetaScraper
from pinintel.services.providers.wikidata import Wikidata
from pinintel.services.resolver import Resolution, fetch_knowledge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierResult:
    advance: bool
    reason: str


@dataclass(frozen=True)
class WaterfallLimits:
    max_images: int = 3
    provider_photo_timeout_s: float = 6.0
    website_timeout_s: float = 5.0
    knowledge_graph_timeout_s: float = 5.0
    stock_timeout_s: float = 3.5
    mapbox_token: str = ""
    mapbox_style: str = "streets-v12"

    @classmethod
    def from_settings(cls, s: Settings) -> "WaterfallLimits":
        return cls(
            max_images=max(1, s.max_images_per_tier),
            provider_photo_timeout_s=s.ingest_provider_photo_timeout_s,
            website_timeout_s=s.ingest_website_timeout_s,
            knowledge_graph_timeout_s=s.ingest_knowledge_graph_timeout_s,
            stock_timeout_s=s.ingest_stock_timeout_s,
            mapbox_token=s.mapbox_token,
            mapbox_style=s.mapbox_style,
        )


@dataclass
class TierContext:
    lat: float
    lon: float
    cache_key: str
    resolution: Resolution
    query: PlaceQueryContext
    diag: DiagnosticsCollector
    ingestor: ImageIngestor
    limits: WaterfallLimits
    google: Optional[GooglePlaces] = None
    scraper: Optional[WebsiteMetaScraper] = None
    wikidata: Optional[Wikidata] = None
    unsplash: Optional[Unsplash] = None
    images: List[PlaceImage] = field(default_factory=list)
    # Hosted provider-photo URLs, written to the place cache afterwards
    hosted_photo_urls: List[str] = field(default_factory=list)

    @property
    def place(self):
        return self.resolution.place


Tier = Callable[[TierContext], Awaitable[TierResult]]


# ──────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────

async def _ingest_batch(
    ctx: TierContext,
    sources: Sequence[Tuple[str, Optional[Downloader], Optional[str], Optional[str]]],
    *,
    source: ImageSource,
    tag: str,
    timeout_s: float,
    timing: str,
) -> int:
    """
    Re-host `(url, downloader, attribution, originating_url)` candidates.

    Failures go to diagnostics; successes are appended to ctx.images.
    Returns the number of images added.
    """
    if not sources:
        return 0
    with ctx.diag.timer(timing):
        results: List[IngestResult] = await ctx.ingestor.ingest_many(
            [(url, dl) for url, dl, _, _ in sources], ctx.cache_key, tag, timeout_s=timeout_s
        )
    added = 0
    for (url, _, attribution, originating), res in zip(sources, results):
        if res.ok:
            ctx.images.append(
                PlaceImage(
                    url=res.hosted_url,
                    source=source,
                    attribution=attribution,
                    originating_url=originating or url,
                )
            )
            added += 1
        else:
            ctx.diag.upload_failed(UploadFailure(source=source, url=url, stage=res.stage, message=res.message))
    return added


# ──────────────────────────────────────────────────────────────
# Tiers
# ──────────────────────────────────────────────────────────────

async def cached_photos(ctx: TierContext) -> TierResult:
    # Bucket hit, or the same provider place cached under another bucket
    urls = ctx.resolution.cached_photo_urls[: ctx.limits.max_images]
    if not urls:
        return TierResult(True, "cache_hit_no_photos" if ctx.resolution.cache_hit else "no_cached_photos")
    for u in urls:
        ctx.images.append(PlaceImage(url=u, source="provider-photo"))
    ctx.hosted_photo_urls.extend(urls)
    return TierResult(False, "cached_provider_photos")


async def provider_photos(ctx: TierContext) -> TierResult:
    refs = ctx.resolution.photo_refs[: ctx.limits.max_images]
    if not refs or ctx.google is None:
        return TierResult(True, "no_provider_photos")

    google = ctx.google

    def _downloader(ref: str) -> Downloader:
        async def _dl() -> Tuple[bytes, str]:
            ctx.diag.call("photo_fetch")
            return await google.fetch_photo(ref, timeout_s=ctx.limits.provider_photo_timeout_s)

        return _dl

    # The API key lives in the photo URL, so diagnostics only see the ref
    sources = [(f"google-photo:{ref}", _downloader(ref), None, None) for ref in refs]
    added = await _ingest_batch(
        ctx,
        sources,
        source="provider-photo",
        tag="google",
        timeout_s=ctx.limits.provider_photo_timeout_s,
        timing="provider_photo_upload_ms",
    )
    if not added:
        return TierResult(True, "provider_photos_failed")
    ctx.hosted_photo_urls.extend(img.url for img in ctx.images if img.source == "provider-photo")
    return TierResult(False, "provider_photos")


async def website_images(ctx: TierContext) -> TierResult:
    website = ctx.place.website
    if not website:
        return TierResult(True, "no_website")

    meta = ctx.resolution.website_meta
    if meta is None:
        if ctx.scraper is None:
            return TierResult(True, "no_website_scraper")
        ctx.diag.call("website_scrape")
        try:
            with ctx.diag.timer("website_scrape_ms"):
                meta = await ctx.scraper.fetch(website)
        except ProviderError as e:
            logger.info("website_scrape_failed url=%s err=%s", website, e)
            return TierResult(True, "website_scrape_failed")
        ctx.resolution.website_meta = meta

    if meta is None or not meta.images:
        return TierResult(True, "no_website_images")

    sources = [(u, None, None, meta.final_url) for u in meta.images[: ctx.limits.max_images]]
    added = await _ingest_batch(
        ctx,
        sources,
        source="website",
        tag="website",
        timeout_s=ctx.limits.website_timeout_s,
        timing="website_upload_ms",
    )
    return TierResult(False, "website_images") if added else TierResult(True, "website_images_failed")


async def knowledge_graph_images(ctx: TierContext) -> TierResult:
    if not is_knowledge_graph_eligible(ctx.place):
        return TierResult(True, "skip_knowledge_graph")

    if not ctx.resolution.knowledge_fetched:
        if ctx.wikidata is None:
            return TierResult(True, "skip_knowledge_graph")
        ctx.resolution.knowledge = await fetch_knowledge(ctx.wikidata, ctx.place, ctx.diag, timing="wikidata_ms")
        ctx.resolution.knowledge_fetched = True

    match = ctx.resolution.knowledge
    if match is None or not match.image_urls:
        return TierResult(True, "no_knowledge_graph_images")

    sources = [(u, None, "Wikimedia Commons", u) for u in match.image_urls[: ctx.limits.max_images]]
    added = await _ingest_batch(
        ctx,
        sources,
        source="knowledge-graph",
        tag="wikimedia",
        timeout_s=ctx.limits.knowledge_graph_timeout_s,
        timing="knowledge_graph_upload_ms",
    )
    return TierResult(False, "knowledge_graph_images") if added else TierResult(True, "knowledge_graph_images_failed")


def stock_queries(q: PlaceQueryContext) -> List[str]:
    """Primary query first, then broader travel/landscape fallbacks."""
    leaf = q.category_leaf or "travel"
    locality = q.locality
    if q.is_generic_hint or q.looks_like_address:
        primary = f"{leaf} {locality or 'travel'} landscape"
    else:
        primary = f"{q.name} {locality}".strip() if locality else q.name

    ladder = [primary]
    if locality:
        ladder += [f"{leaf} {locality} travel", f"{locality} landscape"]
    out: List[str] = []
    for s in ladder:
        s = " ".join(s.split())
        if s and s not in out:
            out.append(s)
    return out


async def stock_photos(ctx: TierContext) -> TierResult:
    if ctx.unsplash is None or not ctx.unsplash.configured:
        return TierResult(True, "no_stock_key")
    if ctx.query.is_risky_brand:
        return TierResult(True, "skip_stock_short_brand")

    photos: List[StockPhoto] = []
    for query in stock_queries(ctx.query):
        ctx.diag.call("stock_search")
        try:
            with ctx.diag.timer("stock_search_ms"):
                photos = await ctx.unsplash.search(query, ctx.limits.max_images)
        except ProviderError as e:
            logger.info("stock_search_failed q=%r err=%s", query, e)
            return TierResult(True, "stock_search_failed")
        if photos:
            logger.info("stock_query_hit q=%r", query)
            break

    if not photos:
        return TierResult(True, "no_stock_images")

    sources = [(p.image_url, None, p.attribution, p.page_url) for p in photos[: ctx.limits.max_images]]
    added = await _ingest_batch(
        ctx,
        sources,
        source="stock",
        tag="stock",
        timeout_s=ctx.limits.stock_timeout_s,
        timing="stock_upload_ms",
    )
    return TierResult(False, "stock_images") if added else TierResult(True, "stock_images_failed")


async def static_map(ctx: TierContext) -> TierResult:
    ctx.diag.call("static_map")
    url = static_map_url(ctx.lat, ctx.lon, token=ctx.limits.mapbox_token, style=ctx.limits.mapbox_style)
    ctx.images.append(
        PlaceImage(
            url=url,
            source="static-map",
            attribution="© Mapbox © OpenStreetMap" if ctx.limits.mapbox_token else "© OpenStreetMap contributors",
        )
    )
    return TierResult(False, "static_map_image")


DEFAULT_TIERS: Tuple[Tier, ...] = (
    cached_photos,
    provider_photos,
    website_images,
    knowledge_graph_images,
    stock_photos,
    static_map,
)


async def run_waterfall(tiers: Sequence[Tier], ctx: TierContext) -> List[PlaceImage]:
    for tier in tiers:
        result = await tier(ctx)
        ctx.diag.fallback(result.reason)
        if not result.advance:
            break
    # The map snapshot cannot fail, but a custom tier list may omit it
    if not ctx.images:
        await static_map(ctx)
        ctx.diag.fallback("static_map_image")
    return list(ctx.images)

from __future__ import annotations

import logging
from typing import Optional, Sequence

from pinintel.core.contracts import CacheEntry, Diagnostics, PinIntelResponse
from pinintel.core.keying import coord_bucket, image_cache_key
from pinintel.services.diagnostics import DiagnosticsCollector
from pinintel.services.heuristics import build_query_context
from pinintel.services.ingest import ImageIngestor
from pinintel.services.place_cache import PlaceCache
from pinintel.services.providers.google_places import GooglePlaces
from pinintel.services.providers.unsplash import Unsplash
from pinintel.services.providers.website_meta import WebsiteMetaScraper
from pinintel.services.providers.wikidata import Wikidata
from pinintel.services.resolver import IdentityResolver
from pinintel.services.text import synthesize
from pinintel.services.waterfall import DEFAULT_TIERS, Tier, TierContext, WaterfallLimits, run_waterfall

logger = logging.getLogger(__name__)


class PinIntelFailed(RuntimeError):
    """Unexpected pipeline failure; carries what was collected up to that point."""

    def __init__(self, message: str, diagnostics: Diagnostics):
        super().__init__(message)
        self.diagnostics = diagnostics


class PinIntelService:
    """
    One pin in, one place record out:

      1) identity (cache / quota-gated paid lookup / secondary / fallback)
      2) image waterfall (first tier that yields images wins)
      3) title + description
      4) cache write when the paid path produced the identity
    """

    def __init__(
        self,
        *,
        resolver: IdentityResolver,
        cache: PlaceCache,
        ingestor: ImageIngestor,
        limits: WaterfallLimits,
        google: Optional[GooglePlaces] = None,
        scraper: Optional[WebsiteMetaScraper] = None,
        wikidata: Optional[Wikidata] = None,
        unsplash: Optional[Unsplash] = None,
        tiers: Sequence[Tier] = DEFAULT_TIERS,
    ) -> None:
        self.resolver = resolver
        self.cache = cache
        self.ingestor = ingestor
        self.limits = limits
        self.google = google
        self.scraper = scraper
        self.wikidata = wikidata
        self.unsplash = unsplash
        self.tiers = tuple(tiers)

    async def run(self, lat: float, lon: float, hint: str | None, client_key: str) -> PinIntelResponse:
        diag = DiagnosticsCollector()
        try:
            return await self._run(lat, lon, hint, client_key, diag)
        except Exception as e:
            logger.exception("pin_intel_failed lat=%.5f lon=%.5f", lat, lon)
            raise PinIntelFailed(str(e) or e.__class__.__name__, diag.build()) from e

    async def _run(
        self,
        lat: float,
        lon: float,
        hint: str | None,
        client_key: str,
        diag: DiagnosticsCollector,
    ) -> PinIntelResponse:
        res = await self.resolver.resolve(lat, lon, hint, client_key, diag)

        ctx = TierContext(
            lat=lat,
            lon=lon,
            cache_key=image_cache_key(lat, lon),
            resolution=res,
            query=build_query_context(res.place, hint),
            diag=diag,
            ingestor=self.ingestor,
            limits=self.limits,
            google=self.google,
            scraper=self.scraper,
            wikidata=self.wikidata,
            unsplash=self.unsplash,
        )
        images = await run_waterfall(self.tiers, ctx)

        title, description = synthesize(res.place, res.website_meta)

        if res.paid_path_ran and not res.cache_hit and res.place.source == "google":
            self.cache.put(
                lat,
                lon,
                CacheEntry(
                    bucket=coord_bucket(lat, lon),
                    place=res.place,
                    photo_urls=list(ctx.hosted_photo_urls),
                    inserted_at=self.cache.now().isoformat(),
                ),
            )

        logger.info(
            "pin_intel_ok lat=%.5f lon=%.5f title=%r images=%s",
            lat,
            lon,
            title,
            [img.source for img in images],
        )
        return PinIntelResponse(
            place=res.place,
            title=title,
            description=description,
            images=images,
            diagnostics=diag.build(),
        )

# pinintel/main.py
from __future__ import annotations

import logging
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.middleware.gzip import GZipMiddleware

# Load <repo>/.env (main.py is <repo>/pinintel/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from pinintel.core.settings import settings
from pinintel.core.storage import connect_sqlite, ensure_schema
from pinintel.api import api_router

from pinintel.services.blob_store import LocalBlobStore, create_blob_store
from pinintel.services.ingest import ImageIngestor
from pinintel.services.pin_intel import PinIntelService
from pinintel.services.place_cache import PlaceCache
from pinintel.services.providers.geoapify import Geoapify
from pinintel.services.providers.google_places import GooglePlaces
from pinintel.services.providers.serper import Serper
from pinintel.services.providers.unsplash import Unsplash
from pinintel.services.providers.website_meta import WebsiteMetaScraper
from pinintel.services.providers.wikidata import Wikidata
from pinintel.services.quota import QuotaGuard
from pinintel.services.resolver import IdentityResolver
from pinintel.services.waterfall import WaterfallLimits

logger = logging.getLogger(__name__)

app = FastAPI(title="Pin Intel Backend", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        # Capacitor / iOS
        "capacitor://localhost",
        "ionic://localhost",

        # Local web dev
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────
# Storage + shared HTTP client
# ──────────────────────────────────────────────────────────────

# Place cache + quota counters: SQLite, local to the instance
_cache_conn = connect_sqlite(settings.cache_db_path)
ensure_schema(_cache_conn)

_http = httpx.AsyncClient(headers={"User-Agent": settings.user_agent})

_blob_store = create_blob_store(settings, _http)

# Locally hosted images are served by this app
if isinstance(_blob_store, LocalBlobStore):
    _blob_store.root.mkdir(parents=True, exist_ok=True)
    app.mount(_blob_store.route, StaticFiles(directory=str(_blob_store.root)), name="hosted")

# ──────────────────────────────────────────────────────────────
# Providers
# ──────────────────────────────────────────────────────────────

_google = GooglePlaces(
    _http,
    api_key=settings.google_maps_api_key,
    region=settings.google_region,
    timeout_s=settings.paid_provider_timeout_s,
)
_geoapify = Geoapify(
    _http,
    api_key=settings.geoapify_api_key,
    search_radius_m=settings.geoapify_search_radius_m,
    max_distance_m=settings.geoapify_max_distance_m,
    timeout_s=settings.geoapify_timeout_s,
)
_wikidata = Wikidata(_http, timeout_s=settings.wikidata_timeout_s, user_agent=settings.user_agent)
_serper = Serper(
    _http,
    api_key=settings.serper_api_key,
    gl=settings.serper_gl,
    hl=settings.serper_hl,
    timeout_s=settings.serper_timeout_s,
)
_scraper = WebsiteMetaScraper(
    _http,
    timeout_s=settings.website_scrape_timeout_s,
    max_images=settings.website_scrape_max_images,
    user_agent=settings.user_agent,
    enabled=settings.website_scrape_enabled,
)
_unsplash = Unsplash(_http, access_key=settings.unsplash_access_key, timeout_s=settings.unsplash_timeout_s)

_place_cache = PlaceCache(_cache_conn)
_quota = QuotaGuard(_cache_conn, daily_limit=settings.paid_provider_daily_quota)

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

_pin_intel = PinIntelService(
    resolver=IdentityResolver(
        cache=_place_cache,
        quota=_quota,
        google=_google,
        geoapify=_geoapify,
        wikidata=_wikidata,
        serper=_serper,
        scraper=_scraper,
        paid_enabled=settings.paid_provider_enabled,
        cache_ttl_days=settings.place_cache_ttl_days,
        paid_radius_m=settings.paid_provider_radius_m,
        paid_max_distance_m=settings.paid_provider_max_distance_m,
        paid_max_photos=settings.paid_provider_max_photos,
    ),
    cache=_place_cache,
    ingestor=ImageIngestor(_http, _blob_store, max_bytes=settings.ingest_max_bytes, user_agent=settings.user_agent),
    limits=WaterfallLimits.from_settings(settings),
    google=_google,
    scraper=_scraper,
    wikidata=_wikidata,
    unsplash=_unsplash,
)


def provide_pin_intel_service() -> PinIntelService:
    return _pin_intel


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from pinintel.api import pin_intel as pin_intel_api

# Shared by /pin-intel and /diagnostics/places
app.dependency_overrides[pin_intel_api.get_pin_intel_service] = provide_pin_intel_service

# Routes
app.include_router(api_router)

logger.info(
    "[app] ready paid=%s storage=%s",
    settings.paid_provider_enabled,
    type(_blob_store).__name__ if _blob_store is not None else "none",
)

# ──────────────────────────────────────────────────────────────
# Shutdown
# ──────────────────────────────────────────────────────────────

@app.on_event("shutdown")
async def shutdown():
    logger.info("[app] Shutting down, closing connections")
    try:
        await _http.aclose()
    except Exception as e:
        logger.warning(f"[app] Error closing http client: {e}")
    try:
        _cache_conn.close()
    except Exception as e:
        logger.warning(f"[app] Error closing cache DB: {e}")

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Paths
    data_dir: str = Field(default="pinintel/data", alias="DATA_DIR")
    cache_db_path: str = Field(default="pinintel/data/pinintel.db", alias="CACHE_DB_PATH")

    # Versioning
    algo_version: str = Field(default="pinintel.v3.waterfall", alias="ALGO_VERSION")

    # ──────────────────────────────────────────────────────────────
    # Paid provider (Google Places): nearby search + details + photos
    # Gated by a per-client daily quota and amortised by the place cache.
    # ──────────────────────────────────────────────────────────────

    paid_provider_enabled: bool = Field(default=False, alias="PAID_PROVIDER_ENABLED")
    google_maps_api_key: str = Field(default="", alias="GOOGLE_MAPS_API_KEY")
    google_region: str = Field(default="za", alias="GOOGLE_REGION")
    paid_provider_daily_quota: int = Field(default=50, alias="PAID_PROVIDER_DAILY_QUOTA")
    paid_provider_radius_m: int = Field(default=80, alias="PAID_PROVIDER_RADIUS_M")
    paid_provider_max_photos: int = Field(default=3, alias="PAID_PROVIDER_MAX_PHOTOS")
    paid_provider_max_distance_m: float = Field(default=150.0, alias="PAID_PROVIDER_MAX_DISTANCE_M")
    paid_provider_timeout_s: float = Field(default=3.5, alias="PAID_PROVIDER_TIMEOUT_S")

    # Place cache
    place_cache_ttl_days: int = Field(default=30, alias="PLACE_CACHE_TTL_DAYS")

    # ──────────────────────────────────────────────────────────────
    # Secondary structured lookup (Geoapify)
    # ──────────────────────────────────────────────────────────────

    geoapify_api_key: str = Field(default="", alias="GEOAPIFY_API_KEY")
    geoapify_search_radius_m: int = Field(default=300, alias="GEOAPIFY_SEARCH_RADIUS_M")
    geoapify_max_distance_m: float = Field(default=150.0, alias="GEOAPIFY_MAX_DISTANCE_M")
    geoapify_timeout_s: float = Field(default=6.0, alias="GEOAPIFY_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # Website backfill + scrape
    # ──────────────────────────────────────────────────────────────

    wikidata_timeout_s: float = Field(default=5.0, alias="WIKIDATA_TIMEOUT_S")

    serper_api_key: str = Field(default="", alias="SERPER_API_KEY")
    serper_gl: str = Field(default="za", alias="SERPER_GL")
    serper_hl: str = Field(default="en", alias="SERPER_HL")
    serper_timeout_s: float = Field(default=5.0, alias="SERPER_TIMEOUT_S")

    website_scrape_enabled: bool = Field(default=True, alias="ENABLE_WEBSITE_SCRAPE")
    website_scrape_timeout_s: float = Field(default=3.5, alias="WEBSITE_SCRAPE_TIMEOUT_S")
    website_scrape_max_images: int = Field(default=3, alias="WEBSITE_SCRAPE_MAX_IMAGES")

    # ──────────────────────────────────────────────────────────────
    # Stock photos (Unsplash): tier silently skipped without a key
    # ──────────────────────────────────────────────────────────────

    unsplash_access_key: str = Field(default="", alias="UNSPLASH_ACCESS_KEY")
    unsplash_timeout_s: float = Field(default=4.0, alias="UNSPLASH_TIMEOUT_S")

    # Static map (Mapbox)
    mapbox_token: str = Field(default="", alias="MAPBOX_TOKEN")
    mapbox_style: str = Field(default="streets-v12", alias="MAPBOX_STYLE")

    # ──────────────────────────────────────────────────────────────
    # Image ingestion: per-tier download timeouts
    # Third-party stock images get the shortest budget.
    # ──────────────────────────────────────────────────────────────

    ingest_provider_photo_timeout_s: float = Field(default=6.0, alias="INGEST_PROVIDER_PHOTO_TIMEOUT_S")
    ingest_website_timeout_s: float = Field(default=5.0, alias="INGEST_WEBSITE_TIMEOUT_S")
    ingest_knowledge_graph_timeout_s: float = Field(default=5.0, alias="INGEST_KNOWLEDGE_GRAPH_TIMEOUT_S")
    ingest_stock_timeout_s: float = Field(default=3.5, alias="INGEST_STOCK_TIMEOUT_S")
    ingest_max_bytes: int = Field(default=5 * 1024 * 1024, alias="INGEST_MAX_BYTES")
    max_images_per_tier: int = Field(default=3, alias="MAX_IMAGES_PER_TIER")

    # ──────────────────────────────────────────────────────────────
    # Owned storage: Supabase Storage in production,
    # local files served by this app otherwise.
    # ──────────────────────────────────────────────────────────────

    supa_url: str | None = Field(default=None, alias="SUPA_URL")
    supa_service_role_key: str | None = Field(default=None, alias="SUPA_SERVICE_ROLE_KEY")
    supa_bucket: str = Field(default="pin-images", alias="SUPA_BUCKET")
    supa_enabled: bool = Field(default=False, alias="SUPA_ENABLED")
    supa_upload_timeout_s: float = Field(default=10.0, alias="SUPA_UPLOAD_TIMEOUT_S")

    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")
    local_images_route: str = Field(default="/hosted", alias="LOCAL_IMAGES_ROUTE")

    user_agent: str = Field(default="PINITPreviewBot/1.0", alias="HTTP_USER_AGENT")

    # Set only behind a gateway that authenticates callers and overwrites
    # X-User-Id / X-Forwarded-For; otherwise both headers are ignored
    trust_proxy_headers: bool = Field(default=False, alias="TRUST_PROXY_HEADERS")


settings = Settings()

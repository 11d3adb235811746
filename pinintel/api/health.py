from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from pinintel.core.settings import settings

router = APIRouter()


def capabilities() -> Dict[str, bool]:
    return {
        "paid_provider": bool(settings.paid_provider_enabled and settings.google_maps_api_key),
        "secondary_lookup": bool(settings.geoapify_api_key),
        "web_search": bool(settings.serper_api_key),
        "website_scrape": bool(settings.website_scrape_enabled),
        "stock_photos": bool(settings.unsplash_access_key),
        "mapbox_static": bool(settings.mapbox_token),
        "supabase_storage": bool(settings.supa_enabled and settings.supa_url and settings.supa_service_role_key),
    }


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "algo_version": settings.algo_version, "capabilities": capabilities()}

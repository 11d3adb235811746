from __future__ import annotations

from urllib.parse import urlencode

MAPBOX_STATIC_BASE = "https://api.mapbox.com/styles/v1/mapbox"
OSM_STATIC_BASE = "https://staticmap.openstreetmap.de/staticmap.php"

ZOOM = 15.5
WIDTH = 800
HEIGHT = 600


def static_map_url(lat: float, lon: float, *, token: str = "", style: str = "streets-v12") -> str:
    """
    Deterministic map snapshot centred on the pin with a red marker.

    Performs no I/O. Without a Mapbox token an OpenStreetMap static map is
    used so a URL is always produced.
    """
    if token:
        overlay = f"pin-s+ff0000({lon:.6f},{lat:.6f})"
        path = f"{MAPBOX_STATIC_BASE}/{style}/static/{overlay}/{lon:.6f},{lat:.6f},{ZOOM}/{WIDTH}x{HEIGHT}"
        return f"{path}?{urlencode({'access_token': token})}"

    params = {
        "center": f"{lat:.6f},{lon:.6f}",
        "zoom": str(int(ZOOM)),
        "size": f"{WIDTH}x{HEIGHT}",
        "markers": f"{lat:.6f},{lon:.6f},red-pushpin",
    }
    return f"{OSM_STATIC_BASE}?{urlencode(params)}"

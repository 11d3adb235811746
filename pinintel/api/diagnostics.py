from __future__ import annotations

import logging
import time
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Request

from pinintel.api.pin_intel import authenticated_user_id, get_pin_intel_service, reject_input, request_client_key
from pinintel.core.contracts import DiagnosticsPoint, PlacesDiagnosticsResponse, PointReport
from pinintel.core.errors import CoordinatesOutOfRange, InvalidCoordinates
from pinintel.core.geo import parse_coordinates
from pinintel.services.pin_intel import PinIntelFailed, PinIntelService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/diagnostics")

# Well-known landmarks with official sites and plenty of photos
DEFAULT_POINTS: List[Tuple[float, float]] = [
    (-33.9068, 18.4201),  # V&A Waterfront
    (-33.9631, 18.4039),  # Table Mountain Aerial Cableway
    (48.85837, 2.294481),  # Eiffel Tower
    (41.8902, 12.4922),  # Colosseum
    (40.7580, -73.9855),  # Times Square
]

MAX_POINTS = 10


def parse_points(raw: Optional[str]) -> List[Tuple[float, float]]:
    """`"lat,lon;lat,lon"` -> [(lat, lon), ...]; empty means the default set."""
    if not raw or not raw.strip():
        return list(DEFAULT_POINTS)
    points: List[Tuple[float, float]] = []
    for chunk in raw.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = chunk.split(",")
        if len(parts) != 2:
            raise InvalidCoordinates(f"bad point: {chunk!r}")
        points.append(parse_coordinates(parts[0], parts[1]))
    if not points:
        raise InvalidCoordinates("no points given")
    return points[:MAX_POINTS]


@router.get("/places", response_model=PlacesDiagnosticsResponse)
async def diagnostics_places(
    request: Request,
    points: Optional[str] = None,
    svc: PinIntelService = Depends(get_pin_intel_service),
    user_id: Optional[str] = Depends(authenticated_user_id),
) -> PlacesDiagnosticsResponse:
    try:
        coords = parse_points(points)
    except (InvalidCoordinates, CoordinatesOutOfRange) as e:
        reject_input(e)

    key = request_client_key(request, user_id)
    t0 = time.perf_counter()
    reports: List[PointReport] = []
    for lat, lon in coords:
        point = DiagnosticsPoint(lat=lat, lon=lon)
        try:
            res = await svc.run(lat, lon, None, key)
        except PinIntelFailed as e:
            reports.append(
                PointReport(point=point, ok=False, error=str(e), fallbacks_used=list(e.diagnostics.fallbacks_used))
            )
            continue
        reports.append(
            PointReport(
                point=point,
                ok=True,
                title=res.title,
                provider=res.diagnostics.provider,
                has_description=bool(res.description),
                has_website=bool(res.place.website),
                image_sources=[img.source for img in res.images],
                fallbacks_used=list(res.diagnostics.fallbacks_used),
            )
        )

    ok = [r for r in reports if r.ok]
    with_site = sum(1 for r in ok if r.has_website)
    logger.info("diagnostics_places points=%d ok=%d with_website=%d", len(reports), len(ok), with_site)
    return PlacesDiagnosticsResponse(
        results=reports,
        total=len(reports),
        ok_count=len(ok),
        website_hit_rate=round(with_site / len(ok), 3) if ok else 0.0,
        total_ms=round((time.perf_counter() - t0) * 1000.0, 2),
    )

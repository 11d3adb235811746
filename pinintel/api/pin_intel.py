from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from pinintel.core.contracts import PinIntelErrorPayload, PinIntelRequest, PinIntelResponse
from pinintel.core.errors import CoordinatesOutOfRange, InvalidCoordinates, bad_request
from pinintel.core.geo import parse_coordinates
from pinintel.core.keying import client_key
from pinintel.core.settings import settings
from pinintel.services.diagnostics import DiagnosticsCollector
from pinintel.services.pin_intel import PinIntelFailed, PinIntelService

logger = logging.getLogger(__name__)

router = APIRouter()

NO_STORE = {"Cache-Control": "no-store"}


def get_pin_intel_service() -> PinIntelService:
    raise RuntimeError("PinIntelService must be provided by app dependency override")


def authenticated_user_id(request: Request) -> Optional[str]:
    """
    User id for quota keying.

    Only an authenticating gateway may assert it (TRUST_PROXY_HEADERS);
    deployments with their own auth override this dependency.
    """
    if not settings.trust_proxy_headers:
        return None
    return request.headers.get("x-user-id")


def request_client_key(request: Request, user_id: Optional[str]) -> str:
    ip: Optional[str] = None
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for") or ""
        ip = forwarded.split(",")[0].strip() or request.headers.get("x-real-ip")
    if not ip and request.client:
        ip = request.client.host
    return client_key(user_id, ip, request.headers.get("user-agent"))


def input_error_diagnostics() -> Dict[str, Any]:
    diag = DiagnosticsCollector()
    diag.fallback("invalid_input")
    return diag.build().model_dump(mode="json", by_alias=True)


def reject_input(e: InvalidCoordinates | CoordinatesOutOfRange):
    logger.info("pin_intel_bad_input code=%s msg=%s", e.code, e)
    bad_request(e.code, str(e), diagnostics=input_error_diagnostics())


async def _run(
    svc: PinIntelService,
    request: Request,
    response: Response,
    user_id: Optional[str],
    lat_raw: Any,
    lon_raw: Any,
    hint: Optional[str],
):
    try:
        lat, lon = parse_coordinates(lat_raw, lon_raw)
    except (InvalidCoordinates, CoordinatesOutOfRange) as e:
        reject_input(e)

    hint = (hint or "").strip() or None
    try:
        result = await svc.run(lat, lon, hint, request_client_key(request, user_id))
    except PinIntelFailed as e:
        payload = PinIntelErrorPayload(error="pin_intel_failed", message=str(e), diagnostics=e.diagnostics)
        return JSONResponse(status_code=500, content=payload.model_dump(mode="json", by_alias=True), headers=NO_STORE)

    response.headers.update(NO_STORE)
    return result


# ──────────────────────────────────────────────────────────────
# /pin-intel
# ──────────────────────────────────────────────────────────────

@router.get("/pin-intel", response_model=PinIntelResponse)
async def pin_intel_get(
    request: Request,
    response: Response,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    lng: Optional[str] = None,
    hint: Optional[str] = None,
    svc: PinIntelService = Depends(get_pin_intel_service),
    user_id: Optional[str] = Depends(authenticated_user_id),
):
    return await _run(svc, request, response, user_id, lat, lon if lon is not None else lng, hint)


@router.post("/pin-intel", response_model=PinIntelResponse)
async def pin_intel_post(
    req: PinIntelRequest,
    request: Request,
    response: Response,
    svc: PinIntelService = Depends(get_pin_intel_service),
    user_id: Optional[str] = Depends(authenticated_user_id),
):
    return await _run(svc, request, response, user_id, req.lat, req.lon if req.lon is not None else req.lng, req.hint)

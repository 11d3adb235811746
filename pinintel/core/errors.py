from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class ProviderError(RuntimeError):
    """An external capability failed (timeout, bad status, malformed payload)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class InvalidCoordinates(ValueError):
    code = "invalid_coordinates"


class CoordinatesOutOfRange(ValueError):
    code = "coordinates_out_of_range"


def _detail(code: str, message: str, diagnostics: Any | None) -> dict[str, Any]:
    detail: dict[str, Any] = {"code": code, "message": message}
    if diagnostics is not None:
        detail["diagnostics"] = diagnostics
    return detail


def bad_request(code: str, message: str, *, diagnostics: Any | None = None):
    raise HTTPException(status_code=400, detail=_detail(code, message, diagnostics))

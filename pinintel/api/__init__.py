from __future__ import annotations

from fastapi import APIRouter

from .health import router as health_router
from .pin_intel import router as pin_intel_router
from .diagnostics import router as diagnostics_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(pin_intel_router)
api_router.include_router(diagnostics_router)

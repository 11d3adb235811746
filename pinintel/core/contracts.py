from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire; accepts both on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────────────────────
# Place identity
# ──────────────────────────────────────────────────────────────

PlaceSource = Literal["google", "geoapify", "unknown"]

# Where place.website came from. Provider-supplied is trusted as-is;
# knowledge-graph and search results are only kept after validation.
WebsiteProvenance = Literal["provider", "knowledge_graph", "search"]


class Place(WireModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    name: str = Field(min_length=1)
    category: Optional[str] = None
    address: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None
    website_provenance: Optional[WebsiteProvenance] = None
    phone: Optional[str] = None
    source: PlaceSource = "unknown"
    source_id: Optional[str] = None
    confidence: float = 0.0
    wikidata_id: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Images
# ──────────────────────────────────────────────────────────────

ImageSource = Literal["provider-photo", "website", "knowledge-graph", "stock", "static-map"]
IngestStage = Literal["init", "download", "upload"]


class PlaceImage(WireModel):
    url: str
    source: ImageSource
    attribution: Optional[str] = None
    originating_url: Optional[str] = None


class UploadFailure(WireModel):
    source: str
    url: str
    stage: IngestStage
    message: str


# ──────────────────────────────────────────────────────────────
# Quota + cache
# ──────────────────────────────────────────────────────────────

class QuotaDecision(WireModel):
    allowed: bool
    remaining: int


class CacheEntry(WireModel):
    bucket: str
    place: Place
    photo_urls: List[str] = Field(default_factory=list)
    inserted_at: str  # ISO8601 UTC


# ──────────────────────────────────────────────────────────────
# Diagnostics
# ──────────────────────────────────────────────────────────────

class Diagnostics(WireModel):
    model_config = ConfigDict(frozen=True)

    provider: Optional[str] = None
    cache_hit: bool = False
    quota: Optional[QuotaDecision] = None
    timings_ms: Dict[str, float] = Field(default_factory=dict)
    fallbacks_used: List[str] = Field(default_factory=list)
    upload_failures: List[UploadFailure] = Field(default_factory=list)
    provider_calls: Dict[str, int] = Field(default_factory=dict)


# ──────────────────────────────────────────────────────────────
# /pin-intel
# ──────────────────────────────────────────────────────────────

class PinIntelRequest(WireModel):
    # Untyped; parse_coordinates tells invalid apart from out of range
    lat: Any = None
    lon: Any = None
    lng: Any = None
    hint: Optional[str] = None

    @field_validator("hint")
    @classmethod
    def _strip_hint(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class PinIntelResponse(WireModel):
    place: Place
    title: str
    description: str
    images: List[PlaceImage] = Field(min_length=1)
    diagnostics: Diagnostics


class PinIntelErrorPayload(WireModel):
    error: str
    message: str
    diagnostics: Diagnostics


# ──────────────────────────────────────────────────────────────
# /diagnostics/places
# ──────────────────────────────────────────────────────────────

class DiagnosticsPoint(WireModel):
    lat: float
    lon: float


class PointReport(WireModel):
    point: DiagnosticsPoint
    ok: bool
    title: Optional[str] = None
    provider: Optional[str] = None
    has_description: bool = False
    has_website: bool = False
    image_sources: List[str] = Field(default_factory=list)
    fallbacks_used: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class PlacesDiagnosticsResponse(WireModel):
    results: List[PointReport]
    total: int
    ok_count: int
    # Share of successful points that came back with a website
    website_hit_rate: float
    total_ms: float

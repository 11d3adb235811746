"""
Title/description synthesis. Pure functions of the resolved Place and,
optionally, scraped website metadata.

The formatted street address is never used as a description.
"""

from __future__ import annotations

from typing import Optional, Tuple

from pinintel.core.contracts import Place
from pinintel.services.heuristics import (
    is_coordinate_label,
    is_generic_text,
    is_unknown_sentinel,
    looks_like_street_address,
    normalize_text,
)
from pinintel.services.providers.website_meta import WebsiteMeta

MIN_META_DESCRIPTION = 40
MAX_DESCRIPTION = 240

_BAD_SITE_TITLES = frozenset({"home", "welcome", "homepage", "home page", "index", "default", "untitled"})

_FLUFF_MARKERS = ("!!!", "best ", "cheap ", "sale", "discount", "click here", "book now", "order now")

# Most specific first; matched against the full dotted category
_CATEGORY_LABELS = (
    ("accommodation.hotel", "Hotel"),
    ("accommodation.guest_house", "Guest house"),
    ("accommodation", "Accommodation"),
    ("catering.restaurant", "Restaurant"),
    ("catering.cafe", "Cafe"),
    ("catering.bar", "Bar"),
    ("catering.pub", "Bar"),
    ("entertainment.museum", "Museum"),
    ("production.winery", "Winery"),
    ("tourism.attraction", "Attraction"),
    ("tourism.sights", "Attraction"),
    ("leisure.park", "Park"),
    ("natural", "Nature spot"),
    ("beach", "Beach"),
    ("religion.place_of_worship", "Place of worship"),
    # Google place types
    ("lodging", "Accommodation"),
    ("restaurant", "Restaurant"),
    ("cafe", "Cafe"),
    ("bar", "Bar"),
    ("museum", "Museum"),
    ("tourist_attraction", "Attraction"),
    ("park", "Park"),
    ("church", "Place of worship"),
)


def category_label(category: str | None) -> str:
    c = (category or "").strip().lower()
    if not c:
        return "Place"
    for key, label in _CATEGORY_LABELS:
        if c == key or c.startswith(key + "."):
            return label
    head = c.split(".")[0].replace("_", " ").strip()
    return head[:1].upper() + head[1:] if head else "Place"


def _locality(place: Place) -> str:
    return (place.locality or place.region or "").strip()


def is_specific_name(name: str | None) -> bool:
    n = (name or "").strip()
    if not n or is_unknown_sentinel(n) or is_coordinate_label(n):
        return False
    return not is_generic_text(n) and not looks_like_street_address(n)


def build_title(place: Place) -> str:
    name = (place.name or "").strip()
    if is_specific_name(name):
        return name
    locality = _locality(place)
    if place.category and locality:
        return f"{category_label(place.category)} near {locality}"
    if locality:
        return locality
    if place.category:
        return category_label(place.category)
    # Nothing but the pin itself
    return name if is_coordinate_label(name) else "Pinned location"


def build_description(place: Place) -> str:
    label = category_label(place.category)
    locality = _locality(place)
    return f"{label} in {locality}." if locality else f"{label}."


def clean_site_title(raw: str) -> str:
    s = " ".join((raw or "").split())
    for sep in ("|", " - ", " \u2013 ", " \u2014 "):
        parts = [p.strip() for p in s.split(sep) if p.strip()]
        if len(parts) >= 2:
            return parts[0]
    return s


def is_bad_site_title(raw: str) -> bool:
    t = normalize_text(raw)
    return not t or t in _BAD_SITE_TITLES or len(t) <= 3


def is_marketing_fluff(text: str) -> bool:
    d = (text or "").lower()
    return any(m in d for m in _FLUFF_MARKERS)


def clamp_description(text: str) -> str:
    s = " ".join((text or "").split())
    if len(s) <= MAX_DESCRIPTION:
        return s
    s = s[:MAX_DESCRIPTION]
    # End on a sentence boundary when one is reasonably far in
    last = s.rfind(".")
    return s[: last + 1] if last >= 80 else s.rstrip()


def refine_with_website(title: str, description: str, meta: Optional[WebsiteMeta]) -> Tuple[str, str]:
    if meta is None:
        return title, description

    if is_generic_text(title) or looks_like_street_address(title):
        for raw in (meta.og_title, meta.site_title):
            candidate = clean_site_title(raw or "")
            if candidate and not is_bad_site_title(candidate) and not looks_like_street_address(candidate):
                title = candidate
                break

    raw_desc = (meta.meta_description or meta.og_description or "").strip()
    if raw_desc and not is_marketing_fluff(raw_desc) and not looks_like_street_address(raw_desc):
        clamped = clamp_description(raw_desc)
        if len(clamped) >= MIN_META_DESCRIPTION:
            description = clamped

    return title, description


def synthesize(place: Place, meta: Optional[WebsiteMeta] = None) -> Tuple[str, str]:
    title = build_title(place) or "Pinned location"
    description = build_description(place)
    return refine_with_website(title, description, meta)

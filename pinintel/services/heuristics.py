"""
Text predicates shared by the resolver, the image waterfall and the text
synthesizer.

Every call site asks the same questions about a name or a hint ("is this
generic?", "is this really a street address?"), so the answers live here as
plain functions and are computed once per request into a PlaceQueryContext.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from pinintel.core.contracts import Place

# ──────────────────────────────────────────────────────────────
# Vocabulary
# ──────────────────────────────────────────────────────────────

GENERIC_SENTINELS = frozenset({"location", "unknown place", "pinned location", "nature spot"})

UNKNOWN_PLACE = "Unknown Place"

STREET_TOKENS = frozenset(
    {
        "street",
        "st",
        "road",
        "rd",
        "ave",
        "avenue",
        "crescent",
        "lane",
        "drive",
        "boulevard",
        "blvd",
        "way",
        "highway",
    }
)

_ROAD_KEYWORDS = frozenset({"road", "rd", "highway", "hwy", "street", "st", "avenue", "ave"})

# Tokens that never identify a venue on their own
_NAME_STOP_WORDS = frozenset(
    {"the", "and", "of", "at", "on", "in", "de", "la", "le", "los", "las", "des", "das", "die", "der"}
)

_GENERIC_NEAR = re.compile(r"^(place near|place in) .+$")
_CATEGORY_NEAR = re.compile(r"^([a-z_]+|guest house|place of worship|nature spot) near .+$")
_ROAD_NUMBER = re.compile(r"^[A-Z]?\d{1,4}$")
_DIGIT = re.compile(r"\d")
_WORDS = re.compile(r"[a-z0-9]+")


def normalize_text(text: str | None) -> str:
    """Lowercase, accent-folded, single-spaced."""
    s = unicodedata.normalize("NFKD", text or "")
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return " ".join(s.lower().split())


def _tokens(text: str | None) -> list[str]:
    return _WORDS.findall(normalize_text(text))


def similarity_score(a: str | None, b: str | None) -> float:
    """1.0 equal, 0.85 containment, else token Jaccard."""
    aa = " ".join(_tokens(a))
    bb = " ".join(_tokens(b))
    if not aa or not bb:
        return 0.0
    if aa == bb:
        return 1.0
    if aa in bb or bb in aa:
        return 0.85
    ta, tb = set(aa.split()), set(bb.split())
    inter = len(ta & tb)
    union = len(ta | tb)
    return inter / union if union else 0.0


# ──────────────────────────────────────────────────────────────
# Predicates
# ──────────────────────────────────────────────────────────────

def is_generic_text(text: str | None) -> bool:
    t = normalize_text(text)
    if not t:
        return True
    if t in GENERIC_SENTINELS:
        return True
    if _GENERIC_NEAR.match(t):
        return True
    # "<category> near <locality>" is what build_title produces for unnamed pins
    return bool(_CATEGORY_NEAR.match(t))


def looks_like_street_address(text: str | None) -> bool:
    t = normalize_text(text)
    if not t or not _DIGIT.search(t):
        return False
    return any(tok in STREET_TOKENS for tok in _tokens(t))


def is_unknown_sentinel(name: str | None) -> bool:
    n = (name or "").strip()
    return not n or n.lower() == UNKNOWN_PLACE.lower()


def is_risky_short_brand(name: str | None) -> bool:
    n = (name or "").strip()
    if not n or len(n) > 4:
        return False
    # "KFC", "BP"; a bare number is not a brand
    return n == n.upper() and any(ch.isalpha() for ch in n)


def is_road_like_name(name: str | None) -> bool:
    n = (name or "").strip()
    if not n:
        return False
    if _ROAD_NUMBER.match(n.upper()) and len(n) <= 6:
        return True
    return any(tok in _ROAD_KEYWORDS for tok in _tokens(n))


def is_coordinate_label(text: str | None) -> bool:
    return bool(re.match(r"^-?\d+(\.\d+)?,\s*-?\d+(\.\d+)?$", (text or "").strip()))


def category_leaf(category: str | None) -> str:
    c = (category or "").strip()
    if not c:
        return ""
    return c.split(".")[-1].replace("_", " ").strip()


def has_word(text: str | None, word: str) -> bool:
    """Whole-word match on normalized tokens ("art" is not in "party")."""
    return bool(word) and word in _tokens(text)


def name_token(name: str | None) -> str:
    """Primary token of a name, used to check a website's own title."""
    for tok in _tokens(name):
        if len(tok) >= 3 and tok not in _NAME_STOP_WORDS and not tok.isdigit():
            return tok
    return ""


def is_knowledge_graph_eligible(place: Place) -> bool:
    """Named, non-road, non-coordinate places can be cross-matched."""
    name = (place.name or "").strip()
    if len(name) < 3 or is_unknown_sentinel(name):
        return False
    if place.source == "unknown" or is_coordinate_label(name):
        return False
    if is_generic_text(name) or looks_like_street_address(name):
        return False
    return not is_road_like_name(name)


# ──────────────────────────────────────────────────────────────
# Per-request query context
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlaceQueryContext:
    name: str
    locality: str
    category: str
    category_leaf: str
    hint: Optional[str]
    is_generic_hint: bool
    looks_like_address: bool
    is_risky_brand: bool
    # Name used for web search: the hint when it says something specific
    search_name: str

    @property
    def search_name_is_generic(self) -> bool:
        return is_generic_text(self.search_name) or is_unknown_sentinel(self.search_name)

    @property
    def search_name_looks_like_address(self) -> bool:
        return looks_like_street_address(self.search_name)


def pick_locality(place: Place) -> str:
    return (place.locality or place.region or place.country or "").strip()


def build_query_context(place: Place, hint: str | None) -> PlaceQueryContext:
    name = (place.name or "").strip()
    hint_clean = (hint or "").strip() or None
    generic_hint = is_generic_text(hint_clean)
    return PlaceQueryContext(
        name=name,
        locality=pick_locality(place),
        category=(place.category or "").strip(),
        category_leaf=category_leaf(place.category),
        hint=hint_clean,
        is_generic_hint=generic_hint,
        looks_like_address=looks_like_street_address(name),
        is_risky_brand=is_risky_short_brand(name),
        search_name=name if generic_hint else (hint_clean or name),
    )

from __future__ import annotations

import hashlib

# 5 decimal digits ~ 1.1 m. Coarser buckets start merging neighbouring venues.
BUCKET_DECIMALS = 5


def sha256_hex(data: bytes | str, length: int = 64) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()[:length]


def coord_bucket(lat: float, lon: float, decimals: int = BUCKET_DECIMALS) -> str:
    """Fixed-precision coordinate bucket: near-identical pins share one key."""
    return f"{round(lat, decimals):.{decimals}f}:{round(lon, decimals):.{decimals}f}"


def image_cache_key(lat: float, lon: float) -> str:
    """Storage folder for a pin's re-hosted images."""
    return "pinintel_" + coord_bucket(lat, lon).replace(":", "_").replace("-", "m")


def client_key(user_id: str | None, client_ip: str | None, user_agent: str | None) -> str:
    """
    Quota identity for a caller.

    Authenticated users are keyed by a hash of their id. Anonymous callers are
    keyed by IP plus a short hash of the user agent; the raw UA is never used
    as a key so cardinality stays bounded.
    """
    uid = (user_id or "").strip()
    if uid:
        return f"u:{sha256_hex(uid, 24)}"
    ip = (client_ip or "").strip() or "unknown"
    ua_hash = sha256_hex((user_agent or "").strip(), 12)
    return f"a:{ip}:{ua_hash}"

from __future__ import annotations

import ipaddress
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

_TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "gclid",
        "fbclid",
        "srsltid",
    }
)

_PRIVATE_HOSTNAMES = frozenset({"localhost", "localhost.localdomain", "ip6-localhost"})


def host_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def is_public_http_url(url: str | None) -> bool:
    """
    http(s) URL whose host is not obviously private.

    Literal IPs are checked against private/loopback/link-local ranges; DNS is
    not resolved.
    """
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    host = (parts.hostname or "").lower()
    if not host or host in _PRIVATE_HOSTNAMES or host.endswith(".local") or host.endswith(".internal"):
        return False
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return True
    return not (ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_unspecified)


def normalize_website_url(raw: str | None) -> Optional[str]:
    """Add a scheme if missing, drop the fragment and tracking params."""
    s = (raw or "").strip()
    if not s:
        return None
    if not s.lower().startswith(("http://", "https://")):
        s = "https://" + s
    try:
        parts = urlsplit(s)
    except ValueError:
        return None
    if not parts.hostname:
        return None
    query = urlencode([(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _TRACKING_PARAMS])
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def resolve_url(href: str | None, base: str) -> Optional[str]:
    h = (href or "").strip()
    if not h or h.lower().startswith(("data:", "javascript:", "mailto:")):
        return None
    try:
        return urljoin(base, h)
    except ValueError:
        return None

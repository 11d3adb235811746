from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import httpx

from pinintel.core.errors import ProviderError

logger = logging.getLogger(__name__)


async def fetch_json(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    *,
    timeout_s: float,
    **kwargs: Any,
) -> Any:
    """
    One bounded request -> parsed JSON.

    Transport errors, non-2xx statuses and undecodable bodies all surface as
    ProviderError so callers have a single thing to catch.
    """
    try:
        resp = await client.request(method, url, timeout=timeout_s, **kwargs)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "%s_http_error status=%d body=%s",
            provider,
            exc.response.status_code,
            exc.response.text[:300],
        )
        raise ProviderError(provider, f"HTTP {exc.response.status_code}") from exc
    except httpx.TimeoutException as exc:
        logger.warning("%s_timeout url=%s", provider, url)
        raise ProviderError(provider, "timed out") from exc
    except httpx.HTTPError as exc:
        logger.warning("%s_transport_error err=%r", provider, exc)
        raise ProviderError(provider, f"transport error: {exc!r}") from exc
    except ValueError as exc:
        raise ProviderError(provider, "malformed JSON payload") from exc


def obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def records(value: Any) -> list[dict[str, Any]]:
    """The dict entries of a JSON array; anything else in it is skipped."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


@contextmanager
def parsing(provider: str) -> Iterator[None]:
    """Payloads of an unexpected shape surface as ProviderError."""
    try:
        yield
    except (AttributeError, TypeError, KeyError, ValueError) as exc:
        logger.warning("%s_malformed_payload err=%r", provider, exc)
        raise ProviderError(provider, "malformed payload") from exc

# pyright: standard

"""Networking helpers for fetching the conversion engine with retries/backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Iterable
from urllib.parse import urlsplit

import httpx

__all__ = [
    "BackoffError",
    "download_with_backoff",
    "redact_url_for_logs",
]

logger = logging.getLogger(__name__)

_DEFAULT_STATUS_FORCELIST = frozenset({429, 500, 502, 503, 504})


class BackoffError(RuntimeError):
    """Raised when network retries are exhausted."""


async def download_with_backoff(
    client: httpx.AsyncClient,
    url: str,
    destination: Path,
    *,
    retries: int = 3,
    initial_backoff: float = 0.5,
    max_backoff: float = 4.0,
    retry_status: Iterable[int] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> Path:
    """
    Stream *url* into *destination*, retrying transient failures with exponential backoff.

    The payload is written to a ``.part`` sibling first and renamed only once the
    body has been fully received, so a failed download never leaves a truncated file
    at *destination*.
    """

    retry_codes = frozenset(retry_status) if retry_status else _DEFAULT_STATUS_FORCELIST
    backoff = max(0.1, initial_backoff)
    upper_backoff = max(0.1, max_backoff)
    sleep_impl = sleep or asyncio.sleep
    partial = destination.with_name(destination.name + ".part")
    last_network_error: httpx.HTTPError | None = None
    last_status: int | None = None

    attempts = max(0, retries) + 1
    for attempt in range(attempts):
        try:
            async with client.stream("GET", url, follow_redirects=True) as response:
                status = response.status_code
                if status in retry_codes:
                    last_status = status
                    delay = _retry_delay_from_response(response, backoff, upper_backoff)
                else:
                    if status >= 400:
                        raise BackoffError(f"Download failed with status {status}")
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    with partial.open("wb") as handle:
                        async for chunk in response.aiter_bytes():
                            handle.write(chunk)
                    partial.replace(destination)
                    return destination
        except httpx.HTTPError as exc:
            last_network_error = exc
            last_status = None
            delay = backoff
            partial.unlink(missing_ok=True)
            logger.debug("download from %s failed: %s", redact_url_for_logs(url), exc)

        if attempt + 1 >= attempts:
            break
        await sleep_impl(delay)
        backoff = min(backoff * 2, upper_backoff)

    if last_status is not None:
        raise BackoffError(f"Download failed with status {last_status}")
    if last_network_error is not None:
        raise last_network_error
    raise BackoffError("Download failed before receiving a response")


def redact_url_for_logs(url: str) -> str:
    """
    Describe an engine download URL as ``host/asset`` for log lines.

    Credentials, ports, query strings and intermediate path segments are dropped so
    signed or token-bearing mirror URLs never reach the logs.
    """

    try:
        parsed = urlsplit(url)
        host = parsed.hostname or ""
    except ValueError:
        return "url"
    asset = parsed.path.rstrip("/").rsplit("/", 1)[-1]
    if host and asset:
        return f"{host}/{asset}"
    return host or asset or "url"


def _retry_delay_from_response(response: httpx.Response, fallback: float, cap: float) -> float:
    """Compute the delay for the next retry using Retry-After when available."""

    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            delay = float(retry_after)
        except ValueError:
            delay = fallback
    else:
        delay = fallback
    return max(0.1, min(delay, cap))

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import httpx
from loguru import logger


def from_epoch_ms(ms: int) -> datetime:
    """Convert an epoch-milliseconds timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def format_local(ms: int, fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Render an epoch-milliseconds timestamp in the local timezone."""
    return from_epoch_ms(ms).astimezone().strftime(fmt)


def wrap_every(text: str, width: int) -> str:
    """Insert a line break after every `width` characters (for narrow table cells)."""
    if width <= 0:
        return text
    return "\n".join(text[i : i + width] for i in range(0, len(text), width))


def send_request(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    headers: Optional[dict] = None,
) -> httpx.Response:
    """Issue a single HTTP request. No retries and no status check.

    Transport errors propagate as httpx.HTTPError; the caller decides what an
    unexpected status means.
    """
    logger.debug("{} {}", method, url)
    resp = client.request(method, url, headers=headers)
    logger.debug("{} {} -> {}", method, url, resp.status_code)
    return resp


async def async_send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: Optional[dict] = None,
) -> httpx.Response:
    """Async counterpart of send_request."""
    logger.debug("{} {}", method, url)
    resp = await client.request(method, url, headers=headers)
    logger.debug("{} {} -> {}", method, url, resp.status_code)
    return resp

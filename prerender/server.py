"""Readiness probe for the server that hosts the site being rendered."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

LOGGER = logging.getLogger(__name__)


class ServerUnavailableError(RuntimeError):
    """The base URL did not answer before the probe timed out."""


async def wait_for_server(
    base_url: str,
    *,
    timeout: float = 30.0,
    interval: float = 0.5,
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Poll ``base_url`` until it returns any HTTP response.

    Args:
        base_url: URL of the site root.
        timeout: Seconds to keep trying.
        interval: Seconds between attempts.
        client: Optional client to reuse (mainly for tests).

    Returns:
        The HTTP status code of the first response.

    Raises:
        ServerUnavailableError: If no response arrived within ``timeout``.
    """
    owns_client = client is None
    http = client or httpx.AsyncClient(follow_redirects=True, timeout=max(interval, 1.0))
    deadline = time.monotonic() + timeout
    last_error: Optional[Exception] = None

    try:
        while True:
            try:
                response = await http.get(base_url)
                LOGGER.info("Server at %s is reachable (HTTP %d)", base_url, response.status_code)
                return response.status_code
            except httpx.HTTPError as exc:
                last_error = exc
                LOGGER.debug("Server at %s not reachable yet: %s", base_url, exc)

            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(interval)
    finally:
        if owns_client:
            await http.aclose()

    raise ServerUnavailableError(
        f"Server at {base_url} did not respond within {timeout:.1f}s: {last_error}"
    )

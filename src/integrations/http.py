"""Shared outbound HTTP helpers with bounded timeouts."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.config import settings

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out. Please try again."


class RequestTimeoutError(Exception):
    """Raised in place of any transport-level timeout."""

    def __init__(self, message: str = TIMEOUT_MESSAGE) -> None:
        super().__init__(message)


class CatalogError(Exception):
    """Raised when an upstream catalog returns an unusable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.http_timeout_seconds)


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    **kwargs: Any,
) -> Any:
    """Send a request and decode the JSON body.

    Timeouts become ``RequestTimeoutError``; non-2xx statuses become
    ``CatalogError`` with a message naming *service*.
    """
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        logger.warning("%s request timed out: %s %s", service, method, url)
        raise RequestTimeoutError from exc

    if resp.status_code == 401:
        msg = f"{service} credentials are invalid"
        raise CatalogError(msg, status_code=401)
    if resp.status_code == 404:
        msg = f"{service} resource not found"
        raise CatalogError(msg, status_code=404)
    if resp.status_code == 429:
        msg = f"{service} rate limit exceeded. Please try again later."
        raise CatalogError(msg, status_code=429)
    if resp.status_code >= 400:
        msg = f"{service} API error: {resp.status_code} {resp.text[:200]}"
        raise CatalogError(msg, status_code=resp.status_code)

    try:
        return resp.json()
    except ValueError as exc:
        msg = f"{service} returned a non-JSON response"
        raise CatalogError(msg, status_code=resp.status_code) from exc

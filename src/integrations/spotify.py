"""Spotify Web API client (client-credentials flow) for track lookups."""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from src.config import settings
from src.integrations.http import CatalogError, default_timeout, request_json
from src.recommendations.models import TrackItem

logger = logging.getLogger(__name__)

SPOTIFY_BASE_URL = "https://api.spotify.com/v1"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
DEFAULT_EXPIRES_IN = 3600
REFRESH_SKEW_SECONDS = 5 * 60


@dataclass(frozen=True)
class _CachedToken:
    value: str
    expires_at: float


class TokenCache:
    """Access-token cache with expiry.

    The cached token is replaced as a single immutable record, so concurrent
    refreshes can race without corrupting it: the last writer wins and the
    worst case is one redundant token fetch.
    """

    def __init__(self, skew_seconds: float = REFRESH_SKEW_SECONDS) -> None:
        self._token: _CachedToken | None = None
        self._skew = skew_seconds

    def get(self) -> str | None:
        """Return the cached token unless it expires within the skew window."""
        token = self._token
        if token is None or token.expires_at <= time.time() + self._skew:
            return None
        return token.value

    def set(self, value: str, expires_in: float) -> None:
        self._token = _CachedToken(value=value, expires_at=time.time() + expires_in)

    def invalidate(self) -> None:
        self._token = None


class SpotifyClient:
    """Track search against the Spotify catalog.

    Singleton accessed via ``SpotifyClient.get()``. Tests construct their own
    instance with an explicit ``TokenCache``.
    """

    _instance: SpotifyClient | None = None

    def __init__(self, client_id: str, client_secret: str, token_cache: TokenCache) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._tokens = token_cache

    @classmethod
    def get(cls) -> SpotifyClient:
        """Return the shared client built from settings."""
        if cls._instance is None:
            settings.require("spotify_client_id", "spotify_client_secret")
            cls._instance = cls(
                settings.spotify_client_id, settings.spotify_client_secret, TokenCache()
            )
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        cached = self._tokens.get()
        if cached:
            return cached

        credentials = base64.b64encode(
            f"{self._client_id}:{self._client_secret}".encode()
        ).decode()
        data = await request_json(
            client,
            "POST",
            SPOTIFY_TOKEN_URL,
            service="Spotify",
            data={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {credentials}"},
        )
        token = data.get("access_token")
        if not token:
            msg = "Spotify token response did not include an access token"
            raise CatalogError(msg)
        self._tokens.set(token, data.get("expires_in") or DEFAULT_EXPIRES_IN)
        logger.info("Fetched new Spotify access token")
        return token

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=default_timeout()) as client:
            for attempt in range(2):
                token = await self._access_token(client)
                try:
                    return await request_json(
                        client,
                        "GET",
                        f"{SPOTIFY_BASE_URL}{path}",
                        service="Spotify",
                        params=params,
                        headers={
                            "Authorization": f"Bearer {token}",
                            "Accept": "application/json",
                        },
                    )
                except CatalogError as exc:
                    # Expired or revoked token: drop it and retry once.
                    if exc.status_code == 401 and attempt == 0:
                        self._tokens.invalidate()
                        continue
                    raise
        msg = "Spotify request failed after refreshing the access token"
        raise CatalogError(msg, status_code=401)

    async def search_tracks(self, query: str, limit: int = 20) -> list[TrackItem]:
        """Search tracks by free text (title, artist, soundtrack name)."""
        data = await self._get(
            "/search", {"q": query, "type": "track", "limit": limit, "market": "US"}
        )
        items = (data.get("tracks") or {}).get("items") or []
        return [_track(item) for item in items if item.get("id")]


def _track(item: dict[str, Any]) -> TrackItem:
    album = item.get("album") or {}
    release_date = album.get("release_date") or ""
    year = release_date.split("-")[0]
    return TrackItem(
        id=item["id"],
        name=item.get("name") or "",
        artists=[a["name"] for a in item.get("artists") or [] if a.get("name")],
        album=album.get("name"),
        release_year=int(year) if year.isdigit() else None,
        preview_url=item.get("preview_url"),
        popularity=item.get("popularity"),
    )

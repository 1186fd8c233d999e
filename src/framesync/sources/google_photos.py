"""Photos from a Google Photos library.

Uses the Photos Library REST API with OAuth tokens stored per source. Tokens
are refreshed against Google's token endpoint when they are about to expire;
acquiring the initial tokens happens outside this module.

Config keys:
- album_ids: Albums to sync (default: the whole library)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from framesync.sources.base import Album, PhotoSource, SourceError, SourcePhoto

if TYPE_CHECKING:
    from framesync.store.database import Database
    from framesync.store.models import OAuthToken, Source

logger = logging.getLogger(__name__)

API_BASE = "https://photoslibrary.googleapis.com/v1/"
TOKEN_URL = "https://oauth2.googleapis.com/token"
PROVIDER = "google"

ALBUM_PAGE_SIZE = 50
MEDIA_PAGE_SIZE = 100

# Refresh tokens this long before they expire
EXPIRY_MARGIN = timedelta(seconds=60)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are stored in UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _json_object(response: httpx.Response, what: str) -> dict[str, Any]:
    """Decode a JSON object body.

    Raises:
        SourceError: If the body is not a JSON object.
    """
    try:
        data = response.json()
    except ValueError as e:
        raise SourceError(f"{what}: invalid JSON response") from e
    if not isinstance(data, dict):
        raise SourceError(f"{what}: unexpected response")
    return data


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GooglePhotosSource(PhotoSource):
    """Source listing and downloading media items from Google Photos."""

    def __init__(
        self,
        record: Source,
        on_synced: Callable[[int], None] | None = None,
        *,
        db: Database,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the source.

        Args:
            record: Source row.
            on_synced: Called with the source id by ``mark_synced``.
            db: Database holding the source's OAuth tokens.
            client_id: OAuth client id, needed to refresh tokens.
            client_secret: OAuth client secret, needed to refresh tokens.
            http_client: Client to use instead of a new one.
            timeout: Request timeout in seconds.
        """
        super().__init__(record, on_synced)
        self._db = db
        self._client_id = client_id
        self._client_secret = client_secret
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        """Close the HTTP client if this source created it."""
        if self._owns_client:
            self._client.close()

    @property
    def album_ids(self) -> list[str]:
        return list(self.config.get("album_ids") or [])

    # === Authentication ===

    def _access_token(self) -> str:
        """Current access token, refreshed if it is about to expire.

        Raises:
            SourceError: If no token is stored or the refresh fails.
        """
        token = self._db.get_token(self.id, PROVIDER)
        if token is None:
            raise SourceError(f"No OAuth tokens for source {self.name}. Please authenticate first.")

        if token.expires_at is not None and _aware(token.expires_at) <= datetime.now(UTC) + EXPIRY_MARGIN:
            token = self._refresh(token)
        return token.access_token

    def _refresh(self, token: OAuthToken) -> OAuthToken:
        if not self._client_id or not self._client_secret:
            raise SourceError("Google OAuth credentials not configured")
        if not token.refresh_token:
            raise SourceError(f"Token of source {self.name} expired and cannot be refreshed")

        logger.info("Refreshing Google OAuth token for source %s", self.id)
        try:
            response = self._client.post(
                TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": token.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise SourceError(f"Token refresh failed: {e}") from e
        if response.status_code >= 400:
            raise SourceError(f"Token refresh failed: HTTP {response.status_code}")

        payload = _json_object(response, "Token refresh failed")
        access_token = payload.get("access_token")
        if not access_token:
            raise SourceError("Token refresh failed: no access token in response")
        expires_in = _int_or_none(payload.get("expires_in"))
        return self._db.save_token(
            self.id,
            PROVIDER,
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in) if expires_in else None,
            token_type=payload.get("token_type", "Bearer"),
        )

    # === API calls ===

    def _api(self, method: str, endpoint: str, **kwargs: Any) -> dict[str, Any]:
        """Call the Photos Library API.

        Raises:
            SourceError: On transport errors and error responses.
        """
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            response = self._client.request(method, API_BASE + endpoint, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise SourceError(f"Google Photos API request failed: {e}") from e
        if response.status_code >= 400:
            raise SourceError(
                f"Google Photos API error: HTTP {response.status_code} {response.reason_phrase}"
            )
        return _json_object(response, "Google Photos API error")

    def test_connection(self) -> bool:
        """Fetch one album to check credentials and connectivity."""
        try:
            self._api("GET", "albums", params={"pageSize": 1})
            return True
        except SourceError as e:
            logger.error("Google Photos connection test failed for source %s: %s", self.id, e)
            return False

    def list_albums(self) -> list[Album]:
        """All albums of the library, following pagination."""
        albums: list[Album] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": ALBUM_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = self._api("GET", "albums", params=params)
            for album in data.get("albums", []):
                albums.append(
                    Album(
                        id=album["id"],
                        name=album.get("title", ""),
                        photo_count=_int_or_none(album.get("mediaItemsCount")),
                    )
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info("Listed %d Google Photos albums for source %s", len(albums), self.id)
        return albums

    def list_photos(self, album_id: str | None = None) -> list[SourcePhoto]:
        """Photos of the selected albums in API order, or of the whole library.

        A photo present in several albums is listed once.
        """
        album_ids = [album_id] if album_id else self.album_ids
        photos: list[SourcePhoto] = []
        seen: set[str] = set()

        if album_ids:
            items = (item for aid in album_ids for item in self._album_items(aid))
        else:
            items = self._library_items()

        for item in items:
            if not item.get("mimeType", "").startswith("image/") or item["id"] in seen:
                continue
            seen.add(item["id"])
            metadata = item.get("mediaMetadata", {})
            photos.append(
                SourcePhoto(
                    id=item["id"],
                    name=item.get("filename") or item["id"],
                    path=item["baseUrl"],
                    mime_type=item["mimeType"],
                    width=_int_or_none(metadata.get("width")),
                    height=_int_or_none(metadata.get("height")),
                    created_at=_parse_time(metadata.get("creationTime")),
                )
            )

        logger.info("Listed %d Google Photos for source %s", len(photos), self.id)
        return photos

    def _library_items(self) -> Iterator[dict[str, Any]]:
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": MEDIA_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            data = self._api("GET", "mediaItems", params=params)
            yield from data.get("mediaItems", [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return

    def _album_items(self, album_id: str) -> Iterator[dict[str, Any]]:
        page_token: str | None = None
        while True:
            body: dict[str, Any] = {"albumId": album_id, "pageSize": MEDIA_PAGE_SIZE}
            if page_token:
                body["pageToken"] = page_token
            data = self._api("POST", "mediaItems:search", json=body)
            yield from data.get("mediaItems", [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return

    def download(self, photo: SourcePhoto, dest_dir: Path) -> Path:
        """Download the original bytes (``=d`` suffix on the base URL)."""
        target = Path(dest_dir) / Path(photo.name).name
        try:
            with self._client.stream("GET", f"{photo.path}=d") as response:
                if response.status_code >= 400:
                    raise SourceError(
                        f"Failed to download {photo.name}: HTTP {response.status_code}"
                    )
                with target.open("wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise SourceError(f"Failed to download {photo.name}: {e}") from e
        except OSError as e:
            raise SourceError(f"Cannot write {target}: {e}") from e
        return target

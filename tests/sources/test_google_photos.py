"""Tests for the Google Photos source."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from framesync.core.types import SourceType
from framesync.sources.base import SourceError, SourcePhoto
from framesync.sources.google_photos import API_BASE, PROVIDER, TOKEN_URL, GooglePhotosSource
from framesync.store.database import Database


def media_item(item_id: str, mime: str = "image/jpeg") -> dict:
    return {
        "id": item_id,
        "filename": f"{item_id}.jpg",
        "baseUrl": f"https://lh3.example.com/{item_id}",
        "mimeType": mime,
        "mediaMetadata": {"width": "4032", "height": "3024", "creationTime": "2024-03-01T10:00:00Z"},
    }


class FakeGoogle:
    """Request handler standing in for the Google APIs."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.library_pages = [
            {"mediaItems": [media_item("p1"), media_item("v1", "video/mp4")], "nextPageToken": "t2"},
            {"mediaItems": [media_item("p2")]},
        ]
        self.albums = {
            "alb1": [media_item("p1"), media_item("p3")],
            "alb2": [media_item("p3"), media_item("p4")],
        }
        self.refresh_status = 200
        self.refresh_payload: dict = {"access_token": "fresh", "expires_in": 3600}
        self.api_html: str | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == TOKEN_URL:
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status)
            return httpx.Response(200, json=self.refresh_payload)

        if request.headers.get("Authorization") not in ("Bearer valid", "Bearer fresh") and url.startswith(API_BASE):
            return httpx.Response(401)
        if self.api_html is not None and url.startswith(API_BASE):
            return httpx.Response(200, text=self.api_html)

        if url.startswith(API_BASE + "mediaItems:search"):
            body = json.loads(request.content)
            return httpx.Response(200, json={"mediaItems": self.albums[body["albumId"]]})
        if url.startswith(API_BASE + "mediaItems"):
            page = 1 if request.url.params.get("pageToken") == "t2" else 0
            return httpx.Response(200, json=self.library_pages[page])
        if url.startswith(API_BASE + "albums"):
            return httpx.Response(
                200, json={"albums": [{"id": "alb1", "title": "Trip", "mediaItemsCount": "2"}]}
            )
        if url.startswith("https://lh3.example.com/"):
            return httpx.Response(200, content=b"original bytes")
        return httpx.Response(404)


@pytest.fixture
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def make_source(db: Database, google: FakeGoogle):
    """Factory for a Google Photos source over the fake API."""
    clients: list[httpx.Client] = []

    def _make(config: dict | None = None, token: str | None = "valid", **token_kwargs) -> GooglePhotosSource:
        record = db.create_source("Cloud", SourceType.GOOGLE_PHOTOS, config or {})
        if token is not None:
            db.save_token(record.id, PROVIDER, token, **token_kwargs)
        client = httpx.Client(transport=httpx.MockTransport(google))
        clients.append(client)
        return GooglePhotosSource(
            record,
            db=db,
            client_id="client",
            client_secret="secret",
            http_client=client,
        )

    yield _make
    for client in clients:
        client.close()


class TestListing:
    """Tests for album and photo listing."""

    def test_library_pages_and_filters_videos(self, make_source, google: FakeGoogle) -> None:
        """Should follow pagination and skip non-images."""
        source = make_source()

        photos = source.list_photos()

        assert [p.id for p in photos] == ["p1", "p2"]
        assert photos[0].width == 4032
        assert photos[0].created_at == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)
        assert photos[0].path == "https://lh3.example.com/p1"

    def test_albums_deduplicate(self, make_source) -> None:
        """A photo in several selected albums should be listed once."""
        source = make_source({"album_ids": ["alb1", "alb2"]})
        assert [p.id for p in source.list_photos()] == ["p1", "p3", "p4"]

    def test_explicit_album(self, make_source) -> None:
        """An album argument overrides the configured selection."""
        source = make_source({"album_ids": ["alb1"]})
        assert [p.id for p in source.list_photos(album_id="alb2")] == ["p3", "p4"]

    def test_list_albums(self, make_source) -> None:
        """Should map albums with counts."""
        albums = make_source().list_albums()
        assert [(a.id, a.name, a.photo_count) for a in albums] == [("alb1", "Trip", 2)]

    def test_api_error_raises(self, make_source) -> None:
        """Error responses should raise SourceError."""
        source = make_source(token="revoked")
        with pytest.raises(SourceError, match="401"):
            source.list_photos()
        assert source.test_connection() is False

    def test_non_json_response_raises(self, make_source, google: FakeGoogle) -> None:
        """An HTML page answered by a proxy should raise SourceError."""
        google.api_html = "<html>proxy login</html>"
        source = make_source()

        with pytest.raises(SourceError, match="invalid JSON"):
            source.list_photos()
        assert source.test_connection() is False

    def test_missing_token(self, make_source) -> None:
        """A source without tokens cannot be listed."""
        source = make_source(token=None)
        with pytest.raises(SourceError, match="authenticate"):
            source.list_photos()


class TestTokenRefresh:
    """Tests for OAuth token refresh."""

    def test_refreshes_expired_token(self, make_source, google: FakeGoogle, db: Database) -> None:
        """An expiring token should be refreshed and stored."""
        source = make_source(
            token="stale",
            refresh_token="refresh",
            expires_at=datetime.now(UTC) + timedelta(seconds=10),
        )

        assert source.test_connection() is True

        refresh = google.requests[0]
        assert str(refresh.url) == TOKEN_URL
        assert b"grant_type=refresh_token" in refresh.content
        stored = db.get_token(source.id, PROVIDER)
        assert stored.access_token == "fresh"
        assert stored.refresh_token == "refresh"

    def test_valid_token_not_refreshed(self, make_source, google: FakeGoogle) -> None:
        """A token far from expiry should be used as is."""
        source = make_source(expires_at=datetime.now(UTC) + timedelta(hours=1))
        source.list_albums()
        assert all(str(r.url) != TOKEN_URL for r in google.requests)

    def test_refresh_failure(self, make_source, google: FakeGoogle) -> None:
        """A failed refresh should raise SourceError."""
        google.refresh_status = 400
        source = make_source(
            token="stale",
            refresh_token="refresh",
            expires_at=datetime.now(UTC) - timedelta(minutes=5),
        )
        with pytest.raises(SourceError, match="refresh failed"):
            source.list_albums()

    def test_refresh_without_access_token(self, make_source, google: FakeGoogle, db: Database) -> None:
        """A refresh answer without access token should raise and keep the old token."""
        google.refresh_payload = {"error": "invalid_grant"}
        source = make_source(
            token="stale",
            refresh_token="refresh",
            expires_at=datetime.now(UTC) - timedelta(minutes=5),
        )

        with pytest.raises(SourceError, match="no access token"):
            source.list_albums()
        assert db.get_token(source.id, PROVIDER).access_token == "stale"

    def test_no_refresh_token(self, make_source) -> None:
        """An expired token without refresh token cannot be used."""
        source = make_source(token="stale", expires_at=datetime.now(UTC) - timedelta(minutes=5))
        with pytest.raises(SourceError, match="cannot be refreshed"):
            source.list_albums()


class TestDownload:
    """Tests for downloads."""

    def test_download_original(self, make_source, google: FakeGoogle, tmp_path: Path) -> None:
        """Should request the original bytes and write them."""
        source = make_source()
        photo = SourcePhoto(
            id="p1", name="p1.jpg", path="https://lh3.example.com/p1", mime_type="image/jpeg"
        )

        path = source.download(photo, tmp_path)

        assert path == tmp_path / "p1.jpg"
        assert path.read_bytes() == b"original bytes"
        assert str(google.requests[-1].url) == "https://lh3.example.com/p1=d"

    def test_download_error(self, make_source, tmp_path: Path) -> None:
        """An error response should raise SourceError."""
        source = make_source()
        photo = SourcePhoto(id="x", name="x.jpg", path="https://elsewhere.example.com/x", mime_type="image/jpeg")
        with pytest.raises(SourceError, match="404"):
            source.download(photo, tmp_path)

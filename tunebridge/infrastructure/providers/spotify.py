import logging
from typing import Any, Callable, Dict, List, Optional

import requests
import spotipy
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOauthError
from urllib3.exceptions import ReadTimeoutError

from tunebridge.domain.entities import (
    AlbumPage, HydratedResource, Kind, MatchCandidate, ResourceRef, Service,
)
from tunebridge.domain.errors import NotFoundError, RateLimited, TransportError

logger = logging.getLogger(__name__)

ALBUM_PAGE_SIZE = 50
# Web API batch limits
TRACKS_BATCH = 50
ALBUMS_BATCH = 20


def _primary_artist(data: Dict[str, Any]) -> Optional[str]:
    artists = data.get('artists') or []
    names = [a.get('name') for a in artists if a.get('name')]
    return names[0] if names else None


def _chunks(items: List[str], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SpotifyCatalog:
    """Spotify catalog backed by spotipy with an app-only (client credentials) token."""

    service = Service.SPOTIFY

    def __init__(self,
                 client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 search_limit: int = 10,
                 market: Optional[str] = None,
                 timeout: float = 10.0,
                 client: Optional[spotipy.Spotify] = None):
        """Initialize Spotify catalog.

        Args:
            client_id: Spotify application client ID
            client_secret: Spotify application client secret
            search_limit: Maximum results requested per search
            market: Optional ISO country code restricting results
            timeout: Transport timeout in seconds
            client: Preconfigured spotipy client, used instead of credentials
        """
        if client is None:
            auth_manager = SpotifyClientCredentials(client_id=client_id, client_secret=client_secret)
            client = spotipy.Spotify(auth_manager=auth_manager, requests_timeout=timeout)
        self._client = client
        self._search_limit = search_limit
        self._market = market

    def _call(self, operation: str, fn: Callable, *args, **kwargs):
        """Run a spotipy call, translating its failures into domain errors."""
        try:
            return fn(*args, **kwargs)
        except spotipy.SpotifyException as e:
            if e.http_status == 404:
                raise NotFoundError(f"Spotify {operation}: not found") from e
            if e.http_status == 429:
                retry_after = (e.headers or {}).get('Retry-After', '1')
                try:
                    retry_after_ms = int(float(retry_after) * 1000)
                except (TypeError, ValueError):
                    retry_after_ms = 1000
                raise RateLimited(retry_after_ms, f"Spotify {operation} rate limited") from e
            raise TransportError(f"Spotify {operation} failed: {e}") from e
        except SpotifyOauthError as e:
            raise TransportError(f"Spotify authentication failed during {operation}: {e}") from e
        except ReadTimeoutError as e:
            logger.warning(f"Read timeout during Spotify {operation}")
            raise TransportError(f"Spotify {operation} timed out") from e
        except requests.RequestException as e:
            raise TransportError(f"Spotify {operation} failed: {e}") from e

    def _to_track(self, data: Dict[str, Any], rank: int = 0,
                  album: Optional[Dict[str, Any]] = None) -> MatchCandidate:
        album = album if album is not None else (data.get('album') or {})
        return MatchCandidate(
            ref=ResourceRef(self.service, Kind.TRACK, data['id']),
            title=data.get('name', ''),
            artist=_primary_artist(data),
            duration_ms=data.get('duration_ms'),
            external_ids=dict(data.get('external_ids') or {}),
            album_title=album.get('name') or None,
            album_external_ids=dict(album.get('external_ids') or {}),
            rank=rank,
        )

    def _to_album(self, data: Dict[str, Any], rank: int = 0) -> MatchCandidate:
        return MatchCandidate(
            ref=ResourceRef(self.service, Kind.ALBUM, data['id']),
            title=data.get('name', ''),
            artist=_primary_artist(data),
            external_ids=dict(data.get('external_ids') or {}),
            rank=rank,
        )

    def _full_albums(self, album_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        found = {}
        for batch in _chunks(album_ids, ALBUMS_BATCH):
            response = self._call('albums', self._client.albums, batch, market=self._market)
            for album in (response or {}).get('albums') or []:
                if album and album.get('id'):
                    found[album['id']] = album
        return found

    def _full_tracks(self, track_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        found = {}
        for batch in _chunks(track_ids, TRACKS_BATCH):
            response = self._call('tracks', self._client.tracks, batch, market=self._market)
            for track in (response or {}).get('tracks') or []:
                if track and track.get('id'):
                    found[track['id']] = track
        return found

    def search_albums(self, query: str) -> List[MatchCandidate]:
        results = self._call('album search', self._client.search, query,
                             limit=self._search_limit, type='album', market=self._market)
        items = [i for i in ((results or {}).get('albums') or {}).get('items') or [] if i and i.get('id')]
        if not items:
            return []

        # Search returns simplified albums without UPC/EAN
        full = self._full_albums([i['id'] for i in items])
        return [self._to_album(full.get(item['id'], item), rank=idx) for idx, item in enumerate(items)]

    def search_tracks(self, query: str) -> List[MatchCandidate]:
        results = self._call('track search', self._client.search, query,
                             limit=self._search_limit, type='track', market=self._market)
        items = ((results or {}).get('tracks') or {}).get('items') or []
        return [self._to_track(item, rank=idx) for idx, item in enumerate(items) if item and item.get('id')]

    def get_album(self, album_id: str) -> HydratedResource:
        data = self._call('album lookup', self._client.album, album_id, market=self._market)
        if not data or not data.get('id'):
            raise NotFoundError(f"Spotify album {album_id} not found")
        return self._to_album(data)

    def get_track(self, track_id: str) -> HydratedResource:
        data = self._call('track lookup', self._client.track, track_id, market=self._market)
        if not data or not data.get('id'):
            raise NotFoundError(f"Spotify track {track_id} not found")

        album = data.get('album') or {}
        if album.get('id') and not album.get('external_ids'):
            # The embedded album is simplified and lacks its barcode
            album = self._full_albums([album['id']]).get(album['id'], album)
        return self._to_track(data, album=album)

    def list_album_items(self, album_id: str, cursor: Optional[str] = None) -> AlbumPage:
        """Return one page of album tracks; the cursor is the API's ``next`` URL."""
        if cursor:
            page = self._call('album tracks page', self._client.next, {'next': cursor})
        else:
            page = self._call('album tracks', self._client.album_tracks, album_id,
                              limit=ALBUM_PAGE_SIZE, market=self._market)
        if not page:
            raise NotFoundError(f"Spotify album {album_id} returned no track listing")

        items = [i for i in page.get('items') or [] if i and i.get('id')]
        # Simplified tracks carry no ISRC
        full = self._full_tracks([i['id'] for i in items])
        tracks = tuple(self._to_track(full.get(item['id'], item), rank=idx)
                       for idx, item in enumerate(items))
        return AlbumPage(items=tracks, next_cursor=page.get('next'))

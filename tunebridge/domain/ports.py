from __future__ import annotations

from typing import List, Optional, Protocol

from .entities import AlbumPage, HydratedResource, MatchCandidate, Service


class Catalog(Protocol):
    """Port defining what the resolution engine needs from a streaming catalog.

    Implementations map provider-specific payloads into domain entities and
    translate provider failures into ``TransportError``/``NotFoundError``.
    """

    service: Service

    def search_albums(self, query: str) -> List[MatchCandidate]:
        """Return albums for a free-text query in relevance order."""

    def search_tracks(self, query: str) -> List[MatchCandidate]:
        """Return tracks (or videos) for a free-text query in relevance order."""

    def get_album(self, album_id: str) -> HydratedResource:
        """Return album details. Raises NotFoundError for unknown ids."""

    def get_track(self, track_id: str) -> HydratedResource:
        """Return track (or video) details. Raises NotFoundError for unknown ids."""

    def list_album_items(self, album_id: str, cursor: Optional[str] = None) -> AlbumPage:
        """Return one page of the album's tracks and the cursor for the next one."""


class HttpFetcher(Protocol):
    """Single-hop HTTP GET used to expand short links."""

    def fetch(self, url: str) -> str:
        """Return the URL the request resolves to without following further redirects."""

from typing import Dict, List, Optional

from tunebridge.domain.entities import (
    AlbumPage, HydratedResource, Kind, MatchCandidate, ResourceRef, Service,
)
from tunebridge.domain.errors import NotFoundError


def make_track(service: Service, native_id: str, title: str, artist: Optional[str] = None,
               duration_ms: Optional[int] = None, isrc: Optional[str] = None,
               album_title: Optional[str] = None, album_upc: Optional[str] = None,
               rank: int = 0, kind: Kind = Kind.TRACK) -> MatchCandidate:
    return MatchCandidate(
        ref=ResourceRef(service, kind, native_id),
        title=title,
        artist=artist,
        duration_ms=duration_ms,
        external_ids={'isrc': isrc} if isrc else {},
        album_title=album_title,
        album_external_ids={'upc': album_upc} if album_upc else {},
        rank=rank,
    )


def make_album(service: Service, native_id: str, title: str, artist: Optional[str] = None,
               upc: Optional[str] = None, rank: int = 0) -> MatchCandidate:
    return MatchCandidate(
        ref=ResourceRef(service, Kind.ALBUM, native_id),
        title=title,
        artist=artist,
        external_ids={'upc': upc} if upc else {},
        rank=rank,
    )


class FakeCatalog:
    """In-memory catalog keyed by exact query strings."""

    def __init__(self, service: Service,
                 albums_by_query: Optional[Dict[str, List[MatchCandidate]]] = None,
                 tracks_by_query: Optional[Dict[str, List[MatchCandidate]]] = None,
                 details: Optional[Dict[str, HydratedResource]] = None,
                 album_pages: Optional[Dict[str, List[AlbumPage]]] = None):
        self.service = service
        self.albums_by_query = albums_by_query or {}
        self.tracks_by_query = tracks_by_query or {}
        self.details = details or {}
        self.album_pages = album_pages or {}
        self.album_queries: List[str] = []
        self.track_queries: List[str] = []

    def search_albums(self, query):
        self.album_queries.append(query)
        return list(self.albums_by_query.get(query, []))

    def search_tracks(self, query):
        self.track_queries.append(query)
        return list(self.tracks_by_query.get(query, []))

    def get_album(self, album_id):
        return self._detail(album_id)

    def get_track(self, track_id):
        return self._detail(track_id)

    def _detail(self, native_id):
        detail = self.details.get(native_id)
        if isinstance(detail, Exception):
            raise detail
        if detail is None:
            raise NotFoundError(f"{self.service.value} {native_id} not found")
        return detail

    def list_album_items(self, album_id, cursor=None):
        pages = self.album_pages.get(album_id)
        if pages is None:
            raise NotFoundError(f"{self.service.value} album {album_id} not found")
        index = 0 if cursor is None else int(cursor)
        page = pages[index]
        if isinstance(page, Exception):
            raise page
        return page


def paged(items: List[MatchCandidate], page_size: int) -> List[AlbumPage]:
    """Split items into pages whose cursors are the index of the next page."""
    chunks = [items[i:i + page_size] for i in range(0, len(items), page_size)] or [[]]
    pages = []
    for idx, chunk in enumerate(chunks):
        next_cursor = str(idx + 1) if idx + 1 < len(chunks) else None
        pages.append(AlbumPage(items=tuple(chunk), next_cursor=next_cursor))
    return pages

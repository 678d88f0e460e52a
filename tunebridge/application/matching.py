from __future__ import annotations

import logging
from itertools import islice
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from tunebridge.application.pagination import CatalogPaginator
from tunebridge.domain.entities import (
    NO_MATCH, HydratedResource, Kind, MatchCandidate, MatchResult, ResourceRef,
)
from tunebridge.domain.errors import NotFoundError, TransportError
from tunebridge.domain.normalization import (
    DURATION_TOLERANCE_MS, normalize_barcode, normalize_isrc, titles_equal,
    within_duration_tolerance,
)
from tunebridge.domain.ports import Catalog


logger = logging.getLogger(__name__)

# Editions of one album paged for a track before falling back to track search
MAX_ALBUMS_PAGED = 3


def album_match_strategy(source_title: Optional[str],
                         source_barcodes: Iterable[str],
                         candidate: HydratedResource) -> Optional[str]:
    """Return how ``candidate`` matches the source album, or None.

    A shared UPC/EAN is authoritative; equal normalized titles are the fallback.
    """
    wanted = {normalize_barcode(b) for b in source_barcodes} - {""}
    offered = {normalize_barcode(b) for b in candidate.barcodes} - {""}
    if wanted & offered:
        return "barcode"
    if titles_equal(source_title, candidate.title):
        return "title"
    return None


def album_matches(source: HydratedResource, candidate: HydratedResource) -> bool:
    title = source.title if source.kind == Kind.ALBUM else source.album_title
    return album_match_strategy(title, source.barcodes, candidate) is not None


def track_match_strategy(source: HydratedResource,
                         candidate: HydratedResource,
                         tolerance_ms: int = DURATION_TOLERANCE_MS) -> Optional[str]:
    """Return how ``candidate`` matches the source track, or None.

    Equal ISRCs always match. Otherwise both the duration (within tolerance)
    and the normalized title must agree; neither is enough alone.
    """
    source_isrc = normalize_isrc(source.isrc)
    if source_isrc and source_isrc == normalize_isrc(candidate.isrc):
        return "isrc"
    if (within_duration_tolerance(source.duration_ms, candidate.duration_ms, tolerance_ms)
            and titles_equal(source.title, candidate.title)):
        return "title_duration"
    return None


def track_matches(source: HydratedResource, candidate: HydratedResource,
                  tolerance_ms: int = DURATION_TOLERANCE_MS) -> bool:
    return track_match_strategy(source, candidate, tolerance_ms) is not None


def _build_query(*parts: Optional[str]) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def _in_rank_order(candidates: Sequence[MatchCandidate]) -> List[MatchCandidate]:
    return sorted(candidates, key=lambda c: c.rank)


class ResourceMatcher:
    """Finds the equivalent of a hydrated resource in another catalog.

    Strategies run in a fixed order and the first hit wins; identifier
    matches are trusted over title matches without any cross-strategy scoring:

    1. album-scoped search with ``"{album} {artist}"``, then the album's tracks
    2. the same album search with the album title only; for tracks, every
       qualifying album from both searches is paged in turn, up to ``max_albums``
    3. direct track search with ``"{title} {artist}"``

    Albums stop after step 2. Videos and tracks without an album title go
    straight to step 3.
    """

    def __init__(self,
                 paginator: CatalogPaginator,
                 duration_tolerance_ms: int = DURATION_TOLERANCE_MS,
                 max_albums: int = MAX_ALBUMS_PAGED):
        self.paginator = paginator
        self.duration_tolerance_ms = duration_tolerance_ms
        self.max_albums = max_albums

    def match(self, source: HydratedResource, target: Catalog) -> Optional[ResourceRef]:
        """Return the matching resource in ``target`` or None when nothing qualifies."""
        return self.find_match(source, target).ref

    def find_match(self, source: HydratedResource, target: Catalog) -> MatchResult:
        if source.kind == Kind.ALBUM:
            album, strategy = next(
                self._album_candidates(source.title, source.artist, source.barcodes, target),
                (None, None))
            if album is None:
                logger.info(f"No {target.service.value} album found for '{source.title}'")
                return NO_MATCH
            return MatchResult(ref=album.ref, strategy=strategy)

        if source.kind == Kind.TRACK and source.album_title:
            result = self._match_within_album(source, target)
            if result.matched:
                return result

        result = self._match_direct(source, target)
        if not result.matched:
            logger.info(f"No {target.service.value} match for '{source.title}' by '{source.artist or 'Unknown'}'")
        return result

    def _album_candidates(self,
                          title: str,
                          artist: Optional[str],
                          barcodes: Sequence[str],
                          target: Catalog) -> Iterator[Tuple[MatchCandidate, str]]:
        """Yield albums passing the album predicate, with-artist results first.

        The artist-less search only runs once the with-artist results are exhausted.
        """
        queries = [_build_query(title, artist)]
        if artist:
            # Artists are sometimes credited or transliterated differently
            queries.append(_build_query(title))

        seen = set()
        for query in queries:
            if not query:
                continue
            logger.debug(f"Album search on {target.service.value}: {query}")
            for candidate in _in_rank_order(target.search_albums(query)):
                if candidate.ref in seen:
                    continue
                seen.add(candidate.ref)
                strategy = album_match_strategy(title, barcodes, candidate)
                if strategy:
                    yield candidate, strategy

    def _match_within_album(self, source: HydratedResource, target: Catalog) -> MatchResult:
        candidates = self._album_candidates(source.album_title, source.artist, source.barcodes, target)
        for album, _ in islice(candidates, self.max_albums):
            try:
                items = self.paginator.collect_items(target.service, album.ref.native_id)
            except (TransportError, NotFoundError) as e:
                logger.warning(f"Could not list {target.service.value} album {album.ref.native_id}: {e}")
                continue

            for item in items:
                strategy = self._track_strategy(source, item)
                if strategy:
                    return MatchResult(ref=item.ref, strategy=strategy)
            logger.debug(f"Album {album.ref.native_id} has no track matching '{source.title}'")
        return NO_MATCH

    def _match_direct(self, source: HydratedResource, target: Catalog) -> MatchResult:
        query = _build_query(source.title, source.artist)
        if not query:
            return NO_MATCH

        logger.debug(f"Track search on {target.service.value}: {query}")
        for candidate in _in_rank_order(target.search_tracks(query)):
            strategy = self._track_strategy(source, candidate)
            if strategy:
                return MatchResult(ref=candidate.ref, strategy=strategy)
        return NO_MATCH

    def _track_strategy(self, source: HydratedResource, candidate: HydratedResource) -> Optional[str]:
        return track_match_strategy(source, candidate, self.duration_tolerance_ms)

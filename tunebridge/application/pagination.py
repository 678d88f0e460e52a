from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Set

from tunebridge.domain.entities import MatchCandidate, Service
from tunebridge.domain.errors import NotFoundError, TransportError
from tunebridge.domain.ports import Catalog


logger = logging.getLogger(__name__)

PAGE_DELAY_MS = 200
MAX_PAGES = 1000


class CatalogPaginator:
    """Walks a catalog's paged album listing until the cursor runs out.

    Pages for one album are fetched sequentially with a fixed pause between
    calls, and at most one walk per catalog is in flight at a time. A failing
    page aborts the whole walk: callers never see a partial album.
    """

    def __init__(self,
                 catalogs: Mapping[Service, Catalog],
                 page_delay_ms: int = PAGE_DELAY_MS,
                 max_pages: int = MAX_PAGES,
                 sleep: Callable[[float], None] = time.sleep,
                 metrics=None):
        self.catalogs = dict(catalogs)
        self.page_delay_ms = page_delay_ms
        self.max_pages = max_pages
        self._sleep = sleep
        self.metrics = metrics
        self._locks: Dict[Service, threading.Lock] = {
            service: threading.Lock() for service in self.catalogs
        }

    def _catalog(self, service: Service) -> Catalog:
        catalog = self.catalogs.get(service)
        if catalog is None:
            raise NotFoundError(f"No catalog configured for {service.value}")
        return catalog

    def collect_items(self, service: Service, album_id: str) -> List[MatchCandidate]:
        """Return every track of the album, in catalog order.

        Raises:
            TransportError: a page failed, a cursor repeated, or the page bound was hit.
            NotFoundError: the catalog does not know the album.
        """
        catalog = self._catalog(service)
        with self._locks[service]:
            try:
                items = self._walk(catalog, album_id)
            except (TransportError, NotFoundError):
                if self.metrics is not None:
                    self.metrics.record_pagination_failure()
                raise
        logger.debug(f"Collected {len(items)} items for {service.value} album {album_id}")
        return items

    def collect_all(self, service: Service, album_id: str) -> List[str]:
        """Return the native ids of every track of the album, in catalog order."""
        return [item.ref.native_id for item in self.collect_items(service, album_id)]

    def _walk(self, catalog: Catalog, album_id: str) -> List[MatchCandidate]:
        collected: List[MatchCandidate] = []
        seen_cursors: Set[str] = set()
        cursor: Optional[str] = None
        pages = 0

        while True:
            page = catalog.list_album_items(album_id, cursor)
            pages += 1
            if self.metrics is not None:
                self.metrics.record_page()
            collected.extend(page.items)

            cursor = page.next_cursor
            if not cursor:
                return collected
            if cursor in seen_cursors:
                raise TransportError(f"Cursor {cursor!r} repeated while paging album {album_id}")
            if pages >= self.max_pages:
                raise TransportError(f"Album {album_id} exceeded {self.max_pages} pages")
            seen_cursors.add(cursor)

            self._sleep(self.page_delay_ms / 1000.0)

from __future__ import annotations

import logging
from typing import FrozenSet, Iterable, Optional
from urllib.parse import urlparse

from tunebridge.domain.ports import HttpFetcher


logger = logging.getLogger(__name__)

MAX_HOPS = 5
SHORTENING_DOMAINS: FrozenSet[str] = frozenset({"spotify.link"})


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


class ShortlinkResolver:
    """Expands shortened URLs one observed hop at a time.

    The hop bound is a safety valve against redirect loops: once it is hit the
    last URL seen is returned as-is instead of failing.
    """

    def __init__(self,
                 fetcher: HttpFetcher,
                 shortening_domains: Optional[Iterable[str]] = None,
                 max_hops: int = MAX_HOPS,
                 metrics=None):
        self.fetcher = fetcher
        self.shortening_domains = frozenset(shortening_domains or SHORTENING_DOMAINS)
        self.max_hops = max_hops
        self.metrics = metrics

    def is_short_link(self, url: str) -> bool:
        return _host(url) in self.shortening_domains

    def resolve(self, short_url: str, depth: int = 0) -> str:
        """Return the canonical URL ``short_url`` points at.

        Raises:
            TransportError: if a hop fails; the caller should drop the link.
        """
        if depth >= self.max_hops:
            logger.warning(f"Short link hop limit ({self.max_hops}) reached at {short_url}")
            return short_url

        next_url = self.fetcher.fetch(short_url)
        if self.metrics is not None:
            self.metrics.record_shortlink_hop()
        logger.debug(f"Short link hop {depth + 1}: {short_url} -> {next_url}")

        if next_url != short_url and self.is_short_link(next_url):
            return self.resolve(next_url, depth + 1)
        return next_url

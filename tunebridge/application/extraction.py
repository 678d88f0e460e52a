from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import parse_qs

from tunebridge.domain.entities import Kind, ResourceRef, Service
from tunebridge.domain.errors import ExtractionError, TransportError


logger = logging.getLogger(__name__)

# Numbered groups: k<n> captures the kind discriminator, i<n> the native id,
# q<n> a query string holding the id, s<n> a short link needing expansion.
LINK_PATTERNS: Mapping[Service, str] = {
    Service.SPOTIFY: (
        r"https?://open\.spotify\.com/(?:intl-[a-zA-Z]{2}(?:-[a-zA-Z]{2})?/)?"
        r"(?P<k1>track|album)/(?P<i1>[a-zA-Z0-9]+)"
        r"|spotify:(?P<k2>track|album):(?P<i2>[a-zA-Z0-9]+)"
        r"|(?P<s1>https?://spotify\.link/[a-zA-Z0-9]+)"
    ),
    Service.TIDAL: (
        r"https?://(?:listen\.|www\.)?tidal\.com/(?:browse/)?"
        r"(?P<k1>track|album|video)/(?P<i1>[0-9]+)"
        r"|tidal:(?P<k2>track|album):(?P<i2>[0-9]+)"
    ),
    Service.YOUTUBE: (
        r"https?://(?:www\.|m\.|music\.)?youtube\.com/watch\?(?P<q1>[a-zA-Z0-9%=&_.\-]+)"
        r"|https?://youtu\.be/(?P<i1>[a-zA-Z0-9_\-]{11})"
        r"|https?://(?:www\.|m\.)?youtube\.com/(?:live|shorts)/(?P<i2>[a-zA-Z0-9_\-]{11})"
    ),
}

# Kind used when the pattern itself carries no discriminator.
_DEFAULT_KINDS = {
    Service.SPOTIFY: Kind.TRACK,
    Service.TIDAL: Kind.TRACK,
    Service.YOUTUBE: Kind.VIDEO,
}

SERVICE_DOMAINS: Mapping[Service, Tuple[str, ...]] = {
    Service.SPOTIFY: ("open.spotify.com", "spotify.link", "spotify:"),
    Service.TIDAL: ("tidal.com", "tidal:"),
    Service.YOUTUBE: ("youtube.com", "youtu.be"),
}

_YOUTUBE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]{11}$")


def compile_patterns(patterns: Mapping[Service, str]) -> Dict[Service, "re.Pattern[str]"]:
    """Compile per-service link patterns, failing loudly on a bad pattern."""
    compiled = {}
    for service, pattern in patterns.items():
        try:
            compiled[service] = re.compile(pattern)
        except re.error as e:
            raise ExtractionError(f"Invalid link pattern for {service.value}: {e}") from e
    return compiled


_COMPILED_PATTERNS = compile_patterns(LINK_PATTERNS)


def _first_group(match: "re.Match[str]", prefix: str) -> Optional[str]:
    for name, value in match.groupdict().items():
        if name.startswith(prefix) and value:
            return value
    return None


def _video_id_from_query(query: str) -> Optional[str]:
    values = parse_qs(query).get("v")
    if not values or not _YOUTUBE_ID_PATTERN.match(values[0]):
        return None
    return values[0]


def contains_link(service: Service, text: str) -> bool:
    """Cheap pre-check before running the full pattern."""
    return any(domain in (text or "") for domain in SERVICE_DOMAINS[service])


class LinkExtractor:
    """Turns raw message text into ResourceRefs, one pattern per service.

    Short links are expanded through ``resolver`` when one is provided and
    dropped otherwise.
    """

    def __init__(self, resolver=None, patterns: Optional[Mapping[Service, str]] = None):
        self.resolver = resolver
        self._patterns = compile_patterns(patterns) if patterns else _COMPILED_PATTERNS

    @property
    def services(self) -> List[Service]:
        return list(self._patterns)

    def _positioned(self, service: Service, text: str) -> List[Tuple[int, ResourceRef]]:
        """Refs paired with the offset of the link they came from."""
        pattern = self._patterns.get(service)
        if pattern is None or not text:
            return []

        found: List[Tuple[int, ResourceRef]] = []
        for match in pattern.finditer(text):
            short_link = _first_group(match, "s")
            if short_link:
                found.extend((match.start(), ref) for ref in self._expand_short_link(service, short_link))
                continue
            ref = self._ref_from_match(service, match)
            if ref is not None:
                found.append((match.start(), ref))
        return found

    def extract(self, service: Service, text: str) -> List[ResourceRef]:
        """Return every resource linked in ``text``, left to right, duplicates kept."""
        return [ref for _, ref in self._positioned(service, text)]

    def extract_all(self, text: str, services: Optional[Iterable[Service]] = None) -> Dict[Service, List[ResourceRef]]:
        """Run every service pattern over ``text``; services with no links are omitted."""
        found = {}
        for service in services or self._patterns:
            if not contains_link(service, text):
                continue
            refs = self.extract(service, text)
            if refs:
                found[service] = refs
        return found

    def extract_in_order(self, text: str, services: Optional[Iterable[Service]] = None) -> List[ResourceRef]:
        """Refs of every service in the order their links appear in ``text``."""
        positioned: List[Tuple[int, ResourceRef]] = []
        for service in services or self._patterns:
            if contains_link(service, text):
                positioned.extend(self._positioned(service, text))
        # sort is stable, so refs from one expanded short link keep their order
        positioned.sort(key=lambda pair: pair[0])
        return [ref for _, ref in positioned]

    def _ref_from_match(self, service: Service, match: "re.Match[str]") -> Optional[ResourceRef]:
        native_id = _first_group(match, "i")
        if native_id is None:
            query = _first_group(match, "q")
            native_id = _video_id_from_query(query) if query else None
        if not native_id:
            logger.debug(f"Skipping {service.value} link without id: {match.group(0)}")
            return None

        kind_value = _first_group(match, "k")
        kind = Kind(kind_value) if kind_value else _DEFAULT_KINDS[service]
        return ResourceRef(service=service, kind=kind, native_id=native_id)

    def _expand_short_link(self, service: Service, short_link: str) -> List[ResourceRef]:
        if self.resolver is None:
            logger.debug(f"Skipping short link {short_link}: no resolver configured")
            return []
        try:
            expanded = self.resolver.resolve(short_link)
        except TransportError as e:
            logger.warning(f"Dropping short link {short_link}: {e}")
            return []

        pattern = self._patterns[service]
        refs = []
        for match in pattern.finditer(expanded):
            # Expanded URLs are not expanded again; a leftover short link is dropped.
            if _first_group(match, "s"):
                continue
            ref = self._ref_from_match(service, match)
            if ref is not None:
                refs.append(ref)
        if not refs:
            logger.warning(f"Short link {short_link} expanded to unrecognised URL {expanded}")
        return refs


_default_extractor = LinkExtractor()


def extract(service: Service, text: str) -> List[ResourceRef]:
    """Pure extraction with the built-in patterns; short links are skipped."""
    return _default_extractor.extract(service, text)


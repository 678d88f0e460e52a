from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Service(str, Enum):
    """Streaming catalogs a resource can live in."""

    SPOTIFY = "spotify"
    TIDAL = "tidal"
    YOUTUBE = "youtube"


class Kind(str, Enum):
    """Kinds of resource addressable within a catalog."""

    TRACK = "track"
    ALBUM = "album"
    VIDEO = "video"


_WEB_URLS = {
    Service.SPOTIFY: "https://open.spotify.com/{kind}/{id}",
    Service.TIDAL: "https://tidal.com/browse/{kind}/{id}",
    Service.YOUTUBE: "https://www.youtube.com/watch?v={id}",
}


@dataclass(frozen=True)
class ResourceRef:
    """Identifies a resource in one catalog without any metadata."""

    service: Service
    kind: Kind
    native_id: str

    def __post_init__(self):
        if not self.native_id:
            raise ValueError("native_id must not be empty")

    @property
    def uri(self) -> str:
        return f"{self.service.value}:{self.kind.value}:{self.native_id}"

    @property
    def url(self) -> str:
        return _WEB_URLS[self.service].format(kind=self.kind.value, id=self.native_id)

    def to_dict(self) -> Dict[str, str]:
        return {
            "service": self.service.value,
            "kind": self.kind.value,
            "id": self.native_id,
            "url": self.url,
        }


@dataclass(frozen=True)
class HydratedResource:
    """A resource together with the metadata its catalog supplied.

    Built from a single detail or search call and discarded once the
    resolution pass that needed it is over.
    """

    ref: ResourceRef
    title: str = ""
    artist: Optional[str] = None
    duration_ms: Optional[int] = None
    external_ids: Dict[str, str] = field(default_factory=dict)
    album_title: Optional[str] = None
    album_external_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def service(self) -> Service:
        return self.ref.service

    @property
    def kind(self) -> Kind:
        return self.ref.kind

    @property
    def isrc(self) -> Optional[str]:
        return self.external_ids.get("isrc") or None

    @property
    def barcodes(self) -> List[str]:
        """UPC/EAN values of this resource, or of its parent album for tracks."""
        source = self.external_ids if self.kind == Kind.ALBUM else self.album_external_ids
        return [source[k] for k in ("upc", "ean") if source.get(k)]


@dataclass(frozen=True)
class MatchCandidate(HydratedResource):
    """A resource returned by a search in the target catalog."""

    # Position in the search response; only used to order iteration.
    rank: int = 0


@dataclass(frozen=True)
class AlbumPage:
    """One page of a paged album listing."""

    items: Tuple[MatchCandidate, ...]
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one resource against one target catalog."""

    ref: Optional[ResourceRef]
    strategy: str

    @property
    def matched(self) -> bool:
        return self.ref is not None


NO_MATCH = MatchResult(ref=None, strategy="no_match")

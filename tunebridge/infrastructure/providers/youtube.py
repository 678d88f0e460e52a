import logging
from typing import Any, Dict, List, Optional

import requests

from tunebridge.domain.entities import (
    AlbumPage, HydratedResource, Kind, MatchCandidate, ResourceRef, Service,
)
from tunebridge.domain.errors import NotFoundError, RateLimited, TransportError
from tunebridge.domain.normalization import parse_iso8601_duration_ms

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/youtube/v3"
MUSIC_CATEGORY_ID = "10"
# Auto-generated YouTube Music channels are named "<artist> - Topic"
TOPIC_SUFFIX = " - Topic"


def _channel_artist(snippet: Dict[str, Any]) -> Optional[str]:
    channel = snippet.get("channelTitle") or ""
    if channel.endswith(TOPIC_SUFFIX):
        channel = channel[:-len(TOPIC_SUFFIX)]
    return channel.strip() or None


class YoutubeCatalog:
    """YouTube Data API v3 catalog. Videos only; there is no album concept."""

    service = Service.YOUTUBE

    def __init__(self,
                 api_key: str,
                 search_limit: int = 10,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self._search_limit = search_limit
        self._timeout = timeout
        self._http = session or requests.Session()

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query = dict(params)
        query["key"] = self.api_key
        try:
            response = self._http.get(f"{API_BASE}/{endpoint}", params=query, timeout=self._timeout)
        except requests.RequestException as e:
            raise TransportError(f"YouTube {endpoint} request failed: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"YouTube {endpoint} not found")
        if status == 429:
            retry_after = response.headers.get("Retry-After", "1")
            try:
                retry_after_ms = int(float(retry_after) * 1000)
            except ValueError:
                retry_after_ms = 1000
            raise RateLimited(retry_after_ms, f"YouTube {endpoint} rate limited")
        if not 200 <= status < 300:
            raise TransportError(f"YouTube {endpoint} returned HTTP {status}")

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"YouTube {endpoint} returned invalid JSON") from e

    def _to_video(self, item: Dict[str, Any], rank: int = 0) -> MatchCandidate:
        snippet = item.get("snippet") or {}
        details = item.get("contentDetails") or {}
        return MatchCandidate(
            ref=ResourceRef(self.service, Kind.VIDEO, item["id"]),
            title=snippet.get("title", ""),
            artist=_channel_artist(snippet),
            duration_ms=parse_iso8601_duration_ms(details.get("duration")),
            rank=rank,
        )

    def _videos(self, video_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not video_ids:
            return {}
        document = self._get("videos", {
            "part": "snippet,contentDetails",
            "id": ",".join(video_ids),
            "maxResults": len(video_ids),
        })
        return {item["id"]: item for item in document.get("items") or [] if item.get("id")}

    def search_albums(self, query: str) -> List[MatchCandidate]:
        return []

    def search_tracks(self, query: str) -> List[MatchCandidate]:
        document = self._get("search", {
            "part": "snippet",
            "type": "video",
            "videoCategoryId": MUSIC_CATEGORY_ID,
            "maxResults": self._search_limit,
            "q": query,
        })
        video_ids = [
            (item.get("id") or {}).get("videoId")
            for item in document.get("items") or []
        ]
        video_ids = [v for v in video_ids if v]

        # Search results carry no duration
        videos = self._videos(video_ids)
        return [self._to_video(videos[v], rank=idx) for idx, v in enumerate(video_ids) if v in videos]

    def get_album(self, album_id: str) -> HydratedResource:
        raise NotFoundError("YouTube has no albums")

    def get_track(self, track_id: str) -> HydratedResource:
        video = self._videos([track_id]).get(track_id)
        if video is None:
            raise NotFoundError(f"YouTube video {track_id} not found")
        return self._to_video(video)

    def list_album_items(self, album_id: str, cursor: Optional[str] = None) -> AlbumPage:
        raise NotFoundError("YouTube has no albums")

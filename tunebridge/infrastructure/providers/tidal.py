import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urlparse

import requests

from tunebridge.domain.entities import (
    AlbumPage, HydratedResource, Kind, MatchCandidate, ResourceRef, Service,
)
from tunebridge.domain.errors import NotFoundError, RateLimited, TransportError
from tunebridge.domain.normalization import parse_iso8601_duration_ms

logger = logging.getLogger(__name__)

OAUTH_TOKEN_URL = "https://auth.tidal.com/v1/oauth2/token"
API_BASE = "https://openapi.tidal.com/v2"

# Seconds before expiry at which the app token is renewed
TOKEN_EXPIRY_MARGIN = 60

_KIND_BY_TYPE = {
    "tracks": Kind.TRACK,
    "videos": Kind.VIDEO,
    "albums": Kind.ALBUM,
}


def _barcode_ids(barcode: Optional[str]) -> Dict[str, str]:
    if not barcode:
        return {}
    # 12 digits is a UPC-A, anything longer an EAN
    return {"upc": barcode} if len(barcode) <= 12 else {"ean": barcode}


def _index_included(document: Dict[str, Any]) -> Dict[Tuple[str, str], Dict[str, Any]]:
    return {
        (item.get("type"), str(item.get("id"))): item
        for item in document.get("included") or []
        if item.get("type") and item.get("id") is not None
    }


def _related(resource: Dict[str, Any], relationship: str) -> List[Dict[str, Any]]:
    data = ((resource.get("relationships") or {}).get(relationship) or {}).get("data")
    if isinstance(data, dict):
        return [data]
    return data or []


def _cursor_from_links(document: Dict[str, Any]) -> Optional[str]:
    next_link = (document.get("links") or {}).get("next")
    if not next_link:
        return None
    values = parse_qs(urlparse(next_link).query).get("page[cursor]")
    return values[0] if values else None


class TidalCatalog:
    """Tidal catalog over the JSON:API at openapi.tidal.com with an app token."""

    service = Service.TIDAL

    def __init__(self,
                 client_id: str,
                 client_secret: str,
                 country_code: str = "US",
                 search_limit: int = 10,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.country_code = country_code or "US"
        self._search_limit = search_limit
        self._timeout = timeout

        self._http = session or requests.Session()
        self._http.headers.update({
            "Accept": "application/vnd.api+json",
            "Content-Type": "application/vnd.api+json",
        })

        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _access_token(self, force: bool = False) -> str:
        with self._token_lock:
            if not force and self._token and time.time() < self._token_expires_at - TOKEN_EXPIRY_MARGIN:
                return self._token

            logger.debug("Requesting Tidal client credentials token")
            try:
                response = self._http.post(
                    OAUTH_TOKEN_URL,
                    headers={
                        "Accept": "application/json",
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                    timeout=self._timeout,
                )
            except requests.RequestException as e:
                raise TransportError(f"Tidal token request failed: {e}") from e

            if response.status_code != 200:
                raise TransportError(f"Tidal token request returned HTTP {response.status_code}")
            try:
                data = response.json()
            except ValueError as e:
                raise TransportError("Tidal token response is not JSON") from e
            if not data.get("access_token"):
                raise TransportError("Tidal token response has no access_token")

            self._token = data["access_token"]
            self._token_expires_at = time.time() + float(data.get("expires_in") or 0)
            return self._token

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON:API document, renewing the app token once on 401."""
        query = {"countryCode": self.country_code}
        query.update(params or {})
        url = f"{API_BASE}{path}"

        response = None
        for attempt in range(2):
            headers = {"Authorization": f"Bearer {self._access_token(force=attempt > 0)}"}
            try:
                response = self._http.get(url, params=query, headers=headers, timeout=self._timeout)
            except requests.RequestException as e:
                raise TransportError(f"Tidal GET {path} failed: {e}") from e
            if response.status_code != 401:
                break
            logger.warning(f"Tidal returned 401 for {path}, renewing token")

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"Tidal {path} not found")
        if status == 429:
            retry_after = response.headers.get("Retry-After", "1")
            try:
                retry_after_ms = int(float(retry_after) * 1000)
            except ValueError:
                retry_after_ms = 1000
            raise RateLimited(retry_after_ms, f"Tidal rate limited on {path}")
        if not 200 <= status < 300:
            raise TransportError(f"Tidal GET {path} returned HTTP {status}")

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Tidal GET {path} returned invalid JSON") from e

    def _artist_name(self, resource: Dict[str, Any], included) -> Optional[str]:
        for rel in _related(resource, "artists"):
            artist = included.get(("artists", str(rel.get("id"))))
            name = ((artist or {}).get("attributes") or {}).get("name")
            if name:
                return name
        return None

    def _to_album(self, resource: Dict[str, Any], included, rank: int = 0) -> MatchCandidate:
        attributes = resource.get("attributes") or {}
        return MatchCandidate(
            ref=ResourceRef(self.service, Kind.ALBUM, str(resource["id"])),
            title=attributes.get("title", ""),
            artist=self._artist_name(resource, included),
            duration_ms=parse_iso8601_duration_ms(attributes.get("duration")),
            external_ids=_barcode_ids(attributes.get("barcodeId")),
            rank=rank,
        )

    def _to_track(self, resource: Dict[str, Any], included, rank: int = 0) -> MatchCandidate:
        attributes = resource.get("attributes") or {}
        kind = _KIND_BY_TYPE.get(resource.get("type"), Kind.TRACK)

        album_title = None
        album_ids: Dict[str, str] = {}
        for rel in _related(resource, "albums"):
            album = included.get(("albums", str(rel.get("id"))))
            if album:
                album_attributes = album.get("attributes") or {}
                album_title = album_attributes.get("title") or None
                album_ids = _barcode_ids(album_attributes.get("barcodeId"))
                break

        external_ids = {"isrc": attributes["isrc"]} if attributes.get("isrc") else {}
        return MatchCandidate(
            ref=ResourceRef(self.service, kind, str(resource["id"])),
            title=attributes.get("title", ""),
            artist=self._artist_name(resource, included),
            duration_ms=parse_iso8601_duration_ms(attributes.get("duration")),
            external_ids=external_ids,
            album_title=album_title,
            album_external_ids=album_ids,
            rank=rank,
        )

    def _search(self, query: str, relationship: str) -> Tuple[List[Dict[str, Any]], Dict]:
        quoted = quote(query, safe="")
        document = self._get(
            f"/searchResults/{quoted}/relationships/{relationship}",
            {"include": relationship, "page[size]": self._search_limit},
        )
        included = _index_included(document)
        resources = []
        for rel in (document.get("data") or [])[:self._search_limit]:
            resource = included.get((rel.get("type"), str(rel.get("id"))))
            if resource:
                resources.append(resource)
        return resources, included

    def search_albums(self, query: str) -> List[MatchCandidate]:
        try:
            resources, included = self._search(query, "albums")
        except NotFoundError:
            return []
        return [self._to_album(r, included, rank=idx) for idx, r in enumerate(resources)]

    def search_tracks(self, query: str) -> List[MatchCandidate]:
        try:
            resources, included = self._search(query, "tracks")
        except NotFoundError:
            return []
        return [self._to_track(r, included, rank=idx) for idx, r in enumerate(resources)]

    def get_album(self, album_id: str) -> HydratedResource:
        document = self._get(f"/albums/{album_id}", {"include": "artists"})
        resource = document.get("data")
        if not resource:
            raise NotFoundError(f"Tidal album {album_id} not found")
        return self._to_album(resource, _index_included(document))

    def get_track(self, track_id: str) -> HydratedResource:
        document = self._get(f"/tracks/{track_id}", {"include": "albums,artists"})
        resource = document.get("data")
        if not resource:
            raise NotFoundError(f"Tidal track {track_id} not found")
        return self._to_track(resource, _index_included(document))

    def list_album_items(self, album_id: str, cursor: Optional[str] = None) -> AlbumPage:
        params = {"include": "items"}
        if cursor:
            params["page[cursor]"] = cursor
        document = self._get(f"/albums/{album_id}/relationships/items", params)

        included = _index_included(document)
        items = []
        for idx, rel in enumerate(document.get("data") or []):
            resource = included.get((rel.get("type"), str(rel.get("id"))))
            if resource is None:
                # Relationship entries without an included body still identify the item
                resource = {"id": rel.get("id"), "type": rel.get("type")}
            items.append(self._to_track(resource, included, rank=idx))
        return AlbumPage(items=tuple(items), next_cursor=_cursor_from_links(document))

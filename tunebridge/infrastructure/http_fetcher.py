import logging
from typing import Dict, Optional
from urllib.parse import urljoin

import requests

from tunebridge.domain.errors import TransportError


logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "python-requests/2.31.0",
    "Accept-Encoding": "gzip, deflate",
    "Accept": "*/*",
    "Connection": "keep-alive",
}


class RequestsFetcher:
    """Single-hop GET: returns the redirect target, or the URL itself on 2xx.

    Redirects are never followed here so every hop stays visible to the
    short link resolver.
    """

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 timeout: float = 10.0,
                 headers: Optional[Dict[str, str]] = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = headers or dict(DEFAULT_HEADERS)

    def fetch(self, url: str) -> str:
        try:
            response = self.session.get(
                url,
                headers=self.headers,
                timeout=self.timeout,
                allow_redirects=False,
                stream=True,
            )
        except requests.RequestException as e:
            raise TransportError(f"GET {url} failed: {e}") from e

        try:
            status = response.status_code
            location = response.headers.get("Location")
            if 300 <= status < 400 and location:
                # Location may be relative
                return urljoin(url, location)
            if 200 <= status < 300:
                return response.url or url
            raise TransportError(f"GET {url} returned HTTP {status} without a usable Location")
        finally:
            response.close()
